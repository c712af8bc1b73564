"""
Decode uploaded CSV / spreadsheet bytes into raw rows.
"""

from __future__ import annotations

import io
import logging
import math
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from core.models import ParsedTable

logger = logging.getLogger("uvicorn.error")

CSV_EXTENSIONS = {"csv", "txt", "tsv"}
EXCEL_EXTENSIONS = {"xlsx", "xlsm"}


class IngestionError(ValueError):
    """Raised when a file cannot be decoded into a single table."""


def file_extension(filename: str) -> str:
    return (filename.rsplit(".", 1)[1].lower() if "." in filename else "").strip()


def _cell(value: Any) -> Any:
    """Native Python value with empties as None; numbers stay numbers."""
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    columns = [str(c) for c in df.columns]
    rows: List[Dict[str, Any]] = []
    for values in df.itertuples(index=False, name=None):
        rows.append({col: _cell(v) for col, v in zip(columns, values)})
    return rows


def _read_frame(content: bytes, ext: str) -> tuple[pd.DataFrame, str | None]:
    buf = io.BytesIO(content)
    if ext in EXCEL_EXTENSIONS:
        sheets = pd.read_excel(buf, sheet_name=None, engine="openpyxl")
        if not sheets:
            raise IngestionError("The workbook contains no sheets.")
        sheet_name = next(iter(sheets))
        return sheets[sheet_name], sheet_name
    if ext == "txt":
        return pd.read_csv(buf, sep=None, engine="python"), None
    return pd.read_csv(buf, sep="\t" if ext == "tsv" else ","), None


def read_table(content: bytes, filename: str) -> ParsedTable:
    """
    Decode *content* (CSV or XLSX, chosen by extension) into a ParsedTable.

    The first row is the header; the first sheet wins for workbooks.
    """
    ext = file_extension(filename or "")
    if ext not in CSV_EXTENSIONS | EXCEL_EXTENSIONS:
        raise IngestionError(f"Unsupported file type '.{ext}'. Upload a CSV or Excel file.")

    try:
        df, sheet_name = _read_frame(content, ext)
    except IngestionError:
        raise
    except Exception as e:
        logger.exception("Failed to decode %s", filename)
        raise IngestionError(
            f"Failed to parse the file. Please ensure it is a valid Excel or CSV file. ({e})"
        ) from e

    df = df.dropna(how="all")
    if df.empty:
        raise IngestionError("The file appears to be empty or has no data rows.")

    return ParsedTable(
        columns=[str(c) for c in df.columns],
        rows=frame_to_rows(df),
        sheet_name=sheet_name,
    )
