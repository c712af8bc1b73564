"""
Column type detection from a sample of raw cell values.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.models import ColumnDescriptor, ColumnType
from engine.parsing import is_real_number, leading_float

SAMPLE_SIZE = 20
MATCH_THRESHOLD = 0.6

# Plausible spreadsheet serial range (roughly 1982-2036)
SERIAL_MIN = 30000
SERIAL_MAX = 50000

_CURRENCY_RE = re.compile(r"^[$€£¥]|[$€£¥]$")
_NUMBER_CLEAN_RE = re.compile(r"[$,€£%]")
_DATE_PATTERNS = [
    re.compile(r"^\d{4}-\d{1,2}-\d{1,2}"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}"),
    re.compile(r"^\d{1,2}-\d{1,2}-\d{2,4}"),
    re.compile(r"^[A-Za-z]{3}\s+\d{1,2},?\s+\d{4}"),
]

# Order matters: ties resolve to the earliest category
_CHECK_ORDER = [ColumnType.date, ColumnType.percentage, ColumnType.currency, ColumnType.number]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _as_text(value: Any) -> str:
    # Integral floats render without the trailing ".0", like the source cells
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def classify_value(value: Any) -> Optional[ColumnType]:
    """Classify a single non-empty value; None when it fits no category."""
    text = _as_text(value)
    numeric = is_real_number(value)

    if "%" in text or (numeric and 0 <= value <= 1):
        return ColumnType.percentage

    if _CURRENCY_RE.search(text):
        return ColumnType.currency

    if numeric and SERIAL_MIN < value < SERIAL_MAX:
        return ColumnType.date
    if any(p.match(text) for p in _DATE_PATTERNS):
        return ColumnType.date

    if leading_float(_NUMBER_CLEAN_RE.sub("", text)) is not None:
        return ColumnType.number

    return None


def sample_values(values: Sequence[Any], size: int = SAMPLE_SIZE) -> List[Any]:
    """First *size* values with empties removed."""
    return [v for v in list(values)[:size] if not _is_empty(v)]


def detect_column_type(values: Sequence[Any]) -> ColumnType:
    """Return the first category matched by at least 60 % of the sample."""
    sample = sample_values(values)
    if not sample:
        return ColumnType.text

    counts: Dict[ColumnType, int] = {}
    for value in sample:
        category = classify_value(value)
        if category is not None:
            counts[category] = counts.get(category, 0) + 1

    total = len(sample)
    for category in _CHECK_ORDER:
        if counts.get(category, 0) / total >= MATCH_THRESHOLD:
            return category
    return ColumnType.text


def detect_column_types(
    columns: Iterable[str],
    rows: Sequence[Dict[str, Any]],
) -> List[ColumnDescriptor]:
    """One ColumnDescriptor per header, in header order."""
    return [
        ColumnDescriptor(
            name=col,
            inferred_type=detect_column_type([row.get(col) for row in rows]),
        )
        for col in columns
    ]
