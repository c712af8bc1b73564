"""
Cell-level parsers shared by type detection, aggregation and formulas.

Pure functions: unparsable input yields None, never an exception.
"""

from __future__ import annotations

import datetime as dt
import math
import numbers
import re
import warnings
from typing import Any, Optional

import pandas as pd

# Spreadsheet serial day 0; serials below 60 sit before the fictitious 1900-02-29
SERIAL_EPOCH = dt.datetime(1899, 12, 30)
SERIAL_LEAP_BUG = 60

_CLEAN_RE = re.compile(r"[$,€£¥%]")
_LEADING_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_REGIONAL_FORMATS = [
    (re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"), "%m/%d/%Y"),
    (re.compile(r"^\d{4}-\d{1,2}-\d{1,2}$"), "%Y-%m-%d"),
    (re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"), "%d-%m-%Y"),
]


def leading_float(text: str) -> Optional[float]:
    """Parse the longest float literal at the start of *text*."""
    m = _LEADING_FLOAT_RE.match(text.strip())
    if not m:
        return None
    try:
        value = float(m.group(0))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def is_real_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def parse_numeric_value(value: Any) -> Optional[float]:
    """Numbers pass through; strings lose currency, separators and percent signs."""
    if is_real_number(value):
        value = float(value)
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        return leading_float(_CLEAN_RE.sub("", value))
    return None


def _to_naive(ts: pd.Timestamp) -> Optional[dt.datetime]:
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.to_pydatetime()


def parse_serial_date(serial: float) -> Optional[dt.datetime]:
    """Convert a spreadsheet serial day number to a datetime."""
    if not math.isfinite(serial):
        return None
    if serial < SERIAL_LEAP_BUG:
        serial += 1
    try:
        return SERIAL_EPOCH + dt.timedelta(days=serial)
    except OverflowError:
        return None


def _parse_iso(text: str) -> Optional[dt.datetime]:
    try:
        ts = pd.to_datetime(text, format="ISO8601")
    except (ValueError, TypeError, OverflowError):
        return None
    return _to_naive(ts)


def _parse_regional(text: str) -> Optional[dt.datetime]:
    for pattern, fmt in _REGIONAL_FORMATS:
        if not pattern.match(text):
            continue
        try:
            return dt.datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _parse_permissive(text: str) -> Optional[dt.datetime]:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            ts = pd.to_datetime(text, errors="coerce")
        except (ValueError, TypeError, OverflowError):
            return None
    return _to_naive(ts)


def parse_date(value: Any) -> Optional[dt.datetime]:
    """
    Parse a cell into a naive datetime.

    Accepts native dates, spreadsheet serial numbers and strings.  Strings
    are tried as strict ISO-8601 first, then MM/DD/YYYY, YYYY-M-D and
    DD-MM-YYYY, then permissive parsing.
    """
    if value is None or value is pd.NA or value is pd.NaT or isinstance(value, bool):
        return None

    if isinstance(value, pd.Timestamp):
        return _to_naive(value)
    if isinstance(value, dt.datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)

    if is_real_number(value):
        if value == 0:
            return None
        return parse_serial_date(float(value))

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return _parse_iso(text) or _parse_regional(text) or _parse_permissive(text)

    return None
