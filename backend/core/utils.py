"""
Shared utility helpers.

Pure functions with no I/O.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

# Default series palette, assigned in order to mapped fields
CHART_COLORS = [
    "#14b8a6",  # teal
    "#6366f1",  # royal blue
    "#a855f7",  # violet
    "#f97316",  # orange
    "#ec4899",  # pink
    "#06b6d4",  # cyan
    "#84cc16",  # lime
    "#f43f5e",  # rose
]


# ---------------------------------------------------------------------------
# JSON safety
# ---------------------------------------------------------------------------

def json_safe_value(value: Any) -> Any:
    """Replace +/-inf and NaN with None; datetimes become ISO strings."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def records_json_safe(rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{k: json_safe_value(v) for k, v in row.items()} for row in rows]


# ---------------------------------------------------------------------------
# Display formatting
# ---------------------------------------------------------------------------

def _trim(value: float, digits: int = 2) -> str:
    text = f"{value:,.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_number(value: Optional[float], is_percentage: bool = False) -> str:
    """Compact display: ``1.50K``, ``2.00M``, ``12.5%``; missing values show ``0``."""
    if value is None or not math.isfinite(value):
        return "0"
    if is_percentage:
        return f"{_trim(value)}%"
    magnitude = abs(value)
    if magnitude >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    if magnitude >= 1_000:
        return f"{value / 1_000:.2f}K"
    return _trim(value)


def pct(n: int, d: int) -> float:
    """Percentage with 2-decimal rounding; zero-safe."""
    return 0.0 if d <= 0 else round(100.0 * n / d, 2)
