"""
Field auto-mapping heuristics and mapping normalization.

The suggested mapping is advisory: callers confirm or edit every entry before
aggregation runs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from core.models import (
    FORMULA_COLUMN,
    AggregationType,
    ColumnSource,
    ColumnType,
    FieldMappingEntry,
    FormulaSource,
    Mapping,
    MetricDescriptor,
)
from core.utils import CHART_COLORS

logger = logging.getLogger("uvicorn.error")

REQUIRED_FIELDS: Dict[str, Dict[str, Any]] = {
    "date": {"label": "Date/Time", "required": True},
    "attributableSales": {"label": "Attributable Sales", "required": False},
    "ctr": {"label": "Click Through Rate (CTR)", "required": False},
    "impressions": {"label": "Impressions", "required": False},
    "clicks": {"label": "Clicks", "required": False},
    "spend": {"label": "Ad Spend", "required": False},
}

# Field -> lowercase name fragments, checked with substring matching
FIELD_PATTERNS: Dict[str, List[str]] = {
    "date": ["date", "time", "day", "period", "timestamp"],
    "attributableSales": ["attributable sales", "sales", "revenue", "total sales", "attributed sales"],
    "ctr": ["ctr", "click through", "clickthrough", "click-through", "click rate"],
    "impressions": ["impression", "impr", "views", "reach"],
    "clicks": ["click", "clk"],
    "spend": ["spend", "cost", "budget", "ad spend"],
}

# Name fragments that disqualify a column for a field
FIELD_EXCLUSIONS: Dict[str, List[str]] = {
    "clicks": ["rate", "through"],
}

PERCENTAGE_FIELDS = {"ctr"}

# Any one of these is enough for a chartable dataset
PRIMARY_METRIC_FIELDS = ("attributableSales", "ctr", "impressions")


# ---------------------------------------------------------------------------
# Auto-detection
# ---------------------------------------------------------------------------

def _matches_field(field: str, name_lower: str) -> bool:
    if any(ex in name_lower for ex in FIELD_EXCLUSIONS.get(field, [])):
        return False
    return any(p in name_lower for p in FIELD_PATTERNS[field])


def auto_detect_mappings(
    columns: Sequence[str],
    column_types: Optional[Dict[str, ColumnType]] = None,
) -> Dict[str, str]:
    """Suggest field -> column; first matching column wins, unmatched fields omitted."""
    column_types = column_types or {}
    lower = [c.lower() for c in columns]
    mappings: Dict[str, str] = {}

    for field in FIELD_PATTERNS:
        for col, name_lower in zip(columns, lower):
            by_type = field == "date" and column_types.get(col) == ColumnType.date
            if by_type or _matches_field(field, name_lower):
                mappings[field] = col
                break

    logger.debug("Suggested mapping: %s", mappings)
    return mappings


def needs_mapping(suggested: Dict[str, Any]) -> bool:
    """True when the caller must step in: no date or no primary metric."""
    has_date = bool(suggested.get("date"))
    has_metric = any(suggested.get(f) for f in PRIMARY_METRIC_FIELDS)
    return not has_date or not has_metric


def is_mapping_complete(mapping: Mapping) -> bool:
    entry = mapping.get("date")
    return entry is not None and not entry.is_formula and bool(entry.column)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _entry_from_raw(raw: Any) -> Optional[FieldMappingEntry]:
    if isinstance(raw, FieldMappingEntry):
        return raw
    if isinstance(raw, str):
        return FieldMappingEntry(source=ColumnSource(column=raw)) if raw else None
    if not isinstance(raw, dict):
        return None

    if "source" in raw:
        return FieldMappingEntry.model_validate(raw)

    column = raw.get("column")
    formula = raw.get("formula")
    if formula and (not column or column == FORMULA_COLUMN):
        source: Any = FormulaSource(formula=formula)
    elif column and column != FORMULA_COLUMN:
        source = ColumnSource(column=column)
    else:
        return None

    is_percentage = raw.get("is_percentage", raw.get("isPercentage", False))
    return FieldMappingEntry(
        source=source,
        label=raw.get("label"),
        is_percentage=bool(is_percentage),
        color=raw.get("color"),
    )


def normalize_mapping(raw: Optional[Dict[str, Any]]) -> Mapping:
    """
    Normalize caller mappings into tagged FieldMappingEntry values.

    Accepts bare column strings, camelCase dicts (``{"column": ...,
    "isPercentage": ...}``, with ``"__formula__"`` marking formula fields) or
    already-built entries.  Entries with neither a column nor a formula are
    dropped.
    """
    mapping: Mapping = {}
    for field, value in (raw or {}).items():
        entry = _entry_from_raw(value)
        if entry is None:
            logger.debug("Dropping empty mapping entry for %r", field)
            continue
        mapping[field] = entry
    return mapping


def suggested_to_mapping(suggested: Dict[str, str]) -> Mapping:
    """Expand an auto-detected mapping into entries with display defaults."""
    mapping: Mapping = {}
    for i, (field, column) in enumerate(suggested.items()):
        field_meta = REQUIRED_FIELDS.get(field, {})
        mapping[field] = FieldMappingEntry(
            source=ColumnSource(column=column),
            label=field_meta.get("label", column),
            is_percentage=field in PERCENTAGE_FIELDS,
            color=CHART_COLORS[i % len(CHART_COLORS)],
        )
    return mapping


def default_metrics(mapping: Mapping) -> List[MetricDescriptor]:
    """One metric per non-date field; percentages average, the rest sum."""
    metrics: List[MetricDescriptor] = []
    for field, entry in mapping.items():
        if field == "date":
            continue
        metrics.append(MetricDescriptor(
            field=field,
            aggregation_type=AggregationType.average if entry.is_percentage else AggregationType.sum,
            label=entry.label or (field if entry.is_formula else entry.column),
            color=entry.color or CHART_COLORS[len(metrics) % len(CHART_COLORS)],
            is_percentage=entry.is_percentage,
        ))
    return metrics
