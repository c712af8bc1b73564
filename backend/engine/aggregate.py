"""
Period aggregation: group rows into day / month / quarter buckets and reduce
each requested metric per bucket.

Everything here is a pure function of its arguments; callers recompute on
every mapping, granularity or metric change.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

from core.models import (
    AggregatedPeriodRow,
    AggregationType,
    Granularity,
    Mapping,
    MetricDescriptor,
    MetricRange,
)
from engine.formula import evaluate_formula
from engine.mapping import normalize_mapping
from engine.parsing import parse_date, parse_numeric_value

logger = logging.getLogger("uvicorn.error")

RawRow = Dict[str, Any]


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------

def period_key(when: dt.datetime, granularity: Union[Granularity, str]) -> str:
    """Bucket key: ``2024-03-04``, ``2024-03`` or ``2024-Q1``."""
    granularity = Granularity(granularity)
    if granularity == Granularity.quarter:
        return f"{when.year}-Q{(when.month - 1) // 3 + 1}"
    if granularity == Granularity.month:
        return f"{when.year:04d}-{when.month:02d}"
    return f"{when.year:04d}-{when.month:02d}-{when.day:02d}"


def period_start(when: dt.datetime, granularity: Union[Granularity, str]) -> dt.date:
    granularity = Granularity(granularity)
    if granularity == Granularity.quarter:
        return dt.date(when.year, (when.month - 1) // 3 * 3 + 1, 1)
    if granularity == Granularity.month:
        return dt.date(when.year, when.month, 1)
    return dt.date(when.year, when.month, when.day)


_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def period_label(key: str, granularity: Union[Granularity, str]) -> str:
    """Human-readable label for a period key; unknown shapes come back as-is."""
    granularity = Granularity(granularity)
    if granularity == Granularity.quarter:
        return key.replace("-", " ", 1)
    try:
        if granularity == Granularity.month:
            start = dt.datetime.strptime(key, "%Y-%m")
            return f"{_MONTH_ABBR[start.month - 1]} {start.year}"
        start = dt.datetime.strptime(key, "%Y-%m-%d")
    except ValueError:
        return key
    return f"{_MONTH_ABBR[start.month - 1]} {start.day}, {start.year}"


# ---------------------------------------------------------------------------
# Reductions
# ---------------------------------------------------------------------------

# AggregationType -> pandas reducer name
_PANDAS_AGG: Dict[AggregationType, str] = {
    AggregationType.sum: "sum",
    AggregationType.average: "mean",
    AggregationType.count: "count",
    AggregationType.min: "min",
    AggregationType.max: "max",
}


def _pandas_agg(aggregation_type: Union[AggregationType, str]) -> str:
    return _PANDAS_AGG[AggregationType(aggregation_type)]


def aggregate_values(
    values: Iterable[Optional[float]],
    aggregation_type: Union[AggregationType, str] = AggregationType.sum,
) -> float:
    """
    Reduce *values* with the given aggregation.

    None and NaN entries are ignored.  An empty set reduces to 0 for every
    aggregation type so chart axes never see nulls.
    """
    agg_fn = _pandas_agg(aggregation_type)
    series = pd.Series(list(values), dtype="float64").dropna()
    if series.empty:
        return 0
    return float(series.agg(agg_fn))


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _as_mapping(mapping: Union[Mapping, Dict[str, Any], None]) -> Mapping:
    return normalize_mapping(mapping or {})


def date_column(mapping: Mapping) -> Optional[str]:
    entry = mapping.get("date")
    if entry is None or entry.is_formula:
        return None
    return entry.column


def _metric_extractor(
    metric: MetricDescriptor, mapping: Mapping,
) -> Callable[[RawRow], Optional[float]]:
    entry = mapping.get(metric.field)
    formula = metric.formula or (entry.formula if entry is not None else None)
    if formula:
        return lambda row: evaluate_formula(formula, row, mapping)

    column = entry.column if entry is not None else metric.field
    return lambda row: parse_numeric_value(row.get(column))


def filter_by_date_range(
    rows: Sequence[RawRow],
    column: str,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> List[RawRow]:
    """Rows whose date falls within [start, end] (calendar days, inclusive)."""
    if start is None and end is None:
        return list(rows)

    kept: List[RawRow] = []
    for row in rows:
        parsed = parse_date(row.get(column))
        if parsed is None:
            continue
        day = parsed.date()
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        kept.append(row)
    return kept


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def aggregate(
    rows: Sequence[RawRow],
    mapping: Union[Mapping, Dict[str, Any], None],
    granularity: Union[Granularity, str] = Granularity.day,
    metrics: Sequence[MetricDescriptor] = (),
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> List[AggregatedPeriodRow]:
    """
    Group *rows* into calendar buckets and reduce each metric per bucket.

    Rows whose date does not parse are skipped.  Buckets come back in
    ascending order of their start date.
    """
    granularity = Granularity(granularity)
    mapping = _as_mapping(mapping)
    column = date_column(mapping)
    if not rows or not column:
        return []

    if start is not None or end is not None:
        rows = filter_by_date_range(rows, column, start, end)

    extractors = [(m, _metric_extractor(m, mapping)) for m in metrics]

    records: List[Dict[str, Any]] = []
    dropped = 0
    for row in rows:
        parsed = parse_date(row.get(column))
        if parsed is None:
            dropped += 1
            continue
        record = {
            "_key": period_key(parsed, granularity),
            "_start": period_start(parsed, granularity),
        }
        for i, (_, extract) in enumerate(extractors):
            record[f"_m{i}"] = extract(row)
        records.append(record)

    if dropped:
        logger.debug("Skipped %d rows with unparsable %r values", dropped, column)
    if not records:
        return []

    frame = pd.DataFrame.from_records(records)
    value_cols = [f"_m{i}" for i in range(len(extractors))]
    for col in value_cols:
        frame[col] = pd.to_numeric(frame[col], errors="coerce").astype("float64")

    grouped = frame.groupby("_key", sort=False)
    summary = grouped["_start"].agg(["first", "size"])
    if value_cols:
        agg_spec = {
            col: _pandas_agg(metric.aggregation_type)
            for col, (metric, _) in zip(value_cols, extractors)
        }
        # all-empty buckets come back NaN from mean/min/max
        summary = summary.join(grouped.agg(agg_spec).fillna(0))
    summary = summary.sort_values("first", kind="stable")

    result: List[AggregatedPeriodRow] = []
    for key, bucket in summary.iterrows():
        values = {
            metric.field: float(bucket[col])
            for col, (metric, _) in zip(value_cols, extractors)
        }
        result.append(AggregatedPeriodRow(
            period_key=key,
            label=period_label(key, granularity),
            date=bucket["first"],
            row_count=int(bucket["size"]),
            values=values,
        ))
    return result


def metric_total(
    periods: Sequence[AggregatedPeriodRow],
    field: str,
    aggregation_type: Union[AggregationType, str] = AggregationType.sum,
) -> float:
    """Re-reduce the per-period values of *field* (not the raw rows)."""
    values = [p.values[field] for p in periods if field in p.values]
    return aggregate_values(values, aggregation_type)


def metric_range(periods: Sequence[AggregatedPeriodRow], field: str) -> MetricRange:
    values = [p.values[field] for p in periods if p.values.get(field) is not None]
    if not values:
        return MetricRange(min=0, max=0)
    return MetricRange(min=min(values), max=max(values))


def chart_records(periods: Sequence[AggregatedPeriodRow]) -> List[Dict[str, Any]]:
    return [p.to_record() for p in periods]
