"""
Engine API routes, mounted as a sub-router on the main FastAPI app.

Profiles, period aggregation and formula previews over uploaded tables.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from core.models import AggregateRequest, FormulaPreviewRequest, Mapping, ParsedTable
from core.storage import get_profile, get_session, get_session_meta, save_profile
from core.utils import format_number, json_safe_value, pct
from engine.aggregate import (
    aggregate,
    chart_records,
    date_column,
    metric_range,
    metric_total,
)
from engine.formula import evaluate_formula, formula_references
from engine.mapping import default_metrics, is_mapping_complete, normalize_mapping
from engine.profile import build_profile

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["engine"])


def _require_session_id(request: Request) -> str:
    sid = request.headers.get("X-Session-Id")
    if not sid:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id header.")
    return sid


def _parse_created_at(meta: dict) -> float:
    created = meta.get("created_at") if isinstance(meta, dict) else None
    if isinstance(created, str) and created:
        try:
            return datetime.fromisoformat(created.replace("Z", "")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


def _pick_table_name(sess: dict, meta_store: dict, requested: Optional[str] = None) -> str:
    """Pick the most recent table or the explicitly requested one."""
    if not sess:
        raise HTTPException(status_code=400, detail="No tables uploaded.")

    if requested:
        if requested not in sess:
            raise HTTPException(status_code=404, detail=f"Table '{requested}' not found")
        return requested

    if meta_store:
        def sort_key(name: str):
            return _parse_created_at(meta_store.get(name, {}))
        return max(sess.keys(), key=sort_key)

    return next(reversed(sess.keys()))


def _request_mapping(raw: Optional[dict]) -> Mapping:
    """Normalize a request mapping; malformed entries are a 422 like any bad payload."""
    try:
        return normalize_mapping(raw)
    except ValidationError as exc:
        detail = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ]
        raise HTTPException(status_code=422, detail=detail) from exc


def _load_table(request: Request, requested: Optional[str]) -> tuple[str, str, ParsedTable]:
    sid = _require_session_id(request)
    sess = get_session(sid)
    name = _pick_table_name(sess, get_session_meta(sid), requested)
    return sid, name, sess[name]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/tables/{table_name}/profile")
async def table_profile(request: Request, table_name: str):
    """Column types and the suggested field mapping for a table."""
    sid, name, table = _load_table(request, table_name)
    profile = get_profile(sid, name)
    if profile is None:
        profile = build_profile(table, name)
        save_profile(sid, profile)
    return profile.model_dump(mode="json")


@router.post("/aggregate")
async def aggregate_table(request: Request, body: AggregateRequest):
    """
    Aggregate a table into period buckets.

    Metrics default to one per mapped field (percentages averaged, everything
    else summed).  Returns periods plus per-metric totals and ranges.
    """
    _, name, table = _load_table(request, body.table)

    mapping = _request_mapping(body.mapping)
    if not is_mapping_complete(mapping):
        raise HTTPException(status_code=400, detail="Mapping has no date column.")

    metrics = body.metrics if body.metrics is not None else default_metrics(mapping)
    periods = aggregate(
        table.rows,
        mapping,
        body.granularity,
        metrics,
        start=body.start_date,
        end=body.end_date,
    )

    totals = {}
    ranges = {}
    for metric in metrics:
        total = metric_total(periods, metric.field, metric.aggregation_type)
        totals[metric.field] = {
            "value": json_safe_value(total),
            "display": format_number(total, metric.is_percentage),
        }
        ranges[metric.field] = metric_range(periods, metric.field).model_dump()

    grouped_rows = sum(p.row_count for p in periods)
    resp = {
        "table": name,
        "granularity": body.granularity.value,
        "date_column": date_column(mapping),
        "metrics": [m.model_dump(mode="json") for m in metrics],
        "periods": [p.model_dump(mode="json") for p in periods],
        "chart_data": chart_records(periods),
        "totals": totals,
        "ranges": ranges,
        "total_periods": len(periods),
        "is_empty": not periods,
        "coverage_pct": pct(grouped_rows, len(table.rows)),
    }
    logger.info(
        "AGGREGATE %s: %d periods (%s) from %d rows",
        name, len(periods), body.granularity.value, len(table.rows),
    )
    return resp


@router.post("/formula/preview")
async def formula_preview(request: Request, body: FormulaPreviewRequest):
    """Evaluate a formula against the first rows so users can check it."""
    _, name, table = _load_table(request, body.table)

    mapping = _request_mapping(body.mapping)
    limit = max(min(body.limit, 100), 0)
    results = [evaluate_formula(body.formula, row, mapping) for row in table.rows[:limit]]
    missing = [
        ref for ref in formula_references(body.formula)
        if ref not in table.columns
        and ref.lower() not in {c.lower() for c in table.columns}
        and not any(ref in (e.column, e.label, f) for f, e in mapping.items())
    ]

    return {
        "table": name,
        "formula": body.formula,
        "results": results,
        "evaluated": sum(1 for r in results if r is not None),
        "unknown_references": missing,
    }
