from fastapi import FastAPI, UploadFile, File, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from core.config import CORS_ORIGINS, MAX_UPLOAD_BYTES, PREVIEW_LIMIT
from core.storage import (
    clear_session,
    get_session,
    get_session_hashes,
    get_session_meta,
    save_profile,
)
from core.utils import records_json_safe
from engine.loader import IngestionError, file_extension, read_table
from engine.profile import build_profile
from server.api import router as engine_router
from collections import OrderedDict
from datetime import datetime, timezone
import hashlib
import json
import logging

logger = logging.getLogger("uvicorn.error")
app = FastAPI(title="DataVista", description="Turn spreadsheets into time-series charts")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount the engine API router
app.include_router(engine_router)


PREVIEW_CACHE_MAX = 512
_preview_cache: "OrderedDict[tuple, dict]" = OrderedDict()


def _preview_cache_get(key: tuple):
    cached = _preview_cache.get(key)
    if cached is not None:
        _preview_cache.move_to_end(key)
    return cached


def _preview_cache_set(key: tuple, value: dict) -> None:
    _preview_cache[key] = value
    _preview_cache.move_to_end(key)
    if len(_preview_cache) > PREVIEW_CACHE_MAX:
        _preview_cache.popitem(last=False)


def _drop_cached_previews(sid: str, name: str = None) -> None:
    keys = [k for k in _preview_cache if k[0] == sid and (name is None or k[1] == name)]
    for k in keys:
        _preview_cache.pop(k, None)


def require_session_id(request: Request) -> str:
    sid = request.headers.get("X-Session-Id")
    if not sid:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id header.")
    return sid


def _sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _log_response(ctx: str, payload) -> None:
    """Pretty-print JSON-able payloads; fall back to str()."""
    try:
        logger.info("%s response: %s", ctx, json.dumps(payload, indent=2, default=str))
    except Exception:
        logger.info("%s response (non-serializable): %s", ctx, str(payload))


@app.post("/upload")
async def upload(request: Request, file: UploadFile = File(...)):
    sid = require_session_id(request)
    content = await file.read()

    file_size = len(content)
    if file_size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File is too large.")
    filename = file.filename or "table.csv"
    ext = file_extension(filename)

    # duplicate detection (by content hash)
    file_hash = _sha256_bytes(content)
    sess_hashes = get_session_hashes(sid)
    if file_hash in sess_hashes:
        existing_name = sess_hashes[file_hash]
        dup_resp = {
            "ok": False,
            "duplicate": True,
            "table": existing_name,
            "detail": "Duplicate upload: this file was already uploaded for this session.",
        }
        _log_response("UPLOAD (duplicate)", dup_resp)
        return JSONResponse(status_code=409, content=dup_resp)

    try:
        table = read_table(content, filename)
    except IngestionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # --- session + unique name ---
    sess = get_session(sid)
    meta_store = get_session_meta(sid)

    base = filename.rsplit(".", 1)[0] if filename else "table"
    name = base
    i = 1
    while name in sess:
        i += 1
        name = f"{base}_{i}"

    sess[name] = table
    sess_hashes[file_hash] = name
    _drop_cached_previews(sid, name)

    profile = build_profile(table, name)
    save_profile(sid, profile)

    # --- metadata ---
    created_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    meta_store[name] = {
        "file_name": filename,
        "file_ext": ext,
        "file_size": file_size,
        "sheet_name": table.sheet_name,
        "created_at": created_at,
        "n_rows": len(table.rows),
        "n_cols": len(table.columns),
        "columns": list(table.columns),
        "column_types": {c.name: c.inferred_type.value for c in profile.columns},
    }

    resp = {
        "ok": True,
        "table": name,
        "rows": len(table.rows),
        "columns": list(table.columns),
        "profile": profile.model_dump(mode="json"),
        "meta": meta_store[name],
    }
    _log_response("UPLOAD", resp)
    return resp


@app.get("/tables")
async def tables(request: Request):
    sid = require_session_id(request)
    sess = get_session(sid)
    meta_store = get_session_meta(sid)

    tables_info = []
    for name, table in sess.items():
        meta = meta_store.get(name) or {
            "file_name": name,
            "n_rows": len(table.rows),
            "n_cols": len(table.columns),
            "columns": list(table.columns),
        }
        tables_info.append({"name": name, **meta})

    resp = {"tables": tables_info}
    _log_response("TABLES", resp)
    return resp


@app.get("/table/{table_name}/preview")
async def table_preview(request: Request, table_name: str, offset: int = 0, limit: int = 50):
    """Get a preview of the table rows with cursor pagination."""
    sid = require_session_id(request)
    sess = get_session(sid)

    if table_name not in sess:
        raise HTTPException(status_code=404, detail=f"Table '{table_name}' not found")

    offset = max(offset, 0)
    limit = max(min(limit, PREVIEW_LIMIT), 0)

    cache_key = (sid, table_name, offset, limit)
    cached = _preview_cache_get(cache_key)
    if cached is not None:
        return cached

    table = sess[table_name]
    total_rows = len(table.rows)
    end = min(offset + limit, total_rows)
    rows = records_json_safe(table.rows[offset:end])

    has_more = end < total_rows
    resp = {
        "table": table_name,
        "columns": list(table.columns),
        "rows": rows,
        "total_rows": total_rows,
        "offset": offset,
        "limit": limit,
        "returned_rows": len(rows),
        "has_more": has_more,
        "next_offset": end if has_more else None,
    }

    _preview_cache_set(cache_key, resp)
    return resp


@app.delete("/session")
async def reset_session(request: Request):
    """Drop every table uploaded in this session."""
    sid = require_session_id(request)
    clear_session(sid)
    _drop_cached_previews(sid)
    return {"ok": True}
