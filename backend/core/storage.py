"""
In-memory session store for uploaded tables and their profiles.
"""

from __future__ import annotations

from typing import Dict, Optional

from .models import DatasetProfile, ParsedTable

# session_id -> {table_name: ParsedTable}
SESSIONS: Dict[str, Dict[str, ParsedTable]] = {}

# Per-session map of file content hash -> table name
SESS_HASHES: Dict[str, Dict[str, str]] = {}

# Per-session map of table name -> metadata dict
SESS_META: Dict[str, Dict[str, dict]] = {}

# session_id -> {table_name: DatasetProfile}
SESS_PROFILES: Dict[str, Dict[str, DatasetProfile]] = {}


def get_session(session_id: str) -> Dict[str, ParsedTable]:
    if session_id not in SESSIONS:
        SESSIONS[session_id] = {}
    return SESSIONS[session_id]


def get_session_hashes(session_id: str) -> Dict[str, str]:
    if session_id not in SESS_HASHES:
        SESS_HASHES[session_id] = {}
    return SESS_HASHES[session_id]


def get_session_meta(session_id: str) -> Dict[str, dict]:
    """Return (and lazily init) the metadata map for this session."""
    if session_id not in SESS_META:
        SESS_META[session_id] = {}
    return SESS_META[session_id]


def save_profile(session_id: str, profile: DatasetProfile) -> None:
    SESS_PROFILES.setdefault(session_id, {})[profile.table] = profile


def get_profile(session_id: str, table_name: str) -> Optional[DatasetProfile]:
    return SESS_PROFILES.get(session_id, {}).get(table_name)


def clear_session(session_id: str) -> None:
    """Forget every table, hash and profile held for the session."""
    for store in (SESSIONS, SESS_HASHES, SESS_META, SESS_PROFILES):
        store.pop(session_id, None)
