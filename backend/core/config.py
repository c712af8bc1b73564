"""Environment-driven settings for the HTTP layer.

Values are read once at import; a local ``.env`` file is honoured.
"""

from __future__ import annotations

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip() or default


def _env_int(key: str, default: int) -> int:
    raw = _env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(key: str, default: str) -> List[str]:
    raw = _env(key, default) or default
    return [item.strip() for item in raw.split(",") if item.strip()]


CORS_ORIGINS = _env_list("DATAVISTA_CORS_ORIGINS", "*")

# Rows per preview page
PREVIEW_LIMIT = _env_int("DATAVISTA_PREVIEW_LIMIT", 100)

MAX_UPLOAD_BYTES = _env_int("DATAVISTA_MAX_UPLOAD_MB", 25) * 1024 * 1024
