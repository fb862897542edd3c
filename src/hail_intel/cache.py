"""File-based JSON cache for archive responses, with TTL expiry."""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_CACHE_DIR = Path.home() / ".cache" / "hail-intel"

# Archive days older than this are final; younger ones can still be revised.
ARCHIVE_TTL = 7 * 86400
RECENT_ARCHIVE_TTL = 3600

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if needed."""
    _CACHE_DIR.mkdir(parents=True, exist_ok=True)
    return _CACHE_DIR


def _path_for(key: str) -> Path:
    return get_cache_dir() / f"{_UNSAFE.sub('_', key)}.json"


def cache_get_json(key: str, max_age_seconds: int) -> Any | None:
    """Return the cached payload for *key* if present and fresh, else None."""
    path = _path_for(key)
    if not path.exists():
        return None

    try:
        envelope = json.loads(path.read_text(encoding="utf-8"))
        stored_at = float(envelope["stored_at"])
        payload = envelope["payload"]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        logger.debug("Ignoring unreadable cache entry %s", path.name)
        return None

    if time.time() - stored_at > max_age_seconds:
        logger.debug("Cache expired for %s", key)
        return None

    logger.debug("Cache hit for %s", key)
    return payload


def cache_put_json(key: str, payload: Any) -> None:
    """Store a JSON-serialisable payload under *key* with the current time."""
    path = _path_for(key)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps({"stored_at": time.time(), "payload": payload}), encoding="utf-8")
    tmp.replace(path)
    logger.debug("Cached %s", key)
