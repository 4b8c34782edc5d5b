"""Runtime configuration helpers for the review engines."""
from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 1800
DEFAULT_LAST_VIEWED_CACHE_SIZE = 500
STORE_BACKENDS = frozenset({"memory", "firestore"})


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def _positive_int(name: str, default: int) -> int:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("ignoring non-integer %s=%r", name, raw)
        return default
    if value <= 0:
        logger.warning("ignoring non-positive %s=%r", name, raw)
        return default
    return value


def get_store_backend() -> str:
    backend = (_get_env("CAMPFIRE_STORE_BACKEND") or "memory").strip().lower()
    if backend not in STORE_BACKENDS:
        raise RuntimeError(
            f"Unsupported CAMPFIRE_STORE_BACKEND={backend}. Use one of: {', '.join(sorted(STORE_BACKENDS))}"
        )
    return backend


def get_firestore_project() -> Optional[str]:
    return _get_env("GCP_PROJECT_ID") or _get_env("GCP_PROJECT")


def get_review_lock_ttl_seconds() -> int:
    return _positive_int("REVIEW_LOCK_TTL_SECONDS", DEFAULT_LOCK_TTL_SECONDS)


def get_last_viewed_cache_size() -> int:
    return _positive_int("LAST_VIEWED_CACHE_SIZE", DEFAULT_LAST_VIEWED_CACHE_SIZE)


def audit_strict() -> bool:
    return _get_env("AUDIT_STRICT") == "1"
