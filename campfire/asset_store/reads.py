"""Read guard turning store failures into review errors at the call site."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from campfire.asset_store.repository import StoreError
from campfire.common.errors import TransientWriteError

logger = logging.getLogger(__name__)


@contextmanager
def store_read(what: str, pending: Optional[Dict[str, Any]] = None) -> Iterator[None]:
    """Raise ``TransientWriteError`` for any store failure inside the block.

    ``pending`` is the decision being submitted, if any, so the caller can
    resubmit it once the store is reachable again.
    """
    try:
        yield
    except StoreError as exc:
        logger.warning("store read failed for %s: %s", what, exc)
        raise TransientWriteError(f"Failed to load {what}.", pending=pending) from exc
