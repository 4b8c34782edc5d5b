from __future__ import annotations

import logging

from campfire.asset_store.repository import AssetStore, InMemoryAssetStore
from campfire.config import runtime_config

logger = logging.getLogger(__name__)


def _default_store() -> AssetStore:
    backend = runtime_config.get_store_backend()
    if backend == "firestore":
        from campfire.asset_store.firestore_repository import FirestoreAssetStore

        return FirestoreAssetStore()
    return InMemoryAssetStore()


_asset_store: AssetStore | None = None


def get_asset_store() -> AssetStore:
    global _asset_store
    if _asset_store is None:
        _asset_store = _default_store()
        logger.info("asset store backend: %s", type(_asset_store).__name__)
    return _asset_store


def set_asset_store(store: AssetStore | None) -> None:
    """Install ``store`` as the process default; None re-reads the backend setting."""
    global _asset_store
    _asset_store = store
