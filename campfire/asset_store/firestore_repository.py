"""Firestore-backed asset store."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from google.api_core import exceptions as gexc

from campfire.asset_store.queries import check_brand_code_batch
from campfire.asset_store.repository import (
    StoreConflict,
    StoreError,
    StoreNotFound,
    StorePermissionDenied,
)
from campfire.config import runtime_config
from campfire.recipe_review.models import (
    Recipe,
    RecipeAsset,
    RecipeDecisionEvent,
    RecipeHistoryEntry,
    RecipeStatusEntry,
)
from campfire.review.models import AdGroup, AdUnit, AdUnitStatus, ReviewLock

logger = logging.getLogger(__name__)

GROUPS = "adGroups"
ASSETS = "assets"
RECIPES = "recipes"
HISTORY = "history"
RECIPE_RESPONSES = "recipeResponses"


@contextmanager
def _translate_errors(path: str) -> Iterator[None]:
    try:
        yield
    except gexc.PermissionDenied as exc:
        raise StorePermissionDenied(f"{path}: {exc}") from exc
    except (gexc.FailedPrecondition, gexc.Aborted, gexc.Conflict) as exc:
        raise StoreConflict(f"{path}: {exc}") from exc
    except gexc.NotFound as exc:
        raise StoreNotFound(f"{path}: {exc}") from exc
    except gexc.GoogleAPICallError as exc:
        raise StoreError(f"{path}: {exc}") from exc


def _is_group_asset(snap: Any) -> bool:
    # collection group "assets" also matches adGroups/{g}/recipes/{r}/assets
    path = getattr(getattr(snap, "reference", None), "path", "") or ""
    parts = path.split("/")
    return len(parts) == 4 and parts[0] == GROUPS and parts[2] == ASSETS


def _group_id_from(snap: Any) -> Optional[str]:
    path = getattr(getattr(snap, "reference", None), "path", "") or ""
    parts = path.split("/")
    return parts[1] if len(parts) >= 2 and parts[0] == GROUPS else None


class FirestoreAssetStore:
    """Asset store over the hosted ``adGroups`` document tree."""

    def __init__(self, client: Optional[object] = None) -> None:  # pragma: no cover - optional dep
        try:
            from google.cloud import firestore  # type: ignore
        except Exception as exc:
            raise RuntimeError("google-cloud-firestore not installed") from exc
        self._firestore = firestore
        if client is None:
            project = runtime_config.get_firestore_project()
            if not project:
                raise RuntimeError("GCP project is required for Firestore asset store")
            client = firestore.Client(project=project)  # type: ignore[arg-type]
        self._client = client

    def _group_doc(self, group_id: str):
        return self._client.collection(GROUPS).document(group_id)

    def _unit_doc(self, group_id: str, unit_id: str):
        return self._group_doc(group_id).collection(ASSETS).document(unit_id)

    def _recipe_doc(self, group_id: str, recipe_id: str):
        return self._group_doc(group_id).collection(RECIPES).document(recipe_id)

    def _unit_from(self, snap: Any, group_id: Optional[str] = None) -> AdUnit:
        data = snap.to_dict() or {}
        data["id"] = snap.id
        data["groupId"] = data.get("groupId") or group_id or _group_id_from(snap)
        return AdUnit(**data)

    def _recipe_from(self, snap: Any, group_id: Optional[str] = None) -> Recipe:
        data = snap.to_dict() or {}
        data["id"] = snap.id
        data["groupId"] = data.get("groupId") or group_id or _group_id_from(snap)
        return Recipe(**data)

    # groups

    def get_ad_group(self, group_id: str) -> Optional[AdGroup]:
        with _translate_errors(f"{GROUPS}/{group_id}"):
            snap = self._group_doc(group_id).get()
        if not snap or not snap.exists:
            return None
        data = snap.to_dict() or {}
        data["id"] = snap.id
        return AdGroup(**data)

    def update_ad_group(self, group_id: str, fields: Dict[str, Any]) -> None:
        with _translate_errors(f"{GROUPS}/{group_id}"):
            self._group_doc(group_id).update(dict(fields))

    def acquire_group_lock(self, group_id: str, lock: ReviewLock, now: datetime) -> AdGroup:
        path = f"{GROUPS}/{group_id}"
        doc = self._group_doc(group_id)
        with _translate_errors(path):
            snap = doc.get()
            if not snap or not snap.exists:
                raise StoreNotFound(f"no document to lock: {path}")
            data = snap.to_dict() or {}
            current = data.get("reviewLock")
            if current:
                held = ReviewLock(**current)
                if held.holderId != lock.holderId and held.is_active(now):
                    raise StoreConflict(f"{path} is locked by {held.holderId}")
            # conditional on the snapshot read above
            option = self._client.write_option(last_update_time=snap.update_time)
            doc.update({"reviewLock": lock.model_dump()}, option=option)
        data["id"] = snap.id
        data["reviewLock"] = lock.model_dump()
        logger.debug("lock acquired on %s by %s", path, lock.holderId)
        return AdGroup(**data)

    def release_group_lock(self, group_id: str, holder_id: str) -> None:
        path = f"{GROUPS}/{group_id}"
        doc = self._group_doc(group_id)
        with _translate_errors(path):
            snap = doc.get()
            if not snap or not snap.exists:
                return
            current = (snap.to_dict() or {}).get("reviewLock") or {}
            if current.get("holderId") != holder_id:
                return
            doc.update({"reviewLock": None})

    # ad units

    def list_ad_units(self, group_id: str, unresolved_only: bool = False) -> List[AdUnit]:
        query = self._group_doc(group_id).collection(ASSETS)
        if unresolved_only:
            query = query.where("isResolved", "==", False)
        with _translate_errors(f"{GROUPS}/{group_id}/{ASSETS}"):
            return [self._unit_from(snap, group_id) for snap in query.stream()]

    def query_ad_units_by_brand_codes(self, brand_codes: List[str], unresolved_only: bool = True) -> List[AdUnit]:
        check_brand_code_batch(brand_codes)
        query = (
            self._client.collection_group(ASSETS)
            .where("brandCode", "in", list(brand_codes))
            .where("status", "==", AdUnitStatus.ready.value)
        )
        if unresolved_only:
            query = query.where("isResolved", "==", False)
        with _translate_errors(f"collectionGroup({ASSETS})"):
            return [self._unit_from(snap) for snap in query.stream() if _is_group_asset(snap)]

    def list_ad_units_by_parent(self, group_id: str, parent_id: str) -> List[AdUnit]:
        query = self._group_doc(group_id).collection(ASSETS).where("parentAdId", "==", parent_id)
        with _translate_errors(f"{GROUPS}/{group_id}/{ASSETS}"):
            return [self._unit_from(snap, group_id) for snap in query.stream()]

    def get_ad_unit(self, group_id: str, unit_id: str) -> Optional[AdUnit]:
        with _translate_errors(f"{GROUPS}/{group_id}/{ASSETS}/{unit_id}"):
            snap = self._unit_doc(group_id, unit_id).get()
        if not snap or not snap.exists:
            return None
        return self._unit_from(snap, group_id)

    def create_ad_unit(self, unit: AdUnit) -> AdUnit:
        data = unit.model_dump()
        data.pop("id", None)
        with _translate_errors(unit.path):
            self._unit_doc(unit.groupId, unit.id).set(data)
        return unit

    def update_ad_unit(self, group_id: str, unit_id: str, fields: Dict[str, Any]) -> None:
        with _translate_errors(f"{GROUPS}/{group_id}/{ASSETS}/{unit_id}"):
            self._unit_doc(group_id, unit_id).update(dict(fields))

    def add_ad_unit_history(self, group_id: str, unit_id: str, entry: Dict[str, Any]) -> None:
        with _translate_errors(f"{GROUPS}/{group_id}/{ASSETS}/{unit_id}/{HISTORY}"):
            self._unit_doc(group_id, unit_id).collection(HISTORY).add(dict(entry))

    # recipes

    def list_recipes(self, group_id: str, status: Optional[str] = None) -> List[Recipe]:
        query = self._group_doc(group_id).collection(RECIPES)
        if status:
            query = query.where("status", "==", status)
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPES}"):
            return [self._recipe_from(snap, group_id) for snap in query.stream()]

    def query_recipes_by_brand_codes(self, brand_codes: List[str], status: Optional[str] = None) -> List[Recipe]:
        check_brand_code_batch(brand_codes)
        query = self._client.collection_group(RECIPES).where("brandCode", "in", list(brand_codes))
        if status:
            query = query.where("status", "==", status)
        with _translate_errors(f"collectionGroup({RECIPES})"):
            return [self._recipe_from(snap) for snap in query.stream()]

    def get_recipe(self, group_id: str, recipe_id: str) -> Optional[Recipe]:
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPES}/{recipe_id}"):
            snap = self._recipe_doc(group_id, recipe_id).get()
        if not snap or not snap.exists:
            return None
        return self._recipe_from(snap, group_id)

    def list_recipe_assets(self, group_id: str, recipe_id: str) -> List[RecipeAsset]:
        col = self._recipe_doc(group_id, recipe_id).collection(ASSETS)
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPES}/{recipe_id}/{ASSETS}"):
            return [RecipeAsset(**{**(snap.to_dict() or {}), "id": snap.id}) for snap in col.stream()]

    def update_recipe(
        self,
        group_id: str,
        recipe_id: str,
        fields: Dict[str, Any],
        history_entry: Optional[RecipeHistoryEntry] = None,
    ) -> None:
        payload = dict(fields)
        if history_entry is not None:
            payload["history"] = self._firestore.ArrayUnion([history_entry.to_document()])
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPES}/{recipe_id}"):
            self._recipe_doc(group_id, recipe_id).update(payload)

    def merge_recipe(self, group_id: str, recipe_id: str, fields: Dict[str, Any]) -> None:
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPES}/{recipe_id}"):
            self._recipe_doc(group_id, recipe_id).set(dict(fields), merge=True)

    def add_recipe_status_history(self, group_id: str, recipe_id: str, entry: RecipeStatusEntry) -> None:
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPES}/{recipe_id}/{HISTORY}"):
            self._recipe_doc(group_id, recipe_id).collection(HISTORY).add(entry.model_dump())

    def add_recipe_response(self, group_id: str, event: RecipeDecisionEvent) -> None:
        with _translate_errors(f"{GROUPS}/{group_id}/{RECIPE_RESPONSES}"):
            self._group_doc(group_id).collection(RECIPE_RESPONSES).add(event.model_dump())
