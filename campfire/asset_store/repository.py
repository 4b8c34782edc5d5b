"""Asset Store contract and the in-memory implementation.

The review core only talks to the document store through this narrow
read/write surface. Paths mirror the hosted layout:

- ``adGroups/{groupId}``
- ``adGroups/{groupId}/assets/{unitId}`` (+ ``/history``)
- ``adGroups/{groupId}/recipes/{recipeId}`` (+ ``/assets``, ``/history``)
- ``adGroups/{groupId}/recipeResponses``
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from campfire.asset_store.queries import check_brand_code_batch
from campfire.recipe_review.models import (
    Recipe,
    RecipeAsset,
    RecipeDecisionEvent,
    RecipeHistoryEntry,
    RecipeStatusEntry,
)
from campfire.review.models import AdGroup, AdUnit, AdUnitStatus, ReviewLock


class StoreError(Exception):
    """Base store failure."""


class StorePermissionDenied(StoreError):
    """The store refused the operation for the current credentials."""


class StoreConflict(StoreError):
    """A conditional write lost against a concurrent change."""


class StoreNotFound(StoreError):
    """The document to update does not exist."""


def group_path(group_id: str) -> str:
    return f"adGroups/{group_id}"


def unit_path(group_id: str, unit_id: str) -> str:
    return f"adGroups/{group_id}/assets/{unit_id}"


def recipe_path(group_id: str, recipe_id: str) -> str:
    return f"adGroups/{group_id}/recipes/{recipe_id}"


class AssetStore(Protocol):
    def get_ad_group(self, group_id: str) -> Optional[AdGroup]: ...
    def update_ad_group(self, group_id: str, fields: Dict[str, Any]) -> None: ...
    def acquire_group_lock(self, group_id: str, lock: ReviewLock, now: datetime) -> AdGroup: ...
    def release_group_lock(self, group_id: str, holder_id: str) -> None: ...

    def list_ad_units(self, group_id: str, unresolved_only: bool = False) -> List[AdUnit]: ...
    def query_ad_units_by_brand_codes(self, brand_codes: List[str], unresolved_only: bool = True) -> List[AdUnit]: ...
    def list_ad_units_by_parent(self, group_id: str, parent_id: str) -> List[AdUnit]: ...
    def get_ad_unit(self, group_id: str, unit_id: str) -> Optional[AdUnit]: ...
    def create_ad_unit(self, unit: AdUnit) -> AdUnit: ...
    def update_ad_unit(self, group_id: str, unit_id: str, fields: Dict[str, Any]) -> None: ...
    def add_ad_unit_history(self, group_id: str, unit_id: str, entry: Dict[str, Any]) -> None: ...

    def list_recipes(self, group_id: str, status: Optional[str] = None) -> List[Recipe]: ...
    def query_recipes_by_brand_codes(self, brand_codes: List[str], status: Optional[str] = None) -> List[Recipe]: ...
    def get_recipe(self, group_id: str, recipe_id: str) -> Optional[Recipe]: ...
    def list_recipe_assets(self, group_id: str, recipe_id: str) -> List[RecipeAsset]: ...
    def update_recipe(
        self,
        group_id: str,
        recipe_id: str,
        fields: Dict[str, Any],
        history_entry: Optional[RecipeHistoryEntry] = None,
    ) -> None: ...
    def merge_recipe(self, group_id: str, recipe_id: str, fields: Dict[str, Any]) -> None: ...
    def add_recipe_status_history(self, group_id: str, recipe_id: str, entry: RecipeStatusEntry) -> None: ...
    def add_recipe_response(self, group_id: str, event: RecipeDecisionEvent) -> None: ...


@dataclass
class StoreWrite:
    op: str
    path: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreQuery:
    kind: str
    params: Dict[str, Any] = field(default_factory=dict)


class InMemoryAssetStore:
    """Dictionary-backed store. Records every write and query it serves."""

    def __init__(self) -> None:
        self._groups: Dict[str, AdGroup] = {}
        self._units: Dict[Tuple[str, str], AdUnit] = {}
        self._unit_history: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self._recipes: Dict[Tuple[str, str], Recipe] = {}
        self._recipe_assets: Dict[Tuple[str, str], List[RecipeAsset]] = {}
        self._recipe_status_history: Dict[Tuple[str, str], List[RecipeStatusEntry]] = {}
        self._recipe_responses: Dict[str, List[RecipeDecisionEvent]] = {}
        self._write_failures: List[Tuple[str, StoreError]] = []
        self.writes: List[StoreWrite] = []
        self.queries: List[StoreQuery] = []

    # seeding, no write records

    def put_ad_group(self, group: AdGroup) -> AdGroup:
        self._groups[group.id] = group.model_copy(deep=True)
        return group

    def put_ad_unit(self, unit: AdUnit) -> AdUnit:
        self._units[(unit.groupId, unit.id)] = unit.model_copy(deep=True)
        return unit

    def put_recipe(self, recipe: Recipe, assets: Optional[List[RecipeAsset]] = None) -> Recipe:
        self._recipes[(recipe.groupId, recipe.id)] = recipe.model_copy(deep=True)
        if assets is not None:
            self._recipe_assets[(recipe.groupId, recipe.id)] = [a.model_copy(deep=True) for a in assets]
        return recipe

    def fail_writes(self, path_prefix: str, error: StoreError) -> None:
        """Make writes under ``path_prefix`` raise ``error`` until cleared."""
        self._write_failures.append((path_prefix, error))

    def clear_failures(self) -> None:
        self._write_failures.clear()

    def history_for(self, group_id: str, unit_id: str) -> List[Dict[str, Any]]:
        return list(self._unit_history.get((group_id, unit_id), []))

    def recipe_responses(self, group_id: str) -> List[RecipeDecisionEvent]:
        return list(self._recipe_responses.get(group_id, []))

    def recipe_status_history(self, group_id: str, recipe_id: str) -> List[RecipeStatusEntry]:
        return list(self._recipe_status_history.get((group_id, recipe_id), []))

    def writes_to(self, path_fragment: str) -> List[StoreWrite]:
        return [w for w in self.writes if path_fragment in w.path]

    def _record(self, op: str, path: str, data: Dict[str, Any]) -> None:
        for prefix, error in self._write_failures:
            if path.startswith(prefix):
                raise error
        self.writes.append(StoreWrite(op=op, path=path, data=dict(data)))

    # groups

    def get_ad_group(self, group_id: str) -> Optional[AdGroup]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    def update_ad_group(self, group_id: str, fields: Dict[str, Any]) -> None:
        path = group_path(group_id)
        group = self._groups.get(group_id)
        if group is None:
            raise StoreNotFound(f"no document to update: {path}")
        self._record("update", path, fields)
        self._groups[group_id] = AdGroup.model_validate({**group.model_dump(), **fields})

    def acquire_group_lock(self, group_id: str, lock: ReviewLock, now: datetime) -> AdGroup:
        path = group_path(group_id)
        group = self._groups.get(group_id)
        if group is None:
            raise StoreNotFound(f"no document to lock: {path}")
        current = group.reviewLock
        if current and current.holderId != lock.holderId and current.is_active(now):
            raise StoreConflict(f"{path} is locked by {current.holderId}")
        self._record("lock", path, {"reviewLock": lock.model_dump()})
        group.reviewLock = lock.model_copy()
        return group.model_copy(deep=True)

    def release_group_lock(self, group_id: str, holder_id: str) -> None:
        path = group_path(group_id)
        group = self._groups.get(group_id)
        if group is None or group.reviewLock is None or group.reviewLock.holderId != holder_id:
            return
        self._record("unlock", path, {"reviewLock": None})
        group.reviewLock = None

    # ad units

    def list_ad_units(self, group_id: str, unresolved_only: bool = False) -> List[AdUnit]:
        self.queries.append(StoreQuery("ad_units", {"group_id": group_id, "unresolved_only": unresolved_only}))
        units = [u for (g, _), u in self._units.items() if g == group_id]
        if unresolved_only:
            units = [u for u in units if not u.isResolved]
        return [u.model_copy(deep=True) for u in units]

    def query_ad_units_by_brand_codes(self, brand_codes: List[str], unresolved_only: bool = True) -> List[AdUnit]:
        check_brand_code_batch(brand_codes)
        self.queries.append(
            StoreQuery("ad_units_by_brand", {"brand_codes": list(brand_codes), "unresolved_only": unresolved_only})
        )
        units = [
            u
            for u in self._units.values()
            if u.brandCode in brand_codes and u.status == AdUnitStatus.ready.value
        ]
        if unresolved_only:
            units = [u for u in units if not u.isResolved]
        return [u.model_copy(deep=True) for u in units]

    def list_ad_units_by_parent(self, group_id: str, parent_id: str) -> List[AdUnit]:
        self.queries.append(StoreQuery("ad_units_by_parent", {"group_id": group_id, "parent_id": parent_id}))
        return [
            u.model_copy(deep=True)
            for (g, _), u in self._units.items()
            if g == group_id and u.parentAdId == parent_id
        ]

    def get_ad_unit(self, group_id: str, unit_id: str) -> Optional[AdUnit]:
        self.queries.append(StoreQuery("ad_unit", {"group_id": group_id, "unit_id": unit_id}))
        unit = self._units.get((group_id, unit_id))
        return unit.model_copy(deep=True) if unit else None

    def create_ad_unit(self, unit: AdUnit) -> AdUnit:
        self._record("create", unit_path(unit.groupId, unit.id), unit.model_dump())
        self._units[(unit.groupId, unit.id)] = unit.model_copy(deep=True)
        return unit

    def update_ad_unit(self, group_id: str, unit_id: str, fields: Dict[str, Any]) -> None:
        path = unit_path(group_id, unit_id)
        unit = self._units.get((group_id, unit_id))
        if unit is None:
            raise StoreNotFound(f"no document to update: {path}")
        self._record("update", path, fields)
        self._units[(group_id, unit_id)] = AdUnit.model_validate({**unit.model_dump(), **fields})

    def add_ad_unit_history(self, group_id: str, unit_id: str, entry: Dict[str, Any]) -> None:
        self._record("add", f"{unit_path(group_id, unit_id)}/history", entry)
        self._unit_history.setdefault((group_id, unit_id), []).append(dict(entry))

    # recipes

    def list_recipes(self, group_id: str, status: Optional[str] = None) -> List[Recipe]:
        self.queries.append(StoreQuery("recipes", {"group_id": group_id, "status": status}))
        recipes = [r for (g, _), r in self._recipes.items() if g == group_id]
        if status:
            recipes = [r for r in recipes if r.status == status]
        return [r.model_copy(deep=True) for r in recipes]

    def query_recipes_by_brand_codes(self, brand_codes: List[str], status: Optional[str] = None) -> List[Recipe]:
        check_brand_code_batch(brand_codes)
        self.queries.append(StoreQuery("recipes_by_brand", {"brand_codes": list(brand_codes), "status": status}))
        recipes = [r for r in self._recipes.values() if r.brandCode in brand_codes]
        if status:
            recipes = [r for r in recipes if r.status == status]
        return [r.model_copy(deep=True) for r in recipes]

    def get_recipe(self, group_id: str, recipe_id: str) -> Optional[Recipe]:
        recipe = self._recipes.get((group_id, recipe_id))
        return recipe.model_copy(deep=True) if recipe else None

    def list_recipe_assets(self, group_id: str, recipe_id: str) -> List[RecipeAsset]:
        self.queries.append(StoreQuery("recipe_assets", {"group_id": group_id, "recipe_id": recipe_id}))
        return [a.model_copy(deep=True) for a in self._recipe_assets.get((group_id, recipe_id), [])]

    def update_recipe(
        self,
        group_id: str,
        recipe_id: str,
        fields: Dict[str, Any],
        history_entry: Optional[RecipeHistoryEntry] = None,
    ) -> None:
        path = recipe_path(group_id, recipe_id)
        recipe = self._recipes.get((group_id, recipe_id))
        if recipe is None:
            raise StoreNotFound(f"no document to update: {path}")
        payload = dict(fields)
        if history_entry is not None:
            payload["history"] = history_entry.to_document()
        self._record("update", path, payload)
        data = {**recipe.model_dump(), **fields}
        if history_entry is not None:
            data["history"] = [*recipe.model_dump()["history"], history_entry.to_document()]
        self._recipes[(group_id, recipe_id)] = Recipe.model_validate(data)

    def merge_recipe(self, group_id: str, recipe_id: str, fields: Dict[str, Any]) -> None:
        self._record("merge", recipe_path(group_id, recipe_id), fields)
        existing = self._recipes.get((group_id, recipe_id))
        base = existing.model_dump() if existing else {"id": recipe_id, "groupId": group_id}
        self._recipes[(group_id, recipe_id)] = Recipe.model_validate({**base, **fields})

    def add_recipe_status_history(self, group_id: str, recipe_id: str, entry: RecipeStatusEntry) -> None:
        self._record("add", f"{recipe_path(group_id, recipe_id)}/history", entry.model_dump())
        self._recipe_status_history.setdefault((group_id, recipe_id), []).append(entry.model_copy())

    def add_recipe_response(self, group_id: str, event: RecipeDecisionEvent) -> None:
        self._record("add", f"{group_path(group_id)}/recipeResponses", event.model_dump())
        self._recipe_responses.setdefault(group_id, []).append(event.model_copy())
