"""Recipe review: ready-recipe queries, decisions and status records.

Recipes never fork versions. A decision changes the recipe's status, appends
to its embedded ``history`` and writes a flat event to the group's
``recipeResponses`` log.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from campfire.asset_store.queries import chunk_brand_codes
from campfire.asset_store.reads import store_read
from campfire.asset_store.repository import AssetStore, StoreError
from campfire.asset_store.state import get_asset_store
from campfire.common.errors import DecisionInFlightError, NotFoundError, TransientWriteError, ValidationError
from campfire.common.identity import RequestContext
from campfire.logging.audit import emit_audit_event
from campfire.recipe_review.hero import sort_recipe_assets
from campfire.recipe_review.models import (
    RECIPE_ACTION_STATUS,
    Recipe,
    RecipeDecisionEvent,
    RecipeHistoryEntry,
    RecipeReviewItem,
    RecipeStatus,
    RecipeStatusEntry,
)
from campfire.review.models import ReviewAction

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecipeReviewService:
    def __init__(
        self,
        store: Optional[AssetStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store or get_asset_store()
        self._clock = clock or _now

    def fetch_ready_recipes(self, group_id: Optional[str] = None, brand_codes: Iterable[str] = ()) -> List[Recipe]:
        """Ready recipes of one group, or across groups for a set of brand codes.

        Brand codes are queried in batches the store accepts; the merged
        result keeps first-seen order and drops duplicates.
        """
        ready = RecipeStatus.ready.value
        if group_id:
            with store_read(f"recipes of ad group {group_id}"):
                return self.store.list_recipes(group_id, status=ready)
        batches = chunk_brand_codes(brand_codes)
        if not batches:
            return []
        # keyed by group as well: recipe codes like "001" repeat across groups
        seen: Dict[Tuple[str, str], Recipe] = {}
        for batch in batches:
            with store_read(f"recipes for brand codes {', '.join(batch)}"):
                found = self.store.query_recipes_by_brand_codes(batch, status=ready)
            for recipe in found:
                seen.setdefault((recipe.groupId, recipe.id), recipe)
        logger.debug("fetched %d ready recipes in %d queries", len(seen), len(batches))
        return list(seen.values())

    def load_recipe_assets(self, recipe: Recipe) -> RecipeReviewItem:
        with store_read(f"assets of {recipe.path}"):
            assets = sort_recipe_assets(self.store.list_recipe_assets(recipe.groupId, recipe.id))
        return RecipeReviewItem(recipe=recipe, assets=assets, hero=assets[0] if assets else None)

    def load_review_queue(self, group_id: Optional[str] = None, brand_codes: Iterable[str] = ()) -> List[RecipeReviewItem]:
        return [self.load_recipe_assets(r) for r in self.fetch_ready_recipes(group_id, brand_codes)]

    def get_recipe(self, group_id: str, recipe_id: str) -> Recipe:
        with store_read(f"recipe {group_id}/{recipe_id}"):
            recipe = self.store.get_recipe(group_id, recipe_id)
        if recipe is None:
            raise NotFoundError(f"recipe {group_id}/{recipe_id} not found")
        return recipe

    def decide(
        self,
        ctx: RequestContext,
        recipe: Recipe,
        action: ReviewAction | str,
        comment: Optional[str] = "",
    ) -> Recipe:
        try:
            action = ReviewAction(action)
        except ValueError as exc:
            raise ValidationError(f"unknown review action: {action}") from exc
        status = RECIPE_ACTION_STATUS[action]
        text = (comment or "") if action == ReviewAction.edit else ""
        pending = {"recipeId": recipe.id, "groupId": recipe.groupId, "action": action.value, "comment": text}
        now = self._clock()
        entry = RecipeHistoryEntry(
            userId=ctx.user_id,
            userEmail=ctx.user_email,
            userName=ctx.reviewer_name or "",
            userRole=ctx.user_role,
            action=status.value,
            comment=text,
            timestamp=now,
        )
        fields = {
            "status": status.value,
            "comment": text,
            "lastUpdatedBy": ctx.user_id,
            "lastUpdatedAt": now,
        }
        try:
            self.store.update_recipe(recipe.groupId, recipe.id, fields, history_entry=entry)
        except StoreError as exc:
            logger.warning("recipe decision write failed for %s: %s", recipe.path, exc)
            raise TransientWriteError("Failed to save the recipe decision.", pending=pending) from exc

        event = RecipeDecisionEvent(
            recipeId=recipe.id,
            decision=action,
            comment=text,
            timestamp=now,
            userId=ctx.user_id,
            userEmail=ctx.user_email,
            reviewerName=ctx.reviewer_name or "",
            userRole=ctx.user_role,
        )
        try:
            self.store.add_recipe_response(recipe.groupId, event)
        except StoreError as exc:
            logger.warning("recipe response log failed for %s: %s", recipe.path, exc)
            raise TransientWriteError("Failed to log the recipe decision.", pending=pending) from exc

        emit_audit_event(
            ctx,
            action="recipe_review:decision",
            surface="recipe_review",
            metadata={"groupId": recipe.groupId, "recipeId": recipe.id, "status": status.value},
        )
        return recipe.model_copy(update={**fields, "history": [*recipe.history, entry]})

    def record_recipe_status(
        self,
        ctx: RequestContext,
        group_id: Optional[str],
        recipe_id: Optional[str],
        status: RecipeStatus | str,
    ) -> bool:
        """Merge a status onto the recipe and log it; False when ids are missing."""
        if not group_id or not recipe_id:
            return False
        status = RecipeStatus(status)
        now = self._clock()
        try:
            self.store.merge_recipe(
                group_id,
                recipe_id,
                {"status": status.value, "lastUpdatedBy": ctx.user_id, "lastUpdatedAt": now},
            )
            self.store.add_recipe_status_history(
                group_id,
                recipe_id,
                RecipeStatusEntry(status=status.value, timestamp=now, userId=ctx.user_id),
            )
        except StoreError as exc:
            logger.warning("recipe status write failed for adGroups/%s/recipes/%s: %s", group_id, recipe_id, exc)
            raise TransientWriteError("Failed to record the recipe status.") from exc
        emit_audit_event(
            ctx,
            action="recipe_review:status",
            surface="recipe_review",
            metadata={"groupId": group_id, "recipeId": recipe_id, "status": status.value},
        )
        return True

    def increment_recipe_version(self, ctx: RequestContext, group_id: str, recipe_id: str) -> Optional[Recipe]:
        """Bump the version and send the recipe back to ``ready``; None when missing."""
        with store_read(f"recipe {group_id}/{recipe_id}"):
            recipe = self.store.get_recipe(group_id, recipe_id)
        if recipe is None:
            return None
        fields = {
            "version": (recipe.version or 1) + 1,
            "status": RecipeStatus.ready.value,
            "lastUpdatedAt": self._clock(),
        }
        try:
            self.store.update_recipe(group_id, recipe_id, fields)
        except StoreError as exc:
            logger.warning("recipe version write failed for %s: %s", recipe.path, exc)
            raise TransientWriteError("Failed to increment the recipe version.") from exc
        emit_audit_event(
            ctx,
            action="recipe_review:version_incremented",
            surface="recipe_review",
            metadata={"groupId": group_id, "recipeId": recipe_id, "version": fields["version"]},
        )
        return recipe.model_copy(update=fields)


class RecipeReviewQueue:
    """A reviewer's pass over ready recipes, one decision at a time."""

    def __init__(
        self,
        ctx: RequestContext,
        service: Optional[RecipeReviewService] = None,
        group_id: Optional[str] = None,
        brand_codes: Iterable[str] = (),
    ) -> None:
        self.ctx = ctx
        self.service = service or get_recipe_review_service()
        self.group_id = group_id
        self.brand_codes = list(brand_codes)
        self.items: List[RecipeReviewItem] = []
        self.index = 0
        self.pending: Optional[Dict[str, str]] = None
        self._submitting = threading.Lock()

    def load(self) -> "RecipeReviewQueue":
        self.items = self.service.load_review_queue(self.group_id, self.brand_codes)
        self.index = 0
        return self

    @property
    def current(self) -> Optional[RecipeReviewItem]:
        if 0 <= self.index < len(self.items):
            return self.items[self.index]
        return None

    def submit(self, action: ReviewAction | str, comment: Optional[str] = "") -> Recipe:
        if not self._submitting.acquire(blocking=False):
            raise DecisionInFlightError("A decision is already being submitted.")
        try:
            item = self.current
            if item is None:
                raise NotFoundError("no recipes left to review")
            self.pending = {"recipeId": item.recipe.id, "action": getattr(action, "value", action), "comment": comment or ""}
            updated = self.service.decide(self.ctx, item.recipe, action, comment)
            self.pending = None
            self.items[self.index] = item.model_copy(update={"recipe": updated})
            self.index += 1
            return updated
        finally:
            self._submitting.release()


_default_service: Optional[RecipeReviewService] = None


def get_recipe_review_service() -> RecipeReviewService:
    global _default_service
    if _default_service is None:
        _default_service = RecipeReviewService()
    return _default_service


def set_recipe_review_service(service: Optional[RecipeReviewService]) -> None:
    global _default_service
    _default_service = service
