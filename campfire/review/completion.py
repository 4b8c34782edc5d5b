"""Group completion, the advisory group lock and explicit group transitions."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, Iterable, Optional

from campfire.asset_store.reads import store_read
from campfire.asset_store.repository import (
    AssetStore,
    StoreConflict,
    StoreError,
    StoreNotFound,
    StorePermissionDenied,
)
from campfire.asset_store.state import get_asset_store
from campfire.common.errors import (
    GroupClosedError,
    LockAcquisitionError,
    NotFoundError,
    TransientWriteError,
    ValidationError,
)
from campfire.common.identity import RequestContext
from campfire.config import runtime_config
from campfire.logging.audit import emit_audit_event
from campfire.review.lineage import build_chains
from campfire.review.models import AdGroup, AdUnit, GroupStatus, ReviewLock

logger = logging.getLogger(__name__)

# explicit and completion transitions; nothing moves backward as a side effect of a decision
ALLOWED_TRANSITIONS: Dict[GroupStatus, FrozenSet[GroupStatus]] = {
    GroupStatus.pending: frozenset({GroupStatus.in_review, GroupStatus.done, GroupStatus.archived}),
    GroupStatus.in_review: frozenset({GroupStatus.ready, GroupStatus.done, GroupStatus.archived}),
    GroupStatus.ready: frozenset({GroupStatus.done, GroupStatus.archived}),
    GroupStatus.done: frozenset({GroupStatus.ready, GroupStatus.pending}),
    GroupStatus.archived: frozenset({GroupStatus.pending}),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: GroupStatus | str, target: GroupStatus | str) -> bool:
    return GroupStatus(target) in ALLOWED_TRANSITIONS.get(GroupStatus(current), frozenset())


def check_transition(current: GroupStatus | str, target: GroupStatus | str) -> None:
    if not can_transition(current, target):
        raise GroupClosedError(
            f"group cannot move from {GroupStatus(current).value!r} to {GroupStatus(target).value!r}"
        )


def is_group_complete(units: Iterable[AdUnit]) -> bool:
    """True when every slot's active version has a terminal decision.

    Archived versions are ignored; a group with no active version is not complete.
    """
    actives = [chain.active for chain in build_chains(units)]
    actives = [unit for unit in actives if unit is not None]
    return bool(actives) and all(unit.isResolved for unit in actives)


class GroupCompletionAggregator:
    def __init__(
        self,
        store: Optional[AssetStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        lock_ttl_seconds: Optional[int] = None,
    ) -> None:
        self.store = store or get_asset_store()
        self._clock = clock or _now
        self._lock_ttl = lock_ttl_seconds or runtime_config.get_review_lock_ttl_seconds()

    def get_group(self, group_id: str) -> AdGroup:
        with store_read(f"ad group {group_id}"):
            group = self.store.get_ad_group(group_id)
        if group is None:
            raise NotFoundError(f"ad group {group_id} not found")
        return group

    def check_completion(self, ctx: RequestContext, group: AdGroup, units: Iterable[AdUnit]) -> bool:
        """Mark ``group`` done when all slots are resolved.

        Evaluated against the units passed in, never re-read from the store.
        Returns True only when this call wrote the transition. A failed write
        leaves the group untouched so the next check retries it.
        """
        if group.status == GroupStatus.archived.value:
            return False
        if group.status == GroupStatus.done.value and group.reviewProgress is None:
            return False
        if not is_group_complete(units):
            return False
        try:
            self.store.update_ad_group(group.id, {"status": GroupStatus.done.value, "reviewProgress": None})
        except StoreError as exc:
            logger.warning("completion write failed for %s: %s", group.path, exc)
            return False
        group.status = GroupStatus.done.value
        group.reviewProgress = None
        logger.info("group %s marked done", group.id)
        emit_audit_event(ctx, action="review:group_done", metadata={"groupId": group.id})
        return True

    def acquire_lock(self, ctx: RequestContext, group: AdGroup) -> AdGroup:
        now = self._clock()
        lock = ReviewLock(
            holderId=ctx.user_id,
            holderName=ctx.display_name,
            acquiredAt=now,
            expiresAt=now + timedelta(seconds=self._lock_ttl),
        )
        try:
            locked = self.store.acquire_group_lock(group.id, lock, now)
        except (StorePermissionDenied, StoreConflict) as exc:
            logger.warning("lock denied on %s for %s: %s", group.path, ctx.user_id, exc)
            raise LockAcquisitionError() from exc
        except StoreNotFound as exc:
            raise NotFoundError(f"ad group {group.id} not found") from exc
        except StoreError as exc:
            logger.warning("lock write failed on %s: %s", group.path, exc)
            raise TransientWriteError("Failed to acquire the review lock.") from exc
        group.reviewLock = lock
        emit_audit_event(ctx, action="review:lock_acquired", metadata={"groupId": group.id})
        return locked

    def release_lock(self, ctx: RequestContext, group_id: str) -> None:
        try:
            self.store.release_group_lock(group_id, ctx.user_id)
        except StoreError as exc:
            logger.warning("lock release failed on adGroups/%s: %s", group_id, exc)
            return
        emit_audit_event(ctx, action="review:lock_released", metadata={"groupId": group_id})

    def _transition(
        self,
        ctx: RequestContext,
        group_id: str,
        target: GroupStatus,
        fields: dict,
        action: str,
        require: Optional[GroupStatus] = None,
    ) -> AdGroup:
        group = self.get_group(group_id)
        if require is not None and group.status != require.value:
            raise GroupClosedError(f"group {group_id} is {group.status!r}, expected {require.value!r}")
        check_transition(group.status, target)
        payload = {"status": target.value, **fields}
        try:
            self.store.update_ad_group(group_id, payload)
        except StoreError as exc:
            logger.warning("status write failed for %s: %s", group.path, exc)
            raise TransientWriteError(f"Failed to update group {group_id}.") from exc
        emit_audit_event(ctx, action=action, metadata={"groupId": group_id, "from": group.status, "to": target.value})
        return AdGroup.model_validate({**group.model_dump(), **payload})

    def archive_group(self, ctx: RequestContext, group_id: str) -> AdGroup:
        return self._transition(
            ctx,
            group_id,
            GroupStatus.archived,
            {"archivedAt": self._clock(), "archivedBy": ctx.user_id},
            "review:group_archived",
        )

    def restore_group(self, ctx: RequestContext, group_id: str) -> AdGroup:
        return self._transition(
            ctx,
            group_id,
            GroupStatus.pending,
            {"archivedAt": None, "archivedBy": None},
            "review:group_restored",
            require=GroupStatus.archived,
        )

    def reopen_group(self, ctx: RequestContext, group_id: str, status: GroupStatus | str = GroupStatus.ready) -> AdGroup:
        target = GroupStatus(status)
        if target not in (GroupStatus.ready, GroupStatus.pending):
            raise ValidationError("a group can only be reopened as 'ready' or 'pending'")
        return self._transition(ctx, group_id, target, {}, "review:group_reopened", require=GroupStatus.done)


_default_aggregator: Optional[GroupCompletionAggregator] = None


def get_completion_aggregator() -> GroupCompletionAggregator:
    global _default_aggregator
    if _default_aggregator is None:
        _default_aggregator = GroupCompletionAggregator()
    return _default_aggregator


def set_completion_aggregator(aggregator: Optional[GroupCompletionAggregator]) -> None:
    global _default_aggregator
    _default_aggregator = aggregator
