"""Review sessions: the working set a reviewer steps through and its exit check.

A session loads one group, or every group matching a set of brand codes, and
applies decisions one at a time. The group lock is taken on the first
decision for a group; the completion check runs after every decision and
again on ``close()`` against the in-memory units.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from campfire.asset_store.queries import chunk_brand_codes
from campfire.asset_store.reads import store_read
from campfire.asset_store.repository import AssetStore, StoreError
from campfire.common.errors import (
    DecisionInFlightError,
    GroupClosedError,
    LockAcquisitionError,
    NotFoundError,
    TransientWriteError,
    ValidationError,
)
from campfire.common.identity import RequestContext
from campfire.config import runtime_config
from campfire.review.completion import GroupCompletionAggregator, get_completion_aggregator
from campfire.review.filenames import aspect_priority, recipe_sort_key
from campfire.review.lineage import VersionChain
from campfire.review.models import (
    AdGroup,
    AdUnit,
    AdUnitStatus,
    DecisionResult,
    GroupStatus,
    PendingDecision,
    ReviewAction,
)
from campfire.review.service import ReviewService, get_review_service, validate_decision

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (GroupStatus.done.value, GroupStatus.archived.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def review_sort_key(unit: AdUnit) -> tuple:
    return (recipe_sort_key(unit.recipeCode), aspect_priority(unit.aspectRatio), unit.filename)


def pending_working_set(chains: Iterable[VersionChain]) -> List[AdUnit]:
    """Active versions still awaiting a decision, in review order.

    Resolved units never enter the set, whatever their nominal status.
    """
    units = []
    for chain in chains:
        active = chain.active
        if active is None or active.isResolved:
            continue
        if active.status != AdUnitStatus.ready.value:
            continue
        units.append(active)
    return sorted(units, key=review_sort_key)


class LastViewedCache:
    """Bounded ``group_id -> timestamp`` map; the oldest entries fall off."""

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self.max_entries = max_entries or runtime_config.get_last_viewed_cache_size()
        self._entries: "OrderedDict[str, datetime]" = OrderedDict()
        self._lock = threading.Lock()

    def mark(self, group_id: str, when: Optional[datetime] = None) -> None:
        with self._lock:
            self._entries.pop(group_id, None)
            self._entries[group_id] = when or _now()
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get(self, group_id: str) -> Optional[datetime]:
        with self._lock:
            return self._entries.get(group_id)

    def __len__(self) -> int:
        return len(self._entries)


_last_viewed = LastViewedCache()


def get_last_viewed_cache() -> LastViewedCache:
    return _last_viewed


def set_last_viewed_cache(cache: Optional[LastViewedCache]) -> None:
    global _last_viewed
    _last_viewed = cache or LastViewedCache()


class ReviewSession:
    def __init__(
        self,
        ctx: RequestContext,
        group_id: Optional[str] = None,
        brand_codes: Sequence[str] = (),
        service: Optional[ReviewService] = None,
        aggregator: Optional[GroupCompletionAggregator] = None,
        last_viewed: Optional[LastViewedCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not group_id and not brand_codes:
            raise ValueError("a review session needs a group id or brand codes")
        self.ctx = ctx
        self.group_id = group_id
        self.brand_codes = list(brand_codes)
        self.service = service or get_review_service()
        self.aggregator = aggregator or get_completion_aggregator()
        self.last_viewed = last_viewed or get_last_viewed_cache()
        self._clock = clock or _now
        self.groups: Dict[str, AdGroup] = {}
        self.initial_status: Dict[str, str] = {}
        self.chains: List[VersionChain] = []
        self.items: List[AdUnit] = []
        self.index = 0
        self.pending_decision: Optional[PendingDecision] = None
        self._full_groups: set[str] = set()
        self._locked: set[str] = set()
        self._submitting = threading.Lock()
        self._closed = False

    @property
    def store(self) -> AssetStore:
        return self.service.store

    @property
    def single_group(self) -> bool:
        return bool(self.group_id)

    def open(self) -> "ReviewSession":
        with store_read(self._scope_label()):
            if self.single_group:
                group = self.store.get_ad_group(self.group_id)
                if group is None:
                    raise NotFoundError(f"ad group {self.group_id} not found")
                self._track_group(group)
                units = self.store.list_ad_units(self.group_id)
                self._full_groups.add(self.group_id)
                self.chains = self.service.resolver.build(units, complete=True)
            else:
                units = self._load_brand_units()
                for group_id in sorted({u.groupId for u in units}):
                    group = self.store.get_ad_group(group_id)
                    if group is None:
                        logger.warning("skipping units of missing group %s", group_id)
                        continue
                    self._track_group(group)
                units = [u for u in units if u.groupId in self.groups]
                self.chains = self.service.resolver.build(units)
        self.items = pending_working_set(self.chains)
        self.index = self._resume_index()
        logger.info(
            "review session opened by %s: %d pending across %d group(s)",
            self.ctx.user_id,
            len(self.items),
            len(self.groups),
        )
        return self

    def _scope_label(self) -> str:
        if self.single_group:
            return f"ad group {self.group_id}"
        return f"brand codes {', '.join(self.brand_codes)}"

    def _track_group(self, group: AdGroup) -> None:
        self.groups[group.id] = group
        self.initial_status[group.id] = group.status

    def _load_brand_units(self) -> List[AdUnit]:
        seen: Dict[str, AdUnit] = {}
        for batch in chunk_brand_codes(self.brand_codes):
            for unit in self.store.query_ad_units_by_brand_codes(batch, unresolved_only=True):
                seen.setdefault(unit.path, unit)
        return list(seen.values())

    def _resume_index(self) -> int:
        if not self.single_group:
            return 0
        group = self.groups[self.group_id]
        if group.status == GroupStatus.done.value:
            return 0
        progress = group.reviewProgress
        if isinstance(progress, int) and 0 <= progress < len(self.items):
            return progress
        return 0

    @property
    def current(self) -> Optional[AdUnit]:
        if 0 <= self.index < len(self.items):
            return self.items[self.index]
        return None

    @property
    def finished(self) -> bool:
        return self.current is None

    def is_closed(self, group_id: str) -> bool:
        group = self.groups.get(group_id)
        return group is not None and group.status in CLOSED_STATUSES

    def chain_for(self, unit_id: str) -> Optional[VersionChain]:
        for chain in self.chains:
            if unit_id in chain:
                return chain
        return None

    def units_for_group(self, group_id: str) -> List[AdUnit]:
        units: List[AdUnit] = []
        for chain in self.chains:
            units.extend(u for u in chain.versions if u.groupId == group_id)
        return units

    def _ensure_full_group(self, group_id: str) -> None:
        # brand queries only return unresolved ready units; completion needs the whole group
        if group_id in self._full_groups:
            return
        loaded = {u.id for u in self.units_for_group(group_id)}
        extra = [u for u in self.store.list_ad_units(group_id) if u.id not in loaded]
        others = [c for c in self.chains if c.group_id != group_id]
        mine = self.units_for_group(group_id) + extra
        rebuilt = self.service.resolver.build(mine, complete=True)
        self.chains = others + rebuilt
        self._full_groups.add(group_id)

    def submit(self, action: ReviewAction | str, comment: Optional[str] = "", unit_id: Optional[str] = None) -> DecisionResult:
        """Apply one decision, to ``unit_id`` or the current unit.

        On failure the decision is kept in ``pending_decision`` and the
        session stays on the same unit.
        """
        if not self._submitting.acquire(blocking=False):
            raise DecisionInFlightError("A decision is already being submitted.")
        try:
            return self._submit(action, comment, unit_id)
        finally:
            self._submitting.release()

    def _submit(self, action: ReviewAction | str, comment: Optional[str], unit_id: Optional[str]) -> DecisionResult:
        action, text = validate_decision(action, comment)
        unit = self._resolve_unit(unit_id)
        group = self.groups.get(unit.groupId)
        if group is None:
            raise NotFoundError(f"ad group {unit.groupId} not found")
        if group.status in CLOSED_STATUSES:
            raise GroupClosedError(f"group {group.id} is {group.status} and cannot take decisions")

        pending = PendingDecision(unitId=unit.id, groupId=unit.groupId, action=action, comment=text)
        self.pending_decision = pending

        if group.id not in self._locked:
            try:
                self.aggregator.acquire_lock(self.ctx, group)
            except (LockAcquisitionError, TransientWriteError) as exc:
                exc.pending = pending.as_dict()
                raise
            self._locked.add(group.id)
        with store_read(f"ad group {group.id}", pending=pending.as_dict()):
            self._ensure_full_group(group.id)

        chain = self.chain_for(unit.id)
        result = self.service.decide(self.ctx, unit, action, text, chain=chain)
        self.pending_decision = None
        self._replace_item(result.unit)

        completed = self.aggregator.check_completion(self.ctx, group, self.units_for_group(group.id))
        result.group_completed = completed
        result.group_status = GroupStatus(group.status)

        if self.current is not None and self.current.id == unit.id:
            self.index += 1
        self._save_progress(group, completed)
        self.last_viewed.mark(group.id, self._clock())
        return result

    def _resolve_unit(self, unit_id: Optional[str]) -> AdUnit:
        if unit_id is None:
            unit = self.current
            if unit is None:
                raise NotFoundError("nothing left to review in this session")
            return unit
        chain = self.chain_for(unit_id)
        unit = chain.get(unit_id) if chain else None
        if unit is None:
            raise NotFoundError(f"ad unit {unit_id} is not part of this review")
        if unit.is_archived:
            raise ValidationError(f"ad unit {unit_id} is archived and cannot be reviewed")
        return unit

    def _replace_item(self, unit: AdUnit) -> None:
        self.items = [unit if u.id == unit.id else u for u in self.items]

    def _save_progress(self, group: AdGroup, completed: bool) -> None:
        if not self.single_group or completed:
            return
        if self.initial_status.get(group.id) == GroupStatus.done.value:
            return
        if group.status in CLOSED_STATUSES:
            return
        cursor = self.progress_cursor
        try:
            self.store.update_ad_group(group.id, {"reviewProgress": cursor})
        except StoreError as exc:
            logger.warning("progress write failed for %s: %s", group.path, exc)
            return
        group.reviewProgress = cursor

    @property
    def progress_cursor(self) -> int:
        """Position to resume from once decided units drop out of the working set."""
        return sum(1 for unit in self.items[: self.index] if not unit.isResolved)

    def skip(self) -> Optional[AdUnit]:
        """Move past the current unit without a decision."""
        if self.current is not None:
            self.index += 1
        return self.current

    def retry_pending(self) -> DecisionResult:
        if self.pending_decision is None:
            raise NotFoundError("no pending decision to resubmit")
        pending = self.pending_decision
        return self.submit(pending.action, pending.comment, unit_id=pending.unitId)

    def close(self) -> Dict[str, bool]:
        """Exit review: re-check completion from memory, release locks."""
        if self._closed:
            return {}
        self._closed = True
        completed: Dict[str, bool] = {}
        for group_id, group in self.groups.items():
            if self.single_group or group_id in self._full_groups:
                completed[group_id] = self.aggregator.check_completion(
                    self.ctx, group, self.units_for_group(group_id)
                )
            self.last_viewed.mark(group_id, self._clock())
        for group_id in sorted(self._locked):
            self.aggregator.release_lock(self.ctx, group_id)
        self._locked.clear()
        return completed
