"""Per-asset review decisions: approve, reject, request edit."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from campfire.asset_store.reads import store_read
from campfire.asset_store.repository import AssetStore, StoreError
from campfire.asset_store.state import get_asset_store
from campfire.common.errors import NotFoundError, TransientWriteError, ValidationError
from campfire.common.identity import RequestContext
from campfire.logging.audit import emit_audit_event
from campfire.review.lineage import LineageResolver, VersionChain
from campfire.review.models import (
    ACTION_STATUS,
    AdUnit,
    AdUnitStatus,
    DecisionResult,
    PendingDecision,
    ReviewAction,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def validate_decision(action: ReviewAction | str, comment: Optional[str]) -> Tuple[ReviewAction, str]:
    """Normalize a decision; edit requests need a non-blank comment."""
    try:
        action = ReviewAction(action)
    except ValueError as exc:
        raise ValidationError(f"unknown review action: {action}") from exc
    text = (comment or "").strip()
    if action == ReviewAction.edit and not text:
        raise ValidationError("A comment is required to request an edit.")
    return action, text


class ReviewService:
    def __init__(
        self,
        store: Optional[AssetStore] = None,
        resolver: Optional[LineageResolver] = None,
        id_fn: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store or get_asset_store()
        self.resolver = resolver or LineageResolver(self.store)
        self._id_fn = id_fn or (lambda: uuid4().hex)
        self._clock = clock or _now

    def get_unit(self, group_id: str, unit_id: str) -> AdUnit:
        with store_read(f"ad unit {group_id}/{unit_id}"):
            unit = self.store.get_ad_unit(group_id, unit_id)
        if unit is None:
            raise NotFoundError(f"ad unit {group_id}/{unit_id} not found")
        return unit

    def version_chain(self, group_id: str, unit_id: str) -> VersionChain:
        return self.resolver.chain_for_unit(self.get_unit(group_id, unit_id))

    def decide(
        self,
        ctx: RequestContext,
        unit: AdUnit,
        action: ReviewAction | str,
        comment: Optional[str] = "",
        chain: Optional[VersionChain] = None,
    ) -> DecisionResult:
        """Record a decision on exactly one ad unit.

        Writes touch only ``unit``, the older versions of its own lineage
        (``isResolved`` only) and, for an edit request, the new revision.
        """
        action, text = validate_decision(action, comment)
        if unit.is_archived:
            raise ValidationError(f"ad unit {unit.id} is archived and cannot be reviewed")
        pending = PendingDecision(unitId=unit.id, groupId=unit.groupId, action=action, comment=text)
        status = ACTION_STATUS[action]
        now = self._clock()
        fields = {
            "status": status.value,
            "isResolved": True,
            "comment": text if action == ReviewAction.edit else "",
            "lastUpdatedBy": ctx.user_id,
            "lastUpdatedAt": now,
        }
        if chain is None:
            chain = self.resolver.build([unit])[0]
        self.resolver.ensure_ancestors(chain)

        # the revision is written before the unit is marked resolved
        revision: Optional[AdUnit] = None
        if action == ReviewAction.edit:
            # a re-edit of a unit that already has a newer version only updates the comment
            if chain.max_version <= unit.version:
                revision = self._create_revision(ctx, unit, chain, pending)
                chain.add(revision)

        try:
            self.store.update_ad_unit(unit.groupId, unit.id, fields)
        except StoreError as exc:
            logger.warning("decision write failed for %s: %s", unit.path, exc)
            raise TransientWriteError("Failed to save the review decision.", pending=pending.as_dict()) from exc
        updated = unit.model_copy(update=fields)
        chain.add(updated)

        self._record_history(ctx, updated, now)

        superseded: List[str] = []
        if action in (ReviewAction.approve, ReviewAction.reject):
            superseded = self._supersede_older(updated, chain)

        emit_audit_event(
            ctx,
            action=f"review:{action.value}",
            metadata={"groupId": unit.groupId, "unitId": unit.id, "status": status.value, "comment": text},
        )
        if revision is not None:
            emit_audit_event(
                ctx,
                action="review:revision_created",
                metadata={
                    "groupId": unit.groupId,
                    "unitId": revision.id,
                    "parentAdId": revision.parentAdId,
                    "version": revision.version,
                },
            )
        return DecisionResult(unit=updated, revision=revision, superseded=superseded)

    def _create_revision(
        self,
        ctx: RequestContext,
        unit: AdUnit,
        chain: VersionChain,
        pending: PendingDecision,
    ) -> AdUnit:
        now = self._clock()
        revision = AdUnit(
            id=self._id_fn(),
            groupId=unit.groupId,
            brandCode=unit.brandCode,
            filename=unit.filename,
            version=chain.max_version + 1,
            parentAdId=chain.root_id,
            status=AdUnitStatus.pending,
            isResolved=False,
            comment="",
            recipeCode=unit.recipeCode,
            aspectRatio=unit.aspectRatio,
            lastUpdatedBy=ctx.user_id,
            lastUpdatedAt=now,
            createdAt=now,
        )
        try:
            self.store.create_ad_unit(revision)
        except StoreError as exc:
            logger.warning("revision create failed for %s: %s", unit.path, exc)
            raise TransientWriteError("Failed to create the revision.", pending=pending.as_dict()) from exc
        logger.info("revision %s v%s created for %s", revision.id, revision.version, chain.root_id)
        return revision

    def _record_history(self, ctx: RequestContext, unit: AdUnit, now: datetime) -> None:
        entry = {"status": unit.status, "updatedBy": ctx.display_name, "updatedAt": now}
        if unit.comment:
            entry["comment"] = unit.comment
        try:
            self.store.add_ad_unit_history(unit.groupId, unit.id, entry)
        except StoreError as exc:
            logger.warning("history write failed for %s: %s", unit.path, exc)

    def _supersede_older(self, unit: AdUnit, chain: VersionChain) -> List[str]:
        superseded: List[str] = []
        for older in chain.older_than(unit):
            if older.isResolved or older.is_archived:
                continue
            try:
                self.store.update_ad_unit(older.groupId, older.id, {"isResolved": True})
            except StoreError as exc:
                logger.warning("supersede write failed for %s: %s", older.path, exc)
                continue
            chain.add(older.model_copy(update={"isResolved": True}))
            superseded.append(older.id)
        return superseded


_default_service: Optional[ReviewService] = None


def get_review_service() -> ReviewService:
    global _default_service
    if _default_service is None:
        _default_service = ReviewService()
    return _default_service


def set_review_service(service: Optional[ReviewService]) -> None:
    global _default_service
    _default_service = service
