from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from campfire.asset_store.reads import store_read
from campfire.common.error_envelope import review_error_response
from campfire.common.errors import ReviewError, ValidationError
from campfire.common.identity import RequestContext, get_request_context
from campfire.review.completion import get_completion_aggregator
from campfire.review.models import AdGroup, AdUnit, DecisionRequest, DecisionResult, ReopenRequest
from campfire.review.service import get_review_service
from campfire.review.session import ReviewSession
from campfire.review.summary import (
    RecipeStatusCounts,
    StatusSummary,
    aggregate_recipe_status_counts,
    summarize_ad_units,
    summarize_by_recipe,
)

router = APIRouter(prefix="/review", tags=["review"])


class ReviewQueue(BaseModel):
    group_status: Optional[str] = None
    review_progress: Optional[int] = None
    items: List[AdUnit] = Field(default_factory=list)


class ExitResult(BaseModel):
    completed: dict = Field(default_factory=dict)
    group_status: Optional[str] = None


class VersionChainView(BaseModel):
    root_id: str
    versions: List[AdUnit]
    active_id: Optional[str] = None


class GroupSummary(BaseModel):
    units: StatusSummary
    recipes: StatusSummary
    recipe_counts: RecipeStatusCounts


def _parse_brand_codes(raw: str) -> List[str]:
    return [code for code in raw.split(",") if code.strip()]


def _session(context: RequestContext, group_id: Optional[str] = None, brand_codes: Optional[List[str]] = None) -> ReviewSession:
    return ReviewSession(
        context,
        group_id=group_id,
        brand_codes=brand_codes or (),
        service=get_review_service(),
        aggregator=get_completion_aggregator(),
    ).open()


@router.get("/groups/{group_id}/queue", response_model=ReviewQueue)
def get_group_queue(group_id: str, context: RequestContext = Depends(get_request_context)):
    try:
        session = _session(context, group_id=group_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.queue", resource_kind="ad_group")
    group = session.groups[group_id]
    return ReviewQueue(
        group_status=group.status,
        review_progress=session.index,
        items=session.items,
    )


@router.get("/queue", response_model=ReviewQueue)
def get_brand_queue(
    brand_codes: str = Query(..., description="Comma separated brand codes"),
    context: RequestContext = Depends(get_request_context),
):
    codes = _parse_brand_codes(brand_codes)
    if not codes:
        review_error_response(ValidationError("at least one brand code is required"), action_name="review.queue")
    try:
        session = _session(context, brand_codes=codes)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.queue", resource_kind="ad_unit")
    return ReviewQueue(items=session.items)


@router.post("/groups/{group_id}/units/{unit_id}/decision", response_model=DecisionResult)
def submit_decision(
    group_id: str,
    unit_id: str,
    payload: DecisionRequest,
    context: RequestContext = Depends(get_request_context),
):
    try:
        session = _session(context, group_id=group_id)
        try:
            return session.submit(payload.action, payload.comment, unit_id=unit_id)
        finally:
            # completion is already checked per decision; only the lock needs releasing
            session.close()
    except ReviewError as exc:
        review_error_response(exc, action_name=f"review.{payload.action.value}", resource_kind="ad_unit")


@router.post("/groups/{group_id}/exit", response_model=ExitResult)
def exit_review(group_id: str, context: RequestContext = Depends(get_request_context)):
    try:
        session = _session(context, group_id=group_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.exit", resource_kind="ad_group")
    completed = session.close()
    return ExitResult(completed=completed, group_status=session.groups[group_id].status)


@router.get("/groups/{group_id}/units/{unit_id}/versions", response_model=VersionChainView)
def get_versions(group_id: str, unit_id: str, context: RequestContext = Depends(get_request_context)):
    try:
        chain = get_review_service().version_chain(group_id, unit_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.versions", resource_kind="ad_unit")
    active = chain.active
    return VersionChainView(root_id=chain.root_id, versions=chain.versions, active_id=active.id if active else None)


@router.get("/groups/{group_id}/summary", response_model=GroupSummary)
def get_summary(group_id: str, context: RequestContext = Depends(get_request_context)):
    try:
        get_completion_aggregator().get_group(group_id)
        with store_read(f"ad units of {group_id}"):
            units = get_review_service().store.list_ad_units(group_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.summary", resource_kind="ad_group")
    return GroupSummary(
        units=summarize_ad_units(units),
        recipes=summarize_by_recipe(units),
        recipe_counts=aggregate_recipe_status_counts(units),
    )


@router.post("/groups/{group_id}/archive", response_model=AdGroup)
def archive_group(group_id: str, context: RequestContext = Depends(get_request_context)):
    try:
        return get_completion_aggregator().archive_group(context, group_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.archive", resource_kind="ad_group")


@router.post("/groups/{group_id}/restore", response_model=AdGroup)
def restore_group(group_id: str, context: RequestContext = Depends(get_request_context)):
    try:
        return get_completion_aggregator().restore_group(context, group_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.restore", resource_kind="ad_group")


@router.post("/groups/{group_id}/reopen", response_model=AdGroup)
def reopen_group(
    group_id: str,
    payload: Optional[ReopenRequest] = None,
    context: RequestContext = Depends(get_request_context),
):
    status = (payload or ReopenRequest()).status
    try:
        return get_completion_aggregator().reopen_group(context, group_id, status)
    except ReviewError as exc:
        review_error_response(exc, action_name="review.reopen", resource_kind="ad_group")
