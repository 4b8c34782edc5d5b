from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from campfire.common.error_envelope import error_response, review_error_response
from campfire.common.errors import ReviewError
from campfire.common.identity import RequestContext, get_request_context
from campfire.recipe_review.models import (
    Recipe,
    RecipeDecisionRequest,
    RecipeReviewItem,
    RecipeStatusRequest,
)
from campfire.recipe_review.service import get_recipe_review_service

router = APIRouter(prefix="/recipe-review", tags=["recipe_review"])


@router.get("/recipes", response_model=List[RecipeReviewItem])
def list_ready_recipes(
    group_id: Optional[str] = None,
    brand_codes: Optional[str] = Query(default=None, description="Comma separated brand codes"),
    context: RequestContext = Depends(get_request_context),
):
    codes = [c for c in (brand_codes or "").split(",") if c.strip()]
    if not group_id and not codes:
        error_response(
            code="recipe_review.scope_required",
            message="group_id or brand_codes is required",
            status_code=400,
            action_name="recipe_review.list",
            resource_kind="recipe",
        )
    try:
        return get_recipe_review_service().load_review_queue(group_id=group_id, brand_codes=codes)
    except ReviewError as exc:
        review_error_response(exc, action_name="recipe_review.list", resource_kind="recipe")


@router.post("/groups/{group_id}/recipes/{recipe_id}/decision", response_model=Recipe)
def decide_recipe(
    group_id: str,
    recipe_id: str,
    payload: RecipeDecisionRequest,
    context: RequestContext = Depends(get_request_context),
):
    svc = get_recipe_review_service()
    try:
        recipe = svc.get_recipe(group_id, recipe_id)
        return svc.decide(context, recipe, payload.action, payload.comment)
    except ReviewError as exc:
        review_error_response(exc, action_name=f"recipe_review.{payload.action.value}", resource_kind="recipe")


@router.post("/groups/{group_id}/recipes/{recipe_id}/status")
def record_status(
    group_id: str,
    recipe_id: str,
    payload: RecipeStatusRequest,
    context: RequestContext = Depends(get_request_context),
):
    try:
        recorded = get_recipe_review_service().record_recipe_status(context, group_id, recipe_id, payload.status)
    except ReviewError as exc:
        review_error_response(exc, action_name="recipe_review.status", resource_kind="recipe")
    return {"recorded": recorded, "status": payload.status.value}


@router.post("/groups/{group_id}/recipes/{recipe_id}/increment-version", response_model=Recipe)
def increment_version(
    group_id: str,
    recipe_id: str,
    context: RequestContext = Depends(get_request_context),
):
    try:
        recipe = get_recipe_review_service().increment_recipe_version(context, group_id, recipe_id)
    except ReviewError as exc:
        review_error_response(exc, action_name="recipe_review.increment_version", resource_kind="recipe")
    if recipe is None:
        error_response(
            code="recipe_review.not_found",
            message="recipe not found",
            status_code=404,
            action_name="recipe_review.increment_version",
            resource_kind="recipe",
            details={"group_id": group_id, "recipe_id": recipe_id},
        )
    return recipe
