"""Schemas for recipe-granularity review."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from campfire.review.filenames import parse_ad_filename
from campfire.review.models import ReviewAction


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecipeStatus(str, Enum):
    pending = "pending"
    ready = "ready"
    approved = "approved"
    rejected = "rejected"
    edit_requested = "edit_requested"


RECIPE_ACTION_STATUS = {
    ReviewAction.approve: RecipeStatus.approved,
    ReviewAction.reject: RecipeStatus.rejected,
    ReviewAction.edit: RecipeStatus.edit_requested,
}


class RecipeHistoryEntry(BaseModel):
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    userName: str = ""
    userRole: Optional[str] = None
    action: str
    comment: str = ""
    timestamp: datetime = Field(default_factory=_now)

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump()
        if not self.userRole:
            data.pop("userRole")
        return data


class Recipe(BaseModel):
    model_config = ConfigDict(extra="allow", use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    groupId: str
    brandCode: Optional[str] = None
    type: Optional[str] = None
    components: Dict[str, Any] = Field(default_factory=dict)
    status: RecipeStatus = RecipeStatus.pending
    history: List[RecipeHistoryEntry] = Field(default_factory=list)
    comment: str = ""
    version: int = 1
    lastUpdatedBy: Optional[str] = None
    lastUpdatedAt: Optional[datetime] = None

    @property
    def path(self) -> str:
        return f"adGroups/{self.groupId}/recipes/{self.id}"


class RecipeAsset(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: uuid4().hex)
    filename: str = ""
    firebaseUrl: Optional[str] = None
    aspectRatio: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_aspect_ratio(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("aspectRatio") and data.get("filename"):
            ratio = parse_ad_filename(data["filename"]).aspect_ratio
            if ratio:
                data = {**data, "aspectRatio": ratio}
        return data


class RecipeDecisionEvent(BaseModel):
    """Flat per-group decision log entry, independent of the recipe document."""

    recipeId: str
    decision: ReviewAction
    comment: str = ""
    timestamp: datetime = Field(default_factory=_now)
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    reviewerName: str = ""
    userRole: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)


class RecipeStatusEntry(BaseModel):
    status: str
    timestamp: datetime = Field(default_factory=_now)
    userId: Optional[str] = None


class RecipeReviewItem(BaseModel):
    recipe: Recipe
    assets: List[RecipeAsset] = Field(default_factory=list)
    hero: Optional[RecipeAsset] = None


class RecipeDecisionRequest(BaseModel):
    action: ReviewAction
    comment: str = ""


class RecipeStatusRequest(BaseModel):
    status: RecipeStatus
