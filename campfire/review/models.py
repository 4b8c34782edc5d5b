"""Schemas for ad units, ad groups and review decisions.

Field names follow the stored document fields (``parentAdId``, ``isResolved``)
so that models round-trip through the document store unchanged.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from campfire.review.filenames import parse_ad_filename, version_from_filename


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AdUnitStatus(str, Enum):
    ready = "ready"
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    edit_requested = "edit_requested"
    archived = "archived"


class GroupStatus(str, Enum):
    pending = "pending"
    in_review = "in review"
    ready = "ready"
    done = "done"
    archived = "archived"


class ReviewAction(str, Enum):
    approve = "approve"
    reject = "reject"
    edit = "edit"


ACTION_STATUS = {
    ReviewAction.approve: AdUnitStatus.approved,
    ReviewAction.reject: AdUnitStatus.rejected,
    ReviewAction.edit: AdUnitStatus.edit_requested,
}


class SlotKey(BaseModel):
    """Identity shared by every version of one creative placement."""

    model_config = ConfigDict(frozen=True)

    brandCode: str = ""
    groupId: str = ""
    recipeCode: str = ""
    aspectRatio: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.groupId and self.recipeCode and self.aspectRatio)

    def label(self) -> str:
        return "/".join([self.brandCode, self.groupId, self.recipeCode, self.aspectRatio])


class AdUnit(BaseModel):
    model_config = ConfigDict(extra="allow", use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    groupId: str
    brandCode: Optional[str] = None
    filename: str = ""
    url: Optional[str] = None
    firebaseUrl: Optional[str] = None
    thumbnailUrl: Optional[str] = None
    version: int = Field(default=1, ge=1)
    parentAdId: Optional[str] = None
    status: AdUnitStatus = AdUnitStatus.ready
    isResolved: bool = False
    comment: str = ""
    recipeCode: Optional[str] = None
    aspectRatio: Optional[str] = None
    lastUpdatedBy: Optional[str] = None
    lastUpdatedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_from_filename(cls, data: Any) -> Any:
        # slot identity is computed once, when the unit is ingested
        if not isinstance(data, dict):
            return data
        filename = data.get("filename") or ""
        if not filename:
            return data
        info = parse_ad_filename(filename)
        data = dict(data)
        if not data.get("version"):
            data["version"] = version_from_filename(filename)
        if not data.get("recipeCode") and info.recipe_code:
            data["recipeCode"] = info.recipe_code
        if not data.get("aspectRatio") and info.aspect_ratio:
            data["aspectRatio"] = info.aspect_ratio
        if not data.get("brandCode") and info.brand_code:
            data["brandCode"] = info.brand_code
        return data

    @property
    def lineage_root_id(self) -> str:
        return self.parentAdId or self.id

    @property
    def slot_key(self) -> SlotKey:
        return SlotKey(
            brandCode=self.brandCode or "",
            groupId=self.groupId,
            recipeCode=self.recipeCode or "",
            aspectRatio=self.aspectRatio or "",
        )

    @property
    def is_archived(self) -> bool:
        return self.status == AdUnitStatus.archived

    @property
    def path(self) -> str:
        return f"adGroups/{self.groupId}/assets/{self.id}"


class ReviewLock(BaseModel):
    holderId: str
    holderName: Optional[str] = None
    acquiredAt: datetime = Field(default_factory=_now)
    expiresAt: datetime

    def is_active(self, now: datetime) -> bool:
        return self.expiresAt > now


class AdGroup(BaseModel):
    model_config = ConfigDict(extra="allow", use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str = ""
    brandCode: Optional[str] = None
    status: GroupStatus = GroupStatus.pending
    reviewProgress: Optional[int] = None
    visibility: Optional[str] = None
    requireAuth: bool = False
    requirePassword: bool = False
    password: Optional[str] = None
    reviewLock: Optional[ReviewLock] = None
    archivedAt: Optional[datetime] = None
    archivedBy: Optional[str] = None
    lastUpdated: Optional[datetime] = None

    @property
    def path(self) -> str:
        return f"adGroups/{self.id}"


class DecisionRequest(BaseModel):
    action: ReviewAction
    comment: str = ""


class ReopenRequest(BaseModel):
    status: GroupStatus = GroupStatus.ready


class DecisionResult(BaseModel):
    unit: AdUnit
    revision: Optional[AdUnit] = None
    superseded: list[str] = Field(default_factory=list)
    group_status: Optional[GroupStatus] = None
    group_completed: bool = False

    model_config = ConfigDict(use_enum_values=True)


class PendingDecision(BaseModel):
    """A decision kept locally after a failed write so it can be resubmitted."""

    unitId: str
    groupId: str
    action: ReviewAction
    comment: str = ""

    model_config = ConfigDict(use_enum_values=True)

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()
