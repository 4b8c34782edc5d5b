"""Read-model summaries over ad units, used by group dashboards."""
from __future__ import annotations

from typing import Dict, Iterable, Optional

from pydantic import BaseModel, Field

from campfire.review.filenames import parse_ad_filename
from campfire.review.models import AdUnit

_DECISION_PRIORITY = {"approved": 3, "edit_requested": 2, "rejected": 1}


class StatusSummary(BaseModel):
    reviewed: int = 0
    approved: int = 0
    edit: int = 0
    rejected: int = 0
    archived: int = 0
    thumbnail: str = ""


class RecipeStatusCounts(BaseModel):
    unitCount: int = 0
    statusCounts: Dict[str, int] = Field(
        default_factory=lambda: {"pending": 0, "approved": 0, "rejected": 0, "edit_requested": 0, "archived": 0}
    )


def _recipe_code(unit: AdUnit) -> str:
    return unit.recipeCode or parse_ad_filename(unit.filename).recipe_code


def _thumbnail(unit: AdUnit) -> Optional[str]:
    return unit.thumbnailUrl or unit.firebaseUrl


def _count(summary: StatusSummary, status: str) -> None:
    if status != "ready":
        summary.reviewed += 1
    if status == "approved":
        summary.approved += 1
    elif status == "edit_requested":
        summary.edit += 1
    elif status == "rejected":
        summary.rejected += 1


def summarize_ad_units(units: Iterable[AdUnit]) -> StatusSummary:
    """Per-unit counts; archived units are counted apart from decisions."""
    summary = StatusSummary()
    for unit in units:
        if not summary.thumbnail and _thumbnail(unit):
            summary.thumbnail = _thumbnail(unit) or ""
        if unit.status == "archived":
            summary.archived += 1
        else:
            _count(summary, unit.status)
    return summary


def summarize_by_recipe(units: Iterable[AdUnit]) -> StatusSummary:
    """Counts per recipe, each recipe taking its strongest decision."""
    summary = StatusSummary()
    by_recipe: Dict[str, str] = {}
    for unit in units:
        if not summary.thumbnail and _thumbnail(unit):
            summary.thumbnail = _thumbnail(unit) or ""
        code = _recipe_code(unit)
        if not code:
            continue
        previous = by_recipe.get(code)
        if previous is None or _DECISION_PRIORITY.get(unit.status, 0) > _DECISION_PRIORITY.get(previous, 0):
            by_recipe[code] = unit.status
        if unit.status == "archived":
            summary.archived += 1
    for status in by_recipe.values():
        _count(summary, status)
    return summary


def _recipe_status(statuses: set, active: set) -> str:
    if statuses and all(s == "archived" for s in statuses):
        return "archived"
    if "edit_requested" in statuses:
        return "edit_requested"
    if "rejected" in statuses:
        return "rejected"
    if not active:
        return "pending"
    if all(s == "approved" for s in active):
        return "approved"
    return "pending"


def aggregate_recipe_status_counts(units: Iterable[AdUnit]) -> RecipeStatusCounts:
    """One aggregate status per recipe code; recipes without units are not counted."""
    statuses: Dict[str, set] = {}
    active: Dict[str, set] = {}
    for unit in units:
        code = _recipe_code(unit)
        if not code:
            continue
        status = unit.status or "pending"
        if status == "ready":
            status = "pending"
        statuses.setdefault(code, set()).add(status)
        active.setdefault(code, set())
        if status != "archived":
            active[code].add(status)
    result = RecipeStatusCounts(unitCount=len(statuses))
    for code, seen in statuses.items():
        status = _recipe_status(seen, active[code])
        key = status if status in result.statusCounts else "pending"
        result.statusCounts[key] += 1
    return result
