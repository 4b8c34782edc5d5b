"""Hero image selection for recipe previews."""
from __future__ import annotations

from typing import Iterable, List, Optional

from campfire.recipe_review.models import RecipeAsset
from campfire.review.filenames import RECIPE_HERO_ASPECT_ORDER, aspect_priority


def sort_recipe_assets(assets: Iterable[RecipeAsset]) -> List[RecipeAsset]:
    # sorted() is stable, so assets with equal priority keep their stored order
    return sorted(assets, key=lambda a: aspect_priority(a.aspectRatio, RECIPE_HERO_ASPECT_ORDER))


def pick_hero(assets: Iterable[RecipeAsset]) -> Optional[RecipeAsset]:
    ordered = sort_recipe_assets(assets)
    return ordered[0] if ordered else None
