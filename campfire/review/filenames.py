"""Ad filename parsing and aspect-ratio ordering.

Filenames look like ``BR1_G1_RC1_9x16_V2.png``: brand code, ad group code,
recipe code, aspect ratio and version. Four-part names carry either the
version or the aspect ratio in the last slot.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

_VERSION_PART = re.compile(r"^V(\d+)", re.IGNORECASE)
_VERSION_TOKEN = re.compile(r"(?:^|[_-])v(\d+)", re.IGNORECASE)
_EXTENSION = re.compile(r"\.[^/.]+$")

REVIEW_ASPECT_ORDER: Sequence[str] = ("9x16", "3x5", "1x1", "4x5", "Pinterest", "Snapchat")
RECIPE_HERO_ASPECT_ORDER: Sequence[str] = ("9x16", "3x5", "1x1")


@dataclass(frozen=True)
class AdFilename:
    brand_code: str = ""
    ad_group_code: str = ""
    recipe_code: str = ""
    aspect_ratio: str = ""
    version: Optional[int] = None


def parse_ad_filename(filename: Optional[str]) -> AdFilename:
    if not filename:
        return AdFilename()
    parts = _EXTENSION.sub("", filename).split("_")
    brand_code = parts[0] if len(parts) > 0 else ""
    ad_group_code = parts[1] if len(parts) > 1 else ""
    recipe_code = parts[2] if len(parts) > 2 else ""
    aspect_ratio = ""
    version: Optional[int] = None
    if len(parts) >= 5:
        aspect_ratio = parts[3]
        match = _VERSION_PART.match(parts[4])
        if match:
            version = int(match.group(1))
    elif len(parts) == 4:
        match = _VERSION_PART.match(parts[3])
        if match:
            version = int(match.group(1))
        else:
            aspect_ratio = parts[3]
    return AdFilename(
        brand_code=brand_code,
        ad_group_code=ad_group_code,
        recipe_code=recipe_code,
        aspect_ratio=aspect_ratio,
        version=version,
    )


def version_from_filename(filename: Optional[str]) -> int:
    """Version encoded in a filename, falling back to a loose ``v#`` token, then 1."""
    if not filename:
        return 1
    parsed = parse_ad_filename(filename).version
    if parsed:
        return parsed
    match = _VERSION_TOKEN.search(filename)
    if match:
        return int(match.group(1))
    return 1


def get_version(unit_or_name: Any) -> int:
    if not unit_or_name:
        return 1
    if isinstance(unit_or_name, str):
        return version_from_filename(unit_or_name)
    explicit = getattr(unit_or_name, "version", None)
    if explicit:
        return int(explicit)
    return version_from_filename(getattr(unit_or_name, "filename", "") or "")


def aspect_priority(aspect_ratio: Optional[str], order: Sequence[str] = REVIEW_ASPECT_ORDER) -> int:
    """Position of an aspect ratio in ``order``; unknown ratios sort last."""
    try:
        return list(order).index(aspect_ratio or "")
    except ValueError:
        return len(order)


def recipe_sort_key(recipe_code: Optional[str]) -> tuple:
    """Numeric recipe codes sort numerically, before alphanumeric ones."""
    code = (recipe_code or "").strip()
    if code.isdigit():
        return (0, int(code), code)
    return (1, 0, code.lower())
