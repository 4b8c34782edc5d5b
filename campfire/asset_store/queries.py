"""Helpers for queries bounded by the store's ``in`` filter limit."""
from __future__ import annotations

from typing import Iterable, List

BRAND_CODE_QUERY_LIMIT = 10


def normalize_brand_codes(brand_codes: Iterable[object]) -> List[str]:
    """Trimmed, non-empty, de-duplicated codes in first-seen order."""
    seen: set[str] = set()
    codes: List[str] = []
    for code in brand_codes or []:
        if not isinstance(code, str):
            continue
        value = code.strip()
        if value and value not in seen:
            seen.add(value)
            codes.append(value)
    return codes


def chunk_brand_codes(brand_codes: Iterable[object], size: int = BRAND_CODE_QUERY_LIMIT) -> List[List[str]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    codes = normalize_brand_codes(brand_codes)
    return [codes[i : i + size] for i in range(0, len(codes), size)]


def check_brand_code_batch(brand_codes: List[str]) -> None:
    if not brand_codes:
        raise ValueError("at least one brand code is required")
    if len(brand_codes) > BRAND_CODE_QUERY_LIMIT:
        raise ValueError(
            f"at most {BRAND_CODE_QUERY_LIMIT} brand codes per query, got {len(brand_codes)}"
        )
