"""Reviewer identity helpers and FastAPI context builder."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Header, HTTPException

VALID_ROLES = frozenset({
    "admin",
    "agency",
    "client",
    "designer",
    "editor",
    "manager",
    "project-manager",
    "ops",
})


@dataclass
class RequestContext:
    """Who is acting. Every decision is stamped from this."""

    user_id: str
    user_email: Optional[str] = None
    reviewer_name: Optional[str] = None
    user_role: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    _raw_headers: Dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id is required")
        if not self.request_id:
            raise ValueError("request_id is required")
        if self.user_role:
            role = self.user_role.strip().lower()
            if role not in VALID_ROLES:
                raise ValueError(f"user_role must be one of {sorted(VALID_ROLES)}, got: {role}")
            self.user_role = role
        else:
            self.user_role = None

    @property
    def display_name(self) -> str:
        return self.reviewer_name or self.user_email or self.user_id or "unknown"


class RequestContextBuilder:
    """Builder for RequestContext from HTTP headers."""

    @classmethod
    def from_headers(cls, headers: Dict[str, str]) -> RequestContext:
        normalized = {key.lower(): value for key, value in headers.items()}
        user_id = normalized.get("x-user-id")
        if not user_id:
            raise ValueError("X-User-Id header is required")
        ctx = RequestContext(
            user_id=user_id,
            user_email=normalized.get("x-user-email") or None,
            reviewer_name=normalized.get("x-reviewer-name") or None,
            user_role=normalized.get("x-user-role") or None,
            request_id=normalized.get("x-request-id") or uuid.uuid4().hex,
        )
        ctx._raw_headers = dict(headers)
        return ctx


async def get_request_context(
    header_user: Optional[str] = Header(default=None, alias="X-User-Id"),
    header_email: Optional[str] = Header(default=None, alias="X-User-Email"),
    header_name: Optional[str] = Header(default=None, alias="X-Reviewer-Name"),
    header_role: Optional[str] = Header(default=None, alias="X-User-Role"),
    header_request_id: Optional[str] = Header(default=None, alias="X-Request-Id"),
) -> RequestContext:
    headers: Dict[str, str] = {}
    if header_user:
        headers["X-User-Id"] = header_user
    if header_email:
        headers["X-User-Email"] = header_email
    if header_name:
        headers["X-Reviewer-Name"] = header_name
    if header_role:
        headers["X-User-Role"] = header_role
    if header_request_id:
        headers["X-Request-Id"] = header_request_id
    try:
        return RequestContextBuilder.from_headers(headers)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
