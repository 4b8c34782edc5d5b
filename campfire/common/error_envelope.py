"""JSON error body shared by the review and recipe review routers.

Every failure leaves the API as ``{"error": {...}}``. Review errors carry
their pending decision in ``details["pending"]``.
"""
from __future__ import annotations

from typing import Any, Dict, Literal, NoReturn, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from campfire.common.errors import (
    DecisionInFlightError,
    GroupClosedError,
    LockAcquisitionError,
    NotFoundError,
    ReviewError,
    TransientWriteError,
    ValidationError,
)

Gate = Literal["group_lock", None]


class ErrorDetail(BaseModel):
    code: str
    message: str
    http_status: int
    # set only when the advisory group lock refused the write
    gate: Optional[Gate] = None
    action_name: Optional[str] = None
    resource_kind: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


def build_error_envelope(
    code: str,
    message: str,
    status_code: int = 400,
    gate: Optional[Gate] = None,
    action_name: Optional[str] = None,
    resource_kind: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ErrorEnvelope:
    return ErrorEnvelope(
        error=ErrorDetail(
            code=code,
            message=message,
            http_status=status_code,
            gate=gate,
            action_name=action_name,
            resource_kind=resource_kind,
            details=details or {},
        )
    )


def error_response(code: str, message: str, status_code: int = 400, **fields: Any) -> NoReturn:
    """Raise an ``HTTPException`` whose detail is the envelope.

    ``fields`` are the optional envelope fields: ``gate``, ``action_name``,
    ``resource_kind`` and ``details``.
    """
    envelope = build_error_envelope(code, message, status_code=status_code, **fields)
    raise HTTPException(status_code=status_code, detail=envelope.model_dump())


_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (LockAcquisitionError, 409),
    (GroupClosedError, 409),
    (DecisionInFlightError, 409),
    (TransientWriteError, 503),
)


def review_error_response(
    exc: ReviewError,
    action_name: Optional[str] = None,
    resource_kind: Optional[str] = None,
) -> NoReturn:
    """Raise the envelope matching a review error."""
    status_code = 400
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = status
            break
    details: Dict[str, Any] = {}
    if exc.pending:
        details["pending"] = exc.pending
    error_response(
        code=exc.code,
        message=exc.message,
        status_code=status_code,
        gate="group_lock" if isinstance(exc, LockAcquisitionError) else None,
        action_name=action_name,
        resource_kind=resource_kind,
        details=details,
    )
