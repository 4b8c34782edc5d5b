"""Audit helper for emitting events for review decisions and group transitions."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

from campfire.common.identity import RequestContext
from campfire.config import runtime_config

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    action: str
    surface: str
    actorId: str
    actorEmail: Optional[str] = None
    actorName: Optional[str] = None
    actorRole: Optional[str] = None
    requestId: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)


def _log_sink(event: AuditEvent) -> Dict[str, Any]:
    logger.info(
        "audit %s by %s: %s",
        event.action,
        event.actorId,
        event.metadata,
        extra={"audit": event.model_dump(mode="json")},
    )
    return {"status": "accepted"}


AuditSink = Callable[[AuditEvent], Optional[Dict[str, Any]]]
_audit_sink: AuditSink = _log_sink


def set_audit_sink(sink: Optional[AuditSink]) -> None:
    """Replace the sink; None restores the logging sink."""
    global _audit_sink
    _audit_sink = sink or _log_sink


def emit_audit_event(
    ctx: RequestContext,
    action: str,
    surface: str = "review",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    event = AuditEvent(
        action=action,
        surface=surface,
        actorId=ctx.user_id,
        actorEmail=ctx.user_email,
        actorName=ctx.reviewer_name,
        actorRole=ctx.user_role,
        requestId=ctx.request_id,
        metadata=dict(metadata or {}),
    )
    result = _audit_sink(event)
    if not result or result.get("status") != "accepted":
        detail = (result or {}).get("error", "audit persistence failed")
        if runtime_config.audit_strict():
            raise RuntimeError(detail)
        logger.warning("audit persistence failed: %s", detail)
