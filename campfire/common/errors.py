"""Error taxonomy shared by the review and recipe review engines."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ReviewError(Exception):
    """Base review error."""

    code = "review.error"

    def __init__(self, message: str, pending: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        # the decision the reviewer tried to submit, kept so it can be resubmitted
        self.pending = pending


class ValidationError(ReviewError):
    """Local input problem; nothing was sent to the store."""

    code = "review.validation"


class LockAcquisitionError(ReviewError):
    """The advisory group lock write was denied. Never retried automatically."""

    code = "review.lock_unavailable"
    default_message = "Unable to acquire lock for this group. Another reviewer may be reviewing it, or you do not have access."

    def __init__(self, message: Optional[str] = None, pending: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.default_message, pending=pending)


class TransientWriteError(ReviewError):
    """Any other store write failure. The caller may resubmit."""

    code = "review.write_failed"


class NotFoundError(ReviewError):
    code = "review.not_found"


class GroupClosedError(ReviewError):
    """Decision or transition not allowed in the group's current status."""

    code = "review.group_closed"


class DecisionInFlightError(ReviewError):
    """A decision is already being submitted for this session."""

    code = "review.submitting"
