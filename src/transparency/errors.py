"""Error taxonomy for the anchoring engine.

Every failure the engine can report falls into one of five classes:

1. VALIDATION: a required field is missing or a request is malformed.
   Illegal state transitions are a kind of validation failure.
2. NOT_FOUND: the anchor id has no record.
3. UPSTREAM_UNAVAILABLE: the issuer registry or chain-head service could not
   be read. Always recovered inside the snapshot collector.
4. PUBLISH_FAILURE: a publish target rejected or could not take the anchor.
   Always converted into a PublishResult at the router.
5. INTERNAL: persistence or programming errors. Never recovered locally.
"""

from __future__ import annotations

import enum
from typing import Any, Optional


class ErrorCode(str, enum.Enum):
    """Classification reported to callers in ServiceResult.error_code."""
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    PUBLISH_FAILURE = "PUBLISH_FAILURE"
    INTERNAL = "INTERNAL"


class AnchorError(Exception):
    """Base class for all anchoring errors."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(AnchorError):
    """A required field is missing or a value is out of range."""
    code = ErrorCode.VALIDATION


class TransitionError(ValidationError):
    """Raised when an anchor state transition is not allowed."""


class NotFoundError(AnchorError):
    """No anchor exists with the requested id."""
    code = ErrorCode.NOT_FOUND


class UpstreamUnavailable(AnchorError):
    """An upstream collaborator could not be read."""
    code = ErrorCode.UPSTREAM_UNAVAILABLE


class PublishError(AnchorError):
    """A publish target refused the anchor."""
    code = ErrorCode.PUBLISH_FAILURE
