"""Core data models for transparency anchoring."""

from transparency.models.anchor import (
    LOCAL_LOG_TARGET_ID,
    Anchor,
    AnchorStatus,
    AnchorTarget,
    PublishResult,
    Snapshot,
    SourceSnapshot,
    TargetType,
    VerificationResult,
)

__all__ = [
    "LOCAL_LOG_TARGET_ID",
    "Anchor",
    "AnchorStatus",
    "AnchorTarget",
    "PublishResult",
    "Snapshot",
    "SourceSnapshot",
    "TargetType",
    "VerificationResult",
]
