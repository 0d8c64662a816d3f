"""Anchor records, publish targets, snapshots and result types.

An Anchor commits to the combined digest of the issuer registry and the
event-chain heads at a point in time. It is created PENDING and moves
exactly once to ANCHORED (published) or FAILED. EXPIRED is reserved and
never produced by the engine.

Records are immutable values: every state change persists a new copy.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


class AnchorStatus(str, enum.Enum):
    """Lifecycle state of an anchor."""
    PENDING = "PENDING"
    ANCHORED = "ANCHORED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"  # Reserved, no transition produces it


class TargetType(str, enum.Enum):
    """Known kinds of publish target."""
    PUBLIC_LOG = "PUBLIC_LOG"
    NOTARY = "NOTARY"
    BLOCKCHAIN = "BLOCKCHAIN"
    CERTIFICATE_TRANSPARENCY = "CERTIFICATE_TRANSPARENCY"


# Reserved target id for the development / fallback sink.
LOCAL_LOG_TARGET_ID = "local-log"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    if ts is None:
        return None
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SourceSnapshot:
    """Digest and record count observed for one upstream source.

    ``error`` is set when the source could not be read and ``hash`` is a
    sentinel. ``note`` explains a sentinel that is not an outage.
    """
    hash: str
    count: int
    error: Optional[str] = None
    note: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None or self.note is not None


@dataclass(frozen=True)
class Snapshot:
    """The digest tuple an anchor is built from."""
    registry: SourceSnapshot
    wcaf_heads: SourceSnapshot
    combined_root_hash: str
    snapshot_at: datetime

    @property
    def issuer_registry_root_hash(self) -> str:
        return self.registry.hash

    @property
    def issuer_count(self) -> int:
        return self.registry.count

    @property
    def wcaf_heads_root_hash(self) -> str:
        return self.wcaf_heads.hash

    @property
    def wcaf_document_count(self) -> int:
        return self.wcaf_heads.count


@dataclass(frozen=True)
class Anchor:
    """A persisted commitment to the combined root hash."""
    id: int
    issuer_registry_root_hash: str
    wcaf_heads_root_hash: str
    combined_root_hash: str
    issuer_count: int
    wcaf_document_count: int
    snapshot_at: datetime
    created_at: datetime
    status: AnchorStatus = AnchorStatus.PENDING
    anchor_target: Optional[str] = None
    anchor_ref: Optional[str] = None
    anchor_proof: Optional[dict[str, Any]] = None
    anchored_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issuer_registry_root_hash": self.issuer_registry_root_hash,
            "wcaf_heads_root_hash": self.wcaf_heads_root_hash,
            "combined_root_hash": self.combined_root_hash,
            "issuer_count": self.issuer_count,
            "wcaf_document_count": self.wcaf_document_count,
            "snapshot_at": format_timestamp(self.snapshot_at),
            "created_at": format_timestamp(self.created_at),
            "status": self.status.value,
            "anchor_target": self.anchor_target,
            "anchor_ref": self.anchor_ref,
            "anchor_proof": self.anchor_proof,
            "anchored_at": format_timestamp(self.anchored_at),
        }


@dataclass(frozen=True)
class AnchorTarget:
    """A configured publish sink.

    ``target_type`` is kept as the raw string so that rows carrying a type
    this build does not know about can still be listed and routed (to an
    "Unknown target type" failure).
    """
    target_id: str
    target_type: str
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "target_type": self.target_type,
            "config": dict(self.config),
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class PublishResult:
    """Normalized outcome of publishing an anchor to one target."""
    success: bool
    anchor_ref: Optional[str] = None
    proof: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, anchor_ref: str, proof: dict[str, Any]) -> PublishResult:
        return cls(success=True, anchor_ref=anchor_ref, proof=proof)

    @classmethod
    def failure(cls, error: str) -> PublishResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "anchor_ref": self.anchor_ref, "proof": self.proof}
        return {"success": False, "error": self.error}


@dataclass(frozen=True)
class VerificationResult:
    """Answer to "was this combined root hash anchored, and when?"."""
    verified: bool
    anchor_id: Optional[int] = None
    anchored_at: Optional[datetime] = None
    anchor_target: Optional[str] = None
    anchor_ref: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if not self.verified:
            return {"verified": False, "message": self.message}
        return {
            "verified": True,
            "anchor_id": self.anchor_id,
            "anchored_at": format_timestamp(self.anchored_at),
            "anchor_target": self.anchor_target,
            "anchor_ref": self.anchor_ref,
        }
