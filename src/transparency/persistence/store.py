"""Anchor persistence port and the in-memory store.

The store is the only shared mutable resource in the engine. Every
lifecycle operation is a single read or a single compare-and-set write
against one record: update() only applies when the record is still in
the status the caller observed, so two racing transitions cannot both
succeed.

Records are never deleted.
"""

from __future__ import annotations

import dataclasses
import itertools
import threading
from datetime import datetime
from typing import Any, Optional, Protocol

from transparency.models.anchor import (
    LOCAL_LOG_TARGET_ID,
    Anchor,
    AnchorStatus,
    AnchorTarget,
    Snapshot,
    TargetType,
)

# Fields a transition is allowed to change.
MUTABLE_FIELDS = frozenset({
    "status", "anchor_target", "anchor_ref", "anchor_proof", "anchored_at",
})

DEFAULT_TARGETS = (
    AnchorTarget(
        target_id=LOCAL_LOG_TARGET_ID,
        target_type=TargetType.PUBLIC_LOG.value,
        config={"description": "Local append-only log (development)"},
        enabled=True,
    ),
)


class AnchorStore(Protocol):
    """What the lifecycle and verifier need from persistence.

    Methods are synchronous and may block. The lifecycle calls the write
    path from worker threads, so implementations must be thread-safe.
    """

    def insert(self, snapshot: Snapshot, created_at: datetime) -> Anchor:
        """Persist a new PENDING anchor and assign its id."""
        ...

    def get(self, anchor_id: int) -> Optional[Anchor]:
        ...

    def update(
        self, anchor_id: int, expected_status: AnchorStatus, **changes: Any
    ) -> Optional[Anchor]:
        """Apply changes iff the anchor exists and is in expected_status.

        Returns the updated anchor, or None when nothing matched.
        """
        ...

    def list(
        self, limit: int, offset: int, status: Optional[AnchorStatus] = None
    ) -> list[Anchor]:
        """Anchors newest first (created_at, then id, descending)."""
        ...

    def latest(self) -> Optional[Anchor]:
        ...

    def find_anchored(self, combined_root_hash: str) -> Optional[Anchor]:
        """Most recent ANCHORED record committing to the digest."""
        ...

    def list_targets(self, enabled_only: bool = True) -> list[AnchorTarget]:
        ...

    def get_target(self, target_id: str) -> Optional[AnchorTarget]:
        ...

    def save_target(self, target: AnchorTarget) -> None:
        ...

    def close(self) -> None:
        ...


def check_changes(changes: dict[str, Any]) -> None:
    """Reject writes to immutable fields."""
    illegal = set(changes) - MUTABLE_FIELDS
    if illegal:
        raise ValueError(f"Immutable anchor fields: {sorted(illegal)}")


def newest_first(anchor: Anchor) -> tuple[datetime, int]:
    return (anchor.created_at, anchor.id)


class InMemoryAnchorStore:
    """Thread-safe store kept entirely in process memory.

    Used for tests and for dry runs where nothing should touch disk.
    """

    def __init__(self, targets: tuple[AnchorTarget, ...] = DEFAULT_TARGETS) -> None:
        self._lock = threading.Lock()
        self._anchors: dict[int, Anchor] = {}
        self._ids = itertools.count(1)
        self._targets: dict[str, AnchorTarget] = {t.target_id: t for t in targets}

    def insert(self, snapshot: Snapshot, created_at: datetime) -> Anchor:
        with self._lock:
            anchor = Anchor(
                id=next(self._ids),
                issuer_registry_root_hash=snapshot.issuer_registry_root_hash,
                wcaf_heads_root_hash=snapshot.wcaf_heads_root_hash,
                combined_root_hash=snapshot.combined_root_hash,
                issuer_count=snapshot.issuer_count,
                wcaf_document_count=snapshot.wcaf_document_count,
                snapshot_at=snapshot.snapshot_at,
                created_at=created_at,
                status=AnchorStatus.PENDING,
            )
            self._anchors[anchor.id] = anchor
            return anchor

    def get(self, anchor_id: int) -> Optional[Anchor]:
        with self._lock:
            return self._anchors.get(anchor_id)

    def update(
        self, anchor_id: int, expected_status: AnchorStatus, **changes: Any
    ) -> Optional[Anchor]:
        check_changes(changes)
        with self._lock:
            current = self._anchors.get(anchor_id)
            if current is None or current.status != expected_status:
                return None
            updated = dataclasses.replace(current, **changes)
            self._anchors[anchor_id] = updated
            return updated

    def list(
        self, limit: int, offset: int, status: Optional[AnchorStatus] = None
    ) -> list[Anchor]:
        with self._lock:
            rows = [a for a in self._anchors.values() if status is None or a.status == status]
        rows.sort(key=newest_first, reverse=True)
        return rows[offset:offset + limit]

    def latest(self) -> Optional[Anchor]:
        rows = self.list(limit=1, offset=0)
        return rows[0] if rows else None

    def find_anchored(self, combined_root_hash: str) -> Optional[Anchor]:
        with self._lock:
            matches = [
                a for a in self._anchors.values()
                if a.combined_root_hash == combined_root_hash
                and a.status == AnchorStatus.ANCHORED
            ]
        if not matches:
            return None
        return max(matches, key=newest_first)

    def list_targets(self, enabled_only: bool = True) -> list[AnchorTarget]:
        with self._lock:
            targets = list(self._targets.values())
        if enabled_only:
            targets = [t for t in targets if t.enabled]
        return sorted(targets, key=lambda t: t.target_id)

    def get_target(self, target_id: str) -> Optional[AnchorTarget]:
        with self._lock:
            return self._targets.get(target_id)

    def save_target(self, target: AnchorTarget) -> None:
        with self._lock:
            self._targets[target.target_id] = target

    def close(self) -> None:
        pass
