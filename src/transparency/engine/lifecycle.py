"""Anchor lifecycle: create, confirm and fail anchors.

The lifecycle owns every write to an anchor:

1. create() samples upstream state and persists a PENDING anchor.
2. confirm() records a successful publish (PENDING → ANCHORED).
3. fail() records a failed publish (PENDING → FAILED).

Each transition is validated by AnchorStateMachine and applied as one
compare-and-set write, then reported to the audit sink. Audit delivery
is best effort: a failed emission is logged and never undoes or fails
the transition.

Concurrent create() calls are not coalesced. Two overlapping calls each
persist their own PENDING anchor from their own snapshot.

Store writes made by the async transitions run in a worker thread so
that a blocking store does not stall the event loop. The read accessors
are synchronous and call the store directly.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from transparency.engine.state_machine import AnchorStateMachine
from transparency.engine.verifier import Verifier
from transparency.errors import NotFoundError, TransitionError, ValidationError
from transparency.models.anchor import (
    Anchor,
    AnchorStatus,
    VerificationResult,
    utc_now,
)
from transparency.persistence.audit import AuditEventType, AuditSink, MemoryAuditSink
from transparency.persistence.store import AnchorStore
from transparency.snapshot.collector import SnapshotCollector, sentinel_reason

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class AnchorLifecycle:
    """State machine runtime for anchor records.

    Usage:
        lifecycle = AnchorLifecycle(collector, store, audit_sink)
        anchor = await lifecycle.create()
        anchor = await lifecycle.confirm(anchor.id, "local-log", "local://log/1", proof)
    """

    def __init__(
        self,
        collector: SnapshotCollector,
        store: AnchorStore,
        audit: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._collector = collector
        self._store = store
        self._audit = audit if audit is not None else MemoryAuditSink()
        self._clock = clock
        self._verifier = Verifier(store)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create(self) -> Anchor:
        """Snapshot upstream state and persist a new PENDING anchor."""
        snapshot = await self._collector.create_snapshot()
        anchor = await asyncio.to_thread(self._store.insert, snapshot, self._clock())
        logger.info(
            "Anchor %d created: combined=%s issuers=%d documents=%d",
            anchor.id, anchor.combined_root_hash,
            anchor.issuer_count, anchor.wcaf_document_count,
        )
        for source_name, source in (("registry", snapshot.registry), ("chain heads", snapshot.wcaf_heads)):
            reason = sentinel_reason(source)
            if reason:
                logger.warning("Anchor %d carries the %s sentinel: %s", anchor.id, source_name, reason)
        await self._emit(AuditEventType.CREATED, anchor)
        return anchor

    async def confirm(
        self,
        anchor_id: int,
        anchor_target: Optional[str],
        anchor_ref: Optional[str],
        anchor_proof: Optional[dict[str, Any]] = None,
    ) -> Anchor:
        """Mark an anchor as published to ``anchor_target``.

        Raises ValidationError if the target or ref is missing,
        NotFoundError for an unknown id and TransitionError if the anchor
        is already terminal.
        """
        missing = [
            name for name, value in (("anchor_target", anchor_target), ("anchor_ref", anchor_ref))
            if not value
        ]
        if missing:
            raise ValidationError(
                f"{' and '.join(missing)} required to confirm anchor {anchor_id}",
                context={"anchor_id": anchor_id, "missing": missing},
            )

        anchor = await self._transition(
            anchor_id,
            AnchorStatus.ANCHORED,
            anchor_target=anchor_target,
            anchor_ref=anchor_ref,
            anchor_proof=anchor_proof,
            anchored_at=self._clock(),
        )
        logger.info("Anchor %d anchored at %s (%s)", anchor.id, anchor_target, anchor_ref)
        await self._emit(AuditEventType.CONFIRMED, anchor)
        return anchor

    async def fail(self, anchor_id: int, reason: str) -> Anchor:
        """Mark an anchor as failed, keeping the reason in its proof."""
        anchor = await self._transition(
            anchor_id,
            AnchorStatus.FAILED,
            anchor_proof={"error": reason},
        )
        logger.warning("Anchor %d failed: %s", anchor.id, reason)
        await self._emit(AuditEventType.FAILED, anchor)
        return anchor

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, anchor_id: int) -> Optional[Anchor]:
        return self._store.get(anchor_id)

    def list(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        status: AnchorStatus | str | None = None,
    ) -> list[Anchor]:
        """Anchor history, newest first, optionally filtered by status."""
        if limit < 0 or offset < 0:
            raise ValidationError(f"limit and offset must be non-negative (got {limit}, {offset})")
        return self._store.list(limit=limit, offset=offset, status=_parse_status(status))

    def latest(self) -> Optional[Anchor]:
        return self._store.latest()

    def verify(self, combined_root_hash: str) -> VerificationResult:
        return self._verifier.verify(combined_root_hash)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _transition(self, anchor_id: int, target: AnchorStatus, **changes: Any) -> Anchor:
        current = await asyncio.to_thread(self._store.get, anchor_id)
        if current is None:
            raise NotFoundError(f"Anchor not found: {anchor_id}", context={"anchor_id": anchor_id})

        errors = AnchorStateMachine.validate_transition(current, target)
        if errors:
            raise TransitionError("; ".join(errors), context={"anchor_id": anchor_id})

        updated = await asyncio.to_thread(
            self._store.update, anchor_id, current.status, status=target, **changes,
        )
        if updated is None:
            # Another writer moved the anchor out of current.status first.
            raise TransitionError(
                f"Anchor {anchor_id} changed state concurrently; "
                f"{current.status.value} → {target.value} not applied",
                context={"anchor_id": anchor_id},
            )
        return updated

    async def _emit(self, event_type: AuditEventType, anchor: Anchor) -> None:
        try:
            await self._audit.emit(event_type, anchor)
        except Exception:
            logger.warning(
                "Audit sink raised for %s (anchor %d)", event_type.value, anchor.id,
                exc_info=True,
            )


def _parse_status(status: AnchorStatus | str | None) -> Optional[AnchorStatus]:
    if status is None or isinstance(status, AnchorStatus):
        return status
    try:
        return AnchorStatus(status.upper())
    except ValueError:
        allowed = ", ".join(s.value for s in AnchorStatus)
        raise ValidationError(f"Unknown anchor status: {status} (expected one of {allowed})") from None
