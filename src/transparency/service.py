"""Anchor service: the facade for the anchoring pipeline.

This is the primary interface for callers (CLI, schedulers, API layers).
It orchestrates:
- Anchor creation (snapshot upstream state, persist PENDING)
- Publishing (route to a target, then confirm or fail the anchor)
- History, latest anchor and digest verification
- Publish target configuration

Business outcomes come back as ServiceResult values. Validation,
not-found and publish failures are reported in the result; persistence
and programming errors propagate as exceptions so the outermost
boundary can log them in full and answer with a generic message.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx

from transparency.config import AnchorSettings
from transparency.engine.lifecycle import DEFAULT_PAGE_SIZE, AnchorLifecycle
from transparency.engine.verifier import Verifier
from transparency.errors import AnchorError, ErrorCode
from transparency.models.anchor import (
    Anchor,
    AnchorStatus,
    AnchorTarget,
    TargetType,
)
from transparency.net import build_client
from transparency.persistence.audit import HttpAuditSink
from transparency.persistence.sqlite_store import SqliteAnchorStore
from transparency.persistence.store import AnchorStore
from transparency.publish.publishers import LocalLogPublisher
from transparency.publish.router import PublishRouter, build_router
from transparency.snapshot.collector import SnapshotCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls, **data: Any) -> ServiceResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, *errors: str, **data: Any) -> ServiceResult:
        return cls(success=False, errors=list(errors), data=data, error_code=code)

    @classmethod
    def from_error(cls, exc: AnchorError) -> ServiceResult:
        return cls.fail(exc.code, exc.message)


class AnchorService:
    """Facade over lifecycle, router and store.

    Usage:
        async with open_service(AnchorSettings.from_env()) as service:
            result = await service.run(target_id="local-log")
            if result.success:
                print(result.data["anchor"]["combined_root_hash"])
    """

    def __init__(
        self,
        lifecycle: AnchorLifecycle,
        router: PublishRouter,
        store: AnchorStore,
    ) -> None:
        self._lifecycle = lifecycle
        self._router = router
        self._store = store

    # ------------------------------------------------------------------
    # Anchor creation and publishing
    # ------------------------------------------------------------------

    async def create_anchor(self) -> ServiceResult:
        """Snapshot upstream state and persist a PENDING anchor."""
        anchor = await self._lifecycle.create()
        return ServiceResult.ok(anchor=anchor.to_dict())

    async def run(self, target_id: Optional[str] = None) -> ServiceResult:
        """Create an anchor and, when a target is given, publish it.

        The anchor is always created. If the target is unknown the PENDING
        anchor is returned with an error; if publishing fails the anchor
        is moved to FAILED and the result carries the publish error.
        """
        anchor = await self._lifecycle.create()
        if not target_id:
            return ServiceResult.ok(anchor=anchor.to_dict())
        return await self._publish(anchor, target_id, idempotency_key=None)

    async def publish_anchor(
        self,
        anchor_id: int,
        target_id: Optional[str],
        idempotency_key: Optional[str] = None,
    ) -> ServiceResult:
        """Publish an existing anchor to a configured target."""
        if not target_id:
            return ServiceResult.fail(ErrorCode.VALIDATION, "target_id is required")

        anchor = self._lifecycle.get(anchor_id)
        if anchor is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Anchor not found: {anchor_id}")

        if anchor.status == AnchorStatus.ANCHORED and anchor.anchor_target == target_id:
            # Already published here: a retry must not create a second entry.
            return ServiceResult.ok(anchor=anchor.to_dict(), already_anchored=True)
        if anchor.status != AnchorStatus.PENDING:
            return ServiceResult.fail(
                ErrorCode.VALIDATION,
                f"Anchor {anchor_id} is {anchor.status.value}; only PENDING anchors can be published",
                anchor=anchor.to_dict(),
            )
        return await self._publish(anchor, target_id, idempotency_key)

    async def confirm_anchor(
        self,
        anchor_id: int,
        anchor_target: Optional[str],
        anchor_ref: Optional[str],
        anchor_proof: Optional[dict[str, Any]] = None,
    ) -> ServiceResult:
        """Record a publish that happened outside this service."""
        try:
            anchor = await self._lifecycle.confirm(anchor_id, anchor_target, anchor_ref, anchor_proof)
        except AnchorError as exc:
            return ServiceResult.from_error(exc)
        return ServiceResult.ok(anchor=anchor.to_dict())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_anchor(self, anchor_id: int) -> ServiceResult:
        anchor = self._lifecycle.get(anchor_id)
        if anchor is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Anchor not found: {anchor_id}")
        return ServiceResult.ok(anchor=anchor.to_dict())

    def anchor_history(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> ServiceResult:
        try:
            anchors = self._lifecycle.list(limit=limit, offset=offset, status=status)
        except AnchorError as exc:
            return ServiceResult.from_error(exc)
        return ServiceResult.ok(count=len(anchors), anchors=[a.to_dict() for a in anchors])

    def latest_anchor(self) -> ServiceResult:
        anchor = self._lifecycle.latest()
        if anchor is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "No anchors yet")
        return ServiceResult.ok(anchor=anchor.to_dict())

    def verify_hash(self, combined_root_hash: str) -> ServiceResult:
        """Verification is an answer, not an error: a miss is still success."""
        result = self._lifecycle.verify(combined_root_hash)
        return ServiceResult.ok(**result.to_dict())

    def check_integrity(self, batch_size: int = 500) -> ServiceResult:
        """Recompute every stored combined root and report mismatches."""
        checked = 0
        mismatched: list[int] = []
        offset = 0
        while True:
            batch = self._store.list(limit=batch_size, offset=offset)
            if not batch:
                break
            for anchor in batch:
                checked += 1
                if not Verifier.check_integrity(anchor):
                    mismatched.append(anchor.id)
            offset += len(batch)
        if mismatched:
            logger.warning("Integrity check: combined root mismatch for anchors %s", mismatched)
            return ServiceResult.fail(
                ErrorCode.INTERNAL,
                f"{len(mismatched)} anchor(s) fail combined root recomputation",
                checked=checked,
                mismatched=mismatched,
            )
        return ServiceResult.ok(checked=checked, mismatched=[])

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def list_targets(self) -> ServiceResult:
        targets = self._store.list_targets(enabled_only=True)
        return ServiceResult.ok(targets=[t.to_dict() for t in targets])

    def register_target(
        self,
        target_id: str,
        target_type: str,
        config: Optional[dict[str, Any]] = None,
        enabled: bool = True,
    ) -> ServiceResult:
        """Add or replace a publish target row."""
        if not target_id:
            return ServiceResult.fail(ErrorCode.VALIDATION, "target_id is required")
        known = {t.value for t in TargetType}
        if target_type not in known:
            return ServiceResult.fail(
                ErrorCode.VALIDATION,
                f"Unknown target type: {target_type} (expected one of {', '.join(sorted(known))})",
            )
        target = AnchorTarget(
            target_id=target_id,
            target_type=target_type,
            config=dict(config or {}),
            enabled=enabled,
        )
        self._store.save_target(target)
        return ServiceResult.ok(target=target.to_dict())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _publish(
        self, anchor: Anchor, target_id: str, idempotency_key: Optional[str]
    ) -> ServiceResult:
        target = self._store.get_target(target_id)
        if target is None or not target.enabled:
            return ServiceResult.fail(
                ErrorCode.VALIDATION,
                f"Unknown or disabled target: {target_id}",
                anchor=anchor.to_dict(),
            )

        result = await self._router.publish(anchor, target, idempotency_key)
        try:
            if result.success:
                confirmed = await self._lifecycle.confirm(
                    anchor.id, target_id, result.anchor_ref, result.proof,
                )
                return ServiceResult.ok(anchor=confirmed.to_dict(), publish=result.to_dict())
            failed = await self._lifecycle.fail(anchor.id, result.error or "unknown publish error")
        except AnchorError as exc:
            # Another publish of the same anchor settled it while this one was in flight.
            logger.warning("Publish of anchor %d to %s not recorded: %s", anchor.id, target_id, exc.message)
            current = self._lifecycle.get(anchor.id) or anchor
            return ServiceResult.fail(
                exc.code, exc.message, anchor=current.to_dict(), publish=result.to_dict(),
            )

        return ServiceResult.fail(
            ErrorCode.PUBLISH_FAILURE,
            result.error or "unknown publish error",
            anchor=failed.to_dict(),
            publish=result.to_dict(),
        )


@contextlib.asynccontextmanager
async def open_service(
    settings: AnchorSettings,
    store: Optional[AnchorStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[AnchorService]:
    """Acquire the HTTP client and store, yield a service, release both.

    A store or client passed in by the caller is used as-is and left open.
    """
    owns_store = store is None
    owns_client = client is None
    if store is None:
        store = SqliteAnchorStore(settings.db_path)
    if client is None:
        client = build_client(settings.http_timeout_seconds)
    try:
        collector = SnapshotCollector(
            client,
            settings.registry_url,
            settings.forensics_url,
            registry_page_limit=settings.registry_page_limit,
            retry_policy=settings.retry_policy,
        )
        audit = HttpAuditSink(client, settings.forensics_url, settings.instance_id)
        lifecycle = AnchorLifecycle(collector, store, audit)
        router = build_router(
            client,
            public_log_url=settings.public_log_url,
            local_log=LocalLogPublisher(settings.local_log_path),
            retry_policy=settings.retry_policy,
        )
        yield AnchorService(lifecycle, router, store)
    finally:
        if owns_client:
            await client.aclose()
        if owns_store:
            store.close()


__all__ = ["AnchorService", "ServiceResult", "open_service"]
