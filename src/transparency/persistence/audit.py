"""Audit emission for anchor lifecycle events.

Every lifecycle transition is reported to an audit sink so that the
event-chain service records when anchors were created, confirmed or
failed. Delivery is best effort and at-most-once: a sink makes a single
attempt, never retries, and never raises. A lost audit event is an
observability problem, not a lifecycle failure.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from transparency.models.anchor import Anchor

logger = logging.getLogger(__name__)

AUDIT_SYSTEM_NAME = "transparency-anchor"


class AuditEventType(str, enum.Enum):
    """Lifecycle events reported to the audit sink."""
    CREATED = "TRANSPARENCY_ANCHOR_CREATED"
    CONFIRMED = "TRANSPARENCY_ANCHOR_CONFIRMED"
    FAILED = "TRANSPARENCY_ANCHOR_FAILED"


@dataclass(frozen=True)
class AuditEvent:
    """One event as delivered to the audit sink."""
    document_id: str
    type: AuditEventType
    payload: dict[str, Any]
    actor: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "type": self.type.value,
            "payload": self.payload,
            "actor": self.actor,
        }


def build_event(event_type: AuditEventType, anchor: Anchor, instance_id: str) -> AuditEvent:
    """Describe an anchor transition with its full digest tuple."""
    return AuditEvent(
        document_id=f"transparency:anchor-{anchor.id}",
        type=event_type,
        payload={
            "anchor_id": anchor.id,
            "combined_root_hash": anchor.combined_root_hash,
            "issuer_registry_root_hash": anchor.issuer_registry_root_hash,
            "wcaf_heads_root_hash": anchor.wcaf_heads_root_hash,
            "issuer_count": anchor.issuer_count,
            "wcaf_document_count": anchor.wcaf_document_count,
            "anchor_target": anchor.anchor_target,
            "anchor_ref": anchor.anchor_ref,
            "status": anchor.status.value,
        },
        actor={"system": AUDIT_SYSTEM_NAME, "instance_id": instance_id},
    )


class AuditSink(Protocol):
    """Outbound port for lifecycle events. Implementations must not raise."""

    async def emit(self, event_type: AuditEventType, anchor: Anchor) -> None:
        ...


class HttpAuditSink:
    """Posts lifecycle events to ``<forensics>/events``."""

    def __init__(self, client: httpx.AsyncClient, forensics_url: str, instance_id: str) -> None:
        self._client = client
        self._url = forensics_url.rstrip("/") + "/events"
        self._instance_id = instance_id

    async def emit(self, event_type: AuditEventType, anchor: Anchor) -> None:
        event = build_event(event_type, anchor, self._instance_id)
        try:
            response = await self._client.post(self._url, json=event.to_dict())
        except httpx.HTTPError as exc:
            logger.warning("Audit emit error for %s (anchor %d): %s", event_type.value, anchor.id, exc)
            return
        if not response.is_success:
            logger.warning(
                "Audit emit failed for %s (anchor %d): HTTP %d",
                event_type.value, anchor.id, response.status_code,
            )


class MemoryAuditSink:
    """Keeps events in a list. Used for tests and offline runs."""

    def __init__(self, instance_id: str = "local") -> None:
        self._instance_id = instance_id
        self.events: list[AuditEvent] = []

    async def emit(self, event_type: AuditEventType, anchor: Anchor) -> None:
        self.events.append(build_event(event_type, anchor, self._instance_id))

    def types(self) -> list[AuditEventType]:
        return [e.type for e in self.events]
