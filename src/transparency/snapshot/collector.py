"""Snapshot collection: turns upstream state into reproducible digests.

Two sources are sampled for every anchor:

1. The issuer registry directory (issuer id, status, status timestamp).
2. The event-chain head service (current head hash of each document chain).

Each source is reduced to a digest plus a record count. A source that
cannot be read never aborts the snapshot: it contributes a fixed
sentinel digest and a count of zero, and the reason is logged. The two
sources are read concurrently and joined before the combined root is
computed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from transparency.crypto.hashing import ABSENT, combine_digests, combined_root, digest
from transparency.errors import UpstreamUnavailable
from transparency.models.anchor import Snapshot, SourceSnapshot, utc_now
from transparency.net import NO_RETRY, RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)

REGISTRY_UNAVAILABLE = digest("REGISTRY_UNAVAILABLE")
WCAF_UNAVAILABLE = digest("WCAF_UNAVAILABLE")
WCAF_HEADS_NOT_AVAILABLE = digest("WCAF_HEADS_NOT_AVAILABLE")

DEFAULT_REGISTRY_PAGE_LIMIT = 10_000

# Failures that mean "this source could not be read" rather than a bug.
_SOURCE_ERRORS = (httpx.HTTPError, UpstreamUnavailable, ValueError)


class SnapshotCollector:
    """Samples the issuer registry and the chain heads for one anchor.

    Usage:
        async with httpx.AsyncClient() as client:
            collector = SnapshotCollector(client, registry_url, chain_url)
            snapshot = await collector.create_snapshot()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        registry_url: str,
        chain_service_url: str,
        registry_page_limit: int = DEFAULT_REGISTRY_PAGE_LIMIT,
        retry_policy: RetryPolicy = NO_RETRY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._registry_url = registry_url.rstrip("/")
        self._chain_url = chain_service_url.rstrip("/")
        self._page_limit = registry_page_limit
        self._retry = retry_policy
        self._clock = clock

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def create_snapshot(self) -> Snapshot:
        """Read both sources concurrently and combine their digests."""
        registry, heads = await asyncio.gather(
            self.collect_registry_snapshot(),
            self.collect_chain_heads_snapshot(),
        )
        return Snapshot(
            registry=registry,
            wcaf_heads=heads,
            combined_root_hash=combined_root(registry.hash, heads.hash),
            snapshot_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def collect_registry_snapshot(self) -> SourceSnapshot:
        """Digest of the issuer directory, sorted by issuer_id."""
        try:
            issuers = await self._fetch_issuers()
            projected = sorted(
                (_project_issuer(record) for record in issuers),
                key=lambda p: _require_str(p["issuer_id"], "issuer_id"),
            )
            return SourceSnapshot(hash=digest(projected), count=len(issuers))
        except _SOURCE_ERRORS as exc:
            reason = _describe(exc)
            logger.warning("Issuer registry snapshot unavailable: %s", reason)
            return SourceSnapshot(hash=REGISTRY_UNAVAILABLE, count=0, error=reason)

    async def collect_chain_heads_snapshot(self) -> SourceSnapshot:
        """Aggregate of the current head hash of every document chain."""
        try:
            heads = await self._fetch_heads()
        except _HeadsEndpointMissing as missing:
            logger.warning(
                "Chain-heads endpoint not available (service healthy): %s", missing
            )
            return SourceSnapshot(
                hash=WCAF_HEADS_NOT_AVAILABLE,
                count=0,
                note="chain-heads endpoint not available",
            )
        except _SOURCE_ERRORS as exc:
            reason = _describe(exc)
            logger.warning("Chain heads snapshot unavailable: %s", reason)
            return SourceSnapshot(hash=WCAF_UNAVAILABLE, count=0, error=reason)

        try:
            projected = sorted(
                (
                    {"document_id": h.get("document_id"), "head_hash": h.get("head_event_hash")}
                    for h in heads
                ),
                key=lambda p: _require_str(p["document_id"], "document_id"),
            )
            head_hashes = [_require_str(p["head_hash"], "head_event_hash") for p in projected]
            return SourceSnapshot(hash=combine_digests(head_hashes), count=len(heads))
        except _SOURCE_ERRORS as exc:
            reason = _describe(exc)
            logger.warning("Chain heads snapshot unavailable: %s", reason)
            return SourceSnapshot(hash=WCAF_UNAVAILABLE, count=0, error=reason)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fetch_issuers(self) -> list[dict[str, Any]]:
        response = await request_with_retry(
            self._client,
            "GET",
            f"{self._registry_url}/directory",
            self._retry,
            params={"limit": self._page_limit},
        )
        if not response.is_success:
            raise UpstreamUnavailable(f"Registry fetch failed: {response.status_code}")
        return _list_field(response.json(), "issuers")

    async def _fetch_heads(self) -> list[dict[str, Any]]:
        response = await request_with_retry(
            self._client, "GET", f"{self._chain_url}/chain-heads", self._retry,
        )
        if not response.is_success:
            status = response.status_code
            health = await request_with_retry(
                self._client, "GET", f"{self._chain_url}/health", self._retry,
            )
            if health.is_success:
                raise _HeadsEndpointMissing(f"chain-heads returned {status}")
            raise UpstreamUnavailable(f"Chain service fetch failed: {status}")
        return _list_field(response.json(), "heads")


class _HeadsEndpointMissing(Exception):
    """The chain service is up but does not serve chain heads."""


def _project_issuer(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "issuer_id": record.get("issuer_id", ABSENT),
        "current_status": record.get("current_status", ABSENT),
        "status_updated_at": record.get("status_updated_at", ABSENT),
    }


def _list_field(body: Any, name: str) -> list[dict[str, Any]]:
    if not isinstance(body, dict):
        raise ValueError(f"Expected a JSON object with '{name}'")
    items = body.get(name) or []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ValueError(f"'{name}' must be a list of objects")
    return items


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {value!r}")
    return value


def _describe(exc: Exception) -> str:
    text = str(exc)
    return text or exc.__class__.__name__


def sentinel_reason(source: SourceSnapshot) -> Optional[str]:
    """Human-readable reason a source contributed a sentinel, if any."""
    return source.error or source.note
