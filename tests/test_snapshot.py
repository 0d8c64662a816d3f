"""Tests for snapshot collection: upstream failures degrade, never abort."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from transparency.crypto.hashing import ABSENT, combine_digests, combined_root, digest
from transparency.net import RetryPolicy
from transparency.snapshot.collector import (
    REGISTRY_UNAVAILABLE,
    WCAF_HEADS_NOT_AVAILABLE,
    WCAF_UNAVAILABLE,
    SnapshotCollector,
)


REGISTRY = "http://registry.test"
CHAIN = "http://chain.test"
FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

ISSUERS = [
    {"issuer_id": "iss-b", "current_status": "ACTIVE", "status_updated_at": "2026-01-01T00:00:00Z", "name": "B"},
    {"issuer_id": "iss-a", "current_status": "SUSPENDED", "status_updated_at": None},
]
HEADS = [
    {"document_id": "doc-2", "head_event_hash": digest("e2")},
    {"document_id": "doc-1", "head_event_hash": digest("e1")},
]


def _handler(
    issuers=ISSUERS,
    heads=HEADS,
    registry_status: int = 200,
    heads_status: int = 200,
    health_status: int = 200,
):
    calls: list[str] = []

    def handle(request: httpx.Request) -> httpx.Response:
        calls.append(f"{request.method} {request.url.host}{request.url.path}")
        if request.url.host == "registry.test" and request.url.path == "/directory":
            return httpx.Response(registry_status, json={"issuers": issuers})
        if request.url.path == "/chain-heads":
            return httpx.Response(heads_status, json={"heads": heads})
        if request.url.path == "/health":
            return httpx.Response(health_status, json={"status": "ok"})
        return httpx.Response(404)

    handle.calls = calls
    return handle


def _collect(handler, method: str = "create_snapshot", retry: RetryPolicy = RetryPolicy(0, 0.0)):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            collector = SnapshotCollector(
                client, REGISTRY, CHAIN, registry_page_limit=500,
                retry_policy=retry, clock=lambda: FIXED_NOW,
            )
            return await getattr(collector, method)()

    return asyncio.run(go())


class TestRegistrySnapshot:
    def test_digest_of_sorted_projection(self) -> None:
        source = _collect(_handler(), "collect_registry_snapshot")
        expected = digest([
            {"issuer_id": "iss-a", "current_status": "SUSPENDED", "status_updated_at": None},
            {"issuer_id": "iss-b", "current_status": "ACTIVE", "status_updated_at": "2026-01-01T00:00:00Z"},
        ])
        assert source.hash == expected
        assert source.count == 2
        assert source.error is None

    def test_extra_fields_ignored(self) -> None:
        trimmed = [{k: v for k, v in i.items() if k != "name"} for i in ISSUERS]
        assert (
            _collect(_handler(issuers=trimmed), "collect_registry_snapshot").hash
            == _collect(_handler(), "collect_registry_snapshot").hash
        )

    def test_missing_field_differs_from_null(self) -> None:
        with_null = [{"issuer_id": "iss-a", "current_status": "ACTIVE", "status_updated_at": None}]
        without = [{"issuer_id": "iss-a", "current_status": "ACTIVE"}]
        a = _collect(_handler(issuers=with_null), "collect_registry_snapshot")
        b = _collect(_handler(issuers=without), "collect_registry_snapshot")
        assert a.hash != b.hash
        assert b.hash == digest([{"issuer_id": "iss-a", "current_status": "ACTIVE", "status_updated_at": ABSENT}])

    def test_page_limit_sent(self) -> None:
        seen: list[str] = []

        def handle(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params.get("limit"))
            return httpx.Response(200, json={"issuers": []})

        _collect(handle, "collect_registry_snapshot")
        assert seen == ["500"]

    def test_empty_registry(self) -> None:
        source = _collect(_handler(issuers=[]), "collect_registry_snapshot")
        assert source.hash == digest([])
        assert source.count == 0

    def test_non_success_yields_sentinel(self) -> None:
        source = _collect(_handler(registry_status=500), "collect_registry_snapshot")
        assert source.hash == REGISTRY_UNAVAILABLE
        assert source.count == 0
        assert "500" in source.error

    def test_malformed_body_yields_sentinel(self) -> None:
        def handle(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        source = _collect(handle, "collect_registry_snapshot")
        assert source.hash == REGISTRY_UNAVAILABLE

    def test_transport_error_yields_sentinel(self) -> None:
        def handle(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        source = _collect(handle, "collect_registry_snapshot")
        assert source.hash == REGISTRY_UNAVAILABLE
        assert source.degraded

    def test_retry_recovers_from_gateway_error(self) -> None:
        attempts: list[int] = []

        def handle(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"issuers": ISSUERS})

        source = _collect(handle, "collect_registry_snapshot", retry=RetryPolicy(2, 0.0))
        assert len(attempts) == 2
        assert source.count == 2


class TestChainHeadsSnapshot:
    def test_aggregate_of_head_hashes(self) -> None:
        source = _collect(_handler(), "collect_chain_heads_snapshot")
        assert source.hash == combine_digests([digest("e1"), digest("e2")])
        assert source.count == 2

    def test_no_chains_yields_empty_marker(self) -> None:
        source = _collect(_handler(heads=[]), "collect_chain_heads_snapshot")
        assert source.hash == digest("EMPTY")
        assert source.count == 0

    def test_missing_endpoint_on_healthy_service(self) -> None:
        handler = _handler(heads_status=404, health_status=200)
        source = _collect(handler, "collect_chain_heads_snapshot")
        assert source.hash == WCAF_HEADS_NOT_AVAILABLE
        assert source.count == 0
        assert source.note == "chain-heads endpoint not available"
        assert source.error is None
        assert "GET chain.test/health" in handler.calls

    def test_unhealthy_service(self) -> None:
        source = _collect(_handler(heads_status=500, health_status=503), "collect_chain_heads_snapshot")
        assert source.hash == WCAF_UNAVAILABLE
        assert source.count == 0
        assert source.error

    def test_transport_error(self) -> None:
        def handle(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        source = _collect(handle, "collect_chain_heads_snapshot")
        assert source.hash == WCAF_UNAVAILABLE

    def test_malformed_head_yields_sentinel(self) -> None:
        source = _collect(_handler(heads=[{"document_id": "doc-1"}]), "collect_chain_heads_snapshot")
        assert source.hash == WCAF_UNAVAILABLE

    def test_non_string_document_id_yields_sentinel(self) -> None:
        heads = [{"document_id": 7, "head_event_hash": digest("e1")}]
        source = _collect(_handler(heads=heads), "collect_chain_heads_snapshot")
        assert source.hash == WCAF_UNAVAILABLE
        assert "document_id" in source.error

    def test_internal_bug_is_not_masked(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(digests):
            raise TypeError("combine_digests broke")

        monkeypatch.setattr("transparency.snapshot.collector.combine_digests", broken)
        with pytest.raises(TypeError, match="combine_digests broke"):
            _collect(_handler(), "collect_chain_heads_snapshot")


class TestCreateSnapshot:
    def test_combined_root(self) -> None:
        snapshot = _collect(_handler())
        assert snapshot.combined_root_hash == combined_root(
            snapshot.issuer_registry_root_hash, snapshot.wcaf_heads_root_hash,
        )
        assert snapshot.issuer_count == 2
        assert snapshot.wcaf_document_count == 2
        assert snapshot.snapshot_at == FIXED_NOW

    def test_one_source_down_other_still_counted(self) -> None:
        snapshot = _collect(_handler(registry_status=502))
        assert snapshot.issuer_registry_root_hash == REGISTRY_UNAVAILABLE
        assert snapshot.issuer_count == 0
        assert snapshot.wcaf_document_count == 2

    def test_both_sources_down(self) -> None:
        def handle(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        snapshot = _collect(handle)
        assert snapshot.combined_root_hash == combined_root(REGISTRY_UNAVAILABLE, WCAF_UNAVAILABLE)

    def test_deterministic_for_same_state(self) -> None:
        first = _collect(_handler(issuers=list(ISSUERS)))
        second = _collect(_handler(issuers=list(reversed(ISSUERS)), heads=list(reversed(HEADS))))
        assert first.combined_root_hash == second.combined_root_hash

    def test_sources_fetched_concurrently(self) -> None:
        async def go():
            in_flight = 0
            both_waiting = asyncio.Event()

            async def handle(request: httpx.Request) -> httpx.Response:
                nonlocal in_flight
                if request.url.path in ("/directory", "/chain-heads"):
                    in_flight += 1
                    if in_flight == 2:
                        both_waiting.set()
                    # Only answers once the other source's request is also pending.
                    await asyncio.wait_for(both_waiting.wait(), timeout=2.0)
                return _handler()(request)

            async with httpx.AsyncClient(transport=httpx.MockTransport(handle)) as client:
                collector = SnapshotCollector(client, REGISTRY, CHAIN, clock=lambda: FIXED_NOW)
                return await collector.create_snapshot()

        snapshot = asyncio.run(go())
        assert not snapshot.registry.degraded
        assert not snapshot.wcaf_heads.degraded
        assert snapshot.issuer_count == 2
        assert snapshot.wcaf_document_count == 2
