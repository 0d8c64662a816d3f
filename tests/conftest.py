"""Shared fixtures: a scripted snapshot source and an in-memory pipeline."""

from datetime import datetime, timedelta, timezone

import pytest

from transparency.crypto.hashing import combined_root, digest
from transparency.engine.lifecycle import AnchorLifecycle
from transparency.models.anchor import Snapshot, SourceSnapshot
from transparency.persistence.audit import MemoryAuditSink
from transparency.persistence.store import InMemoryAnchorStore

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns a strictly increasing time on every call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self._now = start
        self._step = step

    def __call__(self) -> datetime:
        self._now += self._step
        return self._now


class ScriptedCollector:
    """Stands in for SnapshotCollector; each call returns the next state label."""

    def __init__(self, *labels: str, clock: StepClock | None = None) -> None:
        self._labels = list(labels) or ["state-0"]
        self._clock = clock or StepClock()
        self.calls = 0

    async def create_snapshot(self) -> Snapshot:
        label = self._labels[min(self.calls, len(self._labels) - 1)]
        self.calls += 1
        registry = SourceSnapshot(hash=digest(f"registry:{label}"), count=3)
        heads = SourceSnapshot(hash=digest(f"heads:{label}"), count=5)
        return Snapshot(
            registry=registry,
            wcaf_heads=heads,
            combined_root_hash=combined_root(registry.hash, heads.hash),
            snapshot_at=self._clock(),
        )


class RaisingAuditSink:
    async def emit(self, event_type, anchor) -> None:
        raise RuntimeError("audit backend down")


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def store() -> InMemoryAnchorStore:
    return InMemoryAnchorStore()


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def collector(clock: StepClock) -> ScriptedCollector:
    return ScriptedCollector("state-a", "state-b", "state-c", clock=clock)


@pytest.fixture
def lifecycle(
    collector: ScriptedCollector,
    store: InMemoryAnchorStore,
    audit: MemoryAuditSink,
    clock: StepClock,
) -> AnchorLifecycle:
    return AnchorLifecycle(collector, store, audit, clock=clock)
