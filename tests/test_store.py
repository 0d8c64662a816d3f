"""Tests for the anchor stores: both implementations honour the same contract."""

from datetime import timedelta

import pytest

from transparency.crypto.hashing import combined_root, digest
from transparency.models.anchor import AnchorStatus, AnchorTarget, Snapshot, SourceSnapshot
from transparency.persistence.sqlite_store import SqliteAnchorStore
from transparency.persistence.store import InMemoryAnchorStore

from conftest import BASE_TIME


def _snapshot(label: str = "s") -> Snapshot:
    registry = SourceSnapshot(hash=digest(f"r:{label}"), count=2)
    heads = SourceSnapshot(hash=digest(f"w:{label}"), count=4)
    return Snapshot(
        registry=registry,
        wcaf_heads=heads,
        combined_root_hash=combined_root(registry.hash, heads.hash),
        snapshot_at=BASE_TIME,
    )


def _at(seconds: int):
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        store = InMemoryAnchorStore()
    else:
        store = SqliteAnchorStore(tmp_path / "db" / "anchors.db")
    yield store
    store.close()


class TestAnchors:
    def test_insert_and_get(self, any_store) -> None:
        anchor = any_store.insert(_snapshot(), created_at=_at(1))
        assert anchor.status == AnchorStatus.PENDING
        assert anchor.issuer_count == 2
        assert anchor.wcaf_document_count == 4
        assert any_store.get(anchor.id) == anchor

    def test_get_missing(self, any_store) -> None:
        assert any_store.get(12345) is None

    def test_compare_and_set(self, any_store) -> None:
        anchor = any_store.insert(_snapshot(), created_at=_at(1))
        updated = any_store.update(
            anchor.id, AnchorStatus.PENDING,
            status=AnchorStatus.ANCHORED, anchor_target="local-log", anchor_ref="ref",
            anchor_proof={"k": [1, 2]}, anchored_at=_at(2),
        )
        assert updated.status == AnchorStatus.ANCHORED
        assert updated.anchor_proof == {"k": [1, 2]}
        assert updated.anchored_at == _at(2)
        # Second writer still expects PENDING and loses.
        assert any_store.update(anchor.id, AnchorStatus.PENDING, status=AnchorStatus.FAILED) is None
        assert any_store.get(anchor.id).status == AnchorStatus.ANCHORED

    def test_digest_fields_immutable(self, any_store) -> None:
        anchor = any_store.insert(_snapshot(), created_at=_at(1))
        with pytest.raises(ValueError):
            any_store.update(anchor.id, AnchorStatus.PENDING, combined_root_hash=digest("x"))

    def test_list_newest_first_and_filter(self, any_store) -> None:
        a = any_store.insert(_snapshot("a"), created_at=_at(1))
        b = any_store.insert(_snapshot("b"), created_at=_at(2))
        c = any_store.insert(_snapshot("c"), created_at=_at(3))
        any_store.update(b.id, AnchorStatus.PENDING, status=AnchorStatus.FAILED)
        assert [x.id for x in any_store.list(limit=10, offset=0)] == [c.id, b.id, a.id]
        assert [x.id for x in any_store.list(limit=1, offset=1)] == [b.id]
        assert [x.id for x in any_store.list(10, 0, AnchorStatus.PENDING)] == [c.id, a.id]
        assert any_store.latest().id == c.id

    def test_find_anchored_ignores_pending(self, any_store) -> None:
        pending = any_store.insert(_snapshot("same"), created_at=_at(1))
        assert any_store.find_anchored(pending.combined_root_hash) is None
        any_store.update(pending.id, AnchorStatus.PENDING, status=AnchorStatus.ANCHORED,
                         anchor_target="t", anchor_ref="r", anchored_at=_at(2))
        assert any_store.find_anchored(pending.combined_root_hash).id == pending.id


class TestTargets:
    def test_local_log_seeded(self, any_store) -> None:
        [target] = any_store.list_targets()
        assert target.target_id == "local-log"
        assert target.target_type == "PUBLIC_LOG"
        assert target.enabled

    def test_save_and_filter_disabled(self, any_store) -> None:
        any_store.save_target(AnchorTarget("notary-1", "NOTARY", {"endpoint": "n"}, enabled=False))
        assert [t.target_id for t in any_store.list_targets()] == ["local-log"]
        assert [t.target_id for t in any_store.list_targets(enabled_only=False)] == ["local-log", "notary-1"]
        assert any_store.get_target("notary-1").config == {"endpoint": "n"}

    def test_save_replaces(self, any_store) -> None:
        any_store.save_target(AnchorTarget("pl", "PUBLIC_LOG", {"url": "a"}))
        any_store.save_target(AnchorTarget("pl", "PUBLIC_LOG", {"url": "b"}))
        assert any_store.get_target("pl").config == {"url": "b"}


class TestSqliteDurability:
    def test_survives_reopen(self, tmp_path) -> None:
        path = tmp_path / "anchors.db"
        store = SqliteAnchorStore(path)
        anchor = store.insert(_snapshot(), created_at=_at(1))
        store.save_target(AnchorTarget("pl", "PUBLIC_LOG", {"url": "u"}))
        store.close()

        reopened = SqliteAnchorStore(path)
        try:
            assert reopened.get(anchor.id) == anchor
            assert reopened.get_target("pl").config == {"url": "u"}
            assert len(reopened.list_targets()) == 2
        finally:
            reopened.close()

    def test_timestamps_millisecond_precision(self, tmp_path) -> None:
        store = SqliteAnchorStore(":memory:")
        try:
            created = BASE_TIME + timedelta(microseconds=123456)
            anchor = store.insert(_snapshot(), created_at=created)
            assert anchor.created_at == BASE_TIME + timedelta(microseconds=123000)
        finally:
            store.close()
