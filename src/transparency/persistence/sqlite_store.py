"""SQLite-backed anchor store.

Two tables:
- anchors: one row per Anchor, append-only apart from the transition fields.
- anchor_targets: externally managed publish target configuration.

Transitions are a single ``UPDATE ... WHERE id = ? AND status = ?`` so the
compare-and-set holds across processes sharing the database file.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from transparency.models.anchor import (
    Anchor,
    AnchorStatus,
    AnchorTarget,
    Snapshot,
    format_timestamp,
    parse_timestamp,
)
from transparency.persistence.store import DEFAULT_TARGETS, check_changes

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS anchors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issuer_registry_root_hash TEXT NOT NULL,
    wcaf_heads_root_hash TEXT NOT NULL,
    combined_root_hash TEXT NOT NULL,
    issuer_count INTEGER NOT NULL DEFAULT 0,
    wcaf_document_count INTEGER NOT NULL DEFAULT 0,
    snapshot_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    anchor_target TEXT,
    anchor_ref TEXT,
    anchor_proof TEXT,
    anchored_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_anchors_combined ON anchors(combined_root_hash, status);
CREATE INDEX IF NOT EXISTS idx_anchors_created ON anchors(created_at DESC, id DESC);

CREATE TABLE IF NOT EXISTS anchor_targets (
    target_id TEXT PRIMARY KEY,
    target_type TEXT NOT NULL,
    config TEXT NOT NULL DEFAULT '{}',
    enabled INTEGER NOT NULL DEFAULT 1
);
"""


class SqliteAnchorStore:
    """Anchor store persisted in a single SQLite database file.

    Pass ``":memory:"`` for a throwaway database.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)
            (count,) = self._conn.execute("SELECT COUNT(*) FROM anchor_targets").fetchone()
            if count == 0:
                for target in DEFAULT_TARGETS:
                    self._write_target(target)
                logger.info("Seeded default anchor targets in %s", self.db_path)

    # ------------------------------------------------------------------
    # Anchors
    # ------------------------------------------------------------------

    def insert(self, snapshot: Snapshot, created_at: datetime) -> Anchor:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO anchors
                    (issuer_registry_root_hash, wcaf_heads_root_hash, combined_root_hash,
                     issuer_count, wcaf_document_count, snapshot_at, created_at, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.issuer_registry_root_hash,
                    snapshot.wcaf_heads_root_hash,
                    snapshot.combined_root_hash,
                    snapshot.issuer_count,
                    snapshot.wcaf_document_count,
                    format_timestamp(snapshot.snapshot_at),
                    format_timestamp(created_at),
                    AnchorStatus.PENDING.value,
                ),
            )
            row = self._conn.execute(
                "SELECT * FROM anchors WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return _row_to_anchor(row)

    def get(self, anchor_id: int) -> Optional[Anchor]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM anchors WHERE id = ?", (anchor_id,)
            ).fetchone()
        return _row_to_anchor(row) if row else None

    def update(
        self, anchor_id: int, expected_status: AnchorStatus, **changes: Any
    ) -> Optional[Anchor]:
        check_changes(changes)
        if not changes:
            return self.get(anchor_id)
        columns = sorted(changes)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = [_to_column(c, changes[c]) for c in columns]
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"UPDATE anchors SET {assignments} WHERE id = ? AND status = ?",
                (*values, anchor_id, expected_status.value),
            )
            if cursor.rowcount == 0:
                return None
            row = self._conn.execute(
                "SELECT * FROM anchors WHERE id = ?", (anchor_id,)
            ).fetchone()
        return _row_to_anchor(row)

    def list(
        self, limit: int, offset: int, status: Optional[AnchorStatus] = None
    ) -> list[Anchor]:
        sql = "SELECT * FROM anchors"
        params: list[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_anchor(r) for r in rows]

    def latest(self) -> Optional[Anchor]:
        rows = self.list(limit=1, offset=0)
        return rows[0] if rows else None

    def find_anchored(self, combined_root_hash: str) -> Optional[Anchor]:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT * FROM anchors
                WHERE combined_root_hash = ? AND status = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (combined_root_hash, AnchorStatus.ANCHORED.value),
            ).fetchone()
        return _row_to_anchor(row) if row else None

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def list_targets(self, enabled_only: bool = True) -> list[AnchorTarget]:
        sql = "SELECT * FROM anchor_targets"
        if enabled_only:
            sql += " WHERE enabled = 1"
        sql += " ORDER BY target_id"
        with self._lock:
            rows = self._conn.execute(sql).fetchall()
        return [_row_to_target(r) for r in rows]

    def get_target(self, target_id: str) -> Optional[AnchorTarget]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM anchor_targets WHERE target_id = ?", (target_id,)
            ).fetchone()
        return _row_to_target(row) if row else None

    def save_target(self, target: AnchorTarget) -> None:
        with self._lock, self._conn:
            self._write_target(target)

    def _write_target(self, target: AnchorTarget) -> None:
        self._conn.execute(
            """
            INSERT INTO anchor_targets (target_id, target_type, config, enabled)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(target_id) DO UPDATE SET
                target_type = excluded.target_type,
                config = excluded.config,
                enabled = excluded.enabled
            """,
            (
                target.target_id,
                target.target_type,
                json.dumps(target.config, sort_keys=True),
                1 if target.enabled else 0,
            ),
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _to_column(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "status":
        return AnchorStatus(value).value
    if name == "anchor_proof":
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    if name == "anchored_at":
        return format_timestamp(value)
    return value


def _row_to_anchor(row: sqlite3.Row) -> Anchor:
    proof = row["anchor_proof"]
    return Anchor(
        id=row["id"],
        issuer_registry_root_hash=row["issuer_registry_root_hash"],
        wcaf_heads_root_hash=row["wcaf_heads_root_hash"],
        combined_root_hash=row["combined_root_hash"],
        issuer_count=row["issuer_count"],
        wcaf_document_count=row["wcaf_document_count"],
        snapshot_at=parse_timestamp(row["snapshot_at"]),
        created_at=parse_timestamp(row["created_at"]),
        status=AnchorStatus(row["status"]),
        anchor_target=row["anchor_target"],
        anchor_ref=row["anchor_ref"],
        anchor_proof=json.loads(proof) if proof is not None else None,
        anchored_at=parse_timestamp(row["anchored_at"]),
    )


def _row_to_target(row: sqlite3.Row) -> AnchorTarget:
    return AnchorTarget(
        target_id=row["target_id"],
        target_type=row["target_type"],
        config=json.loads(row["config"] or "{}"),
        enabled=bool(row["enabled"]),
    )
