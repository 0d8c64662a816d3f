"""Persistence and audit ports."""

from transparency.persistence.audit import (
    AuditEventType,
    AuditSink,
    HttpAuditSink,
    MemoryAuditSink,
)
from transparency.persistence.sqlite_store import SqliteAnchorStore
from transparency.persistence.store import AnchorStore, InMemoryAnchorStore

__all__ = [
    "AnchorStore",
    "AuditEventType",
    "AuditSink",
    "HttpAuditSink",
    "InMemoryAnchorStore",
    "MemoryAuditSink",
    "SqliteAnchorStore",
]
