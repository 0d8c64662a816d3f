"""Upstream state sampling for anchors."""

from transparency.snapshot.collector import (
    REGISTRY_UNAVAILABLE,
    WCAF_HEADS_NOT_AVAILABLE,
    WCAF_UNAVAILABLE,
    SnapshotCollector,
)

__all__ = [
    "REGISTRY_UNAVAILABLE",
    "WCAF_HEADS_NOT_AVAILABLE",
    "WCAF_UNAVAILABLE",
    "SnapshotCollector",
]
