"""Verifier: read-only answers about anchored digests."""

from __future__ import annotations

from transparency.crypto.hashing import combined_root
from transparency.models.anchor import Anchor, VerificationResult
from transparency.persistence.store import AnchorStore

NOT_FOUND_MESSAGE = "Hash not found in anchor history"


class Verifier:
    """Looks up whether a combined root hash was anchored, and when.

    Only ANCHORED records count: a PENDING or FAILED anchor with the same
    digest proves nothing. Never mutates the store, so concurrent calls
    need no coordination.
    """

    def __init__(self, store: AnchorStore) -> None:
        self._store = store

    def verify(self, combined_root_hash: str) -> VerificationResult:
        anchor = self._store.find_anchored(combined_root_hash.strip().lower())
        if anchor is None:
            return VerificationResult(verified=False, message=NOT_FOUND_MESSAGE)
        return VerificationResult(
            verified=True,
            anchor_id=anchor.id,
            anchored_at=anchor.anchored_at,
            anchor_target=anchor.anchor_target,
            anchor_ref=anchor.anchor_ref,
        )

    @staticmethod
    def check_integrity(anchor: Anchor) -> bool:
        """Recompute the combined root from the two stored source digests."""
        expected = combined_root(anchor.issuer_registry_root_hash, anchor.wcaf_heads_root_hash)
        return expected == anchor.combined_root_hash
