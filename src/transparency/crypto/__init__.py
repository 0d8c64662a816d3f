"""Cryptographic primitives: canonical serialization and digests."""

from transparency.crypto.hashing import (
    ABSENT,
    canonicalize,
    combine_digests,
    combined_root,
    digest,
)

__all__ = ["ABSENT", "canonicalize", "combine_digests", "combined_root", "digest"]
