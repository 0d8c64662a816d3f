"""Canonical serialization and SHA-256 digests.

Every digest the engine stores or publishes is produced here. The rules
are fixed so that the same structured value always yields the same
64-character hex digest, regardless of key order or of which optional
fields happen to be absent:

- Mapping keys are sorted; entries whose value is ABSENT are dropped.
- None is serialized as ``null`` and is distinct from absence.
- Sequences keep their order and drop nothing.
- Strings keep Unicode as-is (UTF-8 on the wire).

combine_digests() is a digest of a set, not a Merkle tree. It supports
whole-set equality checks only; there are no per-element proofs.
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime
from typing import Any, Iterable


class _Absent:
    """Marker for a field that is not present at all."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()

EMPTY_SET_MARKER = "EMPTY"


def canonicalize(value: Any) -> str:
    """Return the canonical text form of a structured value.

    Raises TypeError for values that have no canonical form (including a
    bare ABSENT, which has nothing to serialize).
    """
    if value is ABSENT:
        raise TypeError("Cannot canonicalize an absent value")
    return _canonical(value)


def digest(value: Any) -> str:
    """SHA-256 hex digest of a value.

    Text is hashed as-is; anything else is canonicalized first.
    """
    text = value if isinstance(value, str) else canonicalize(value)
    return _sha256_hex(text.encode("utf-8"))


def combine_digests(digests: Iterable[str]) -> str:
    """Order-independent aggregate over a collection of digests.

    Sorts, concatenates and hashes. An empty collection yields the fixed
    value digest("EMPTY").
    """
    ordered = sorted(digests)
    if not ordered:
        return digest(EMPTY_SET_MARKER)
    return digest("".join(ordered))


def combined_root(issuer_registry_root_hash: str, wcaf_heads_root_hash: str) -> str:
    """The combined root hash committed to by an anchor."""
    return digest(issuer_registry_root_hash + wcaf_heads_root_hash)


def _canonical(value: Any) -> str:
    if value is None or value is ABSENT:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return "null"
        if value.is_integer():
            return str(int(value))
        return json.dumps(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, datetime):
        return json.dumps(value.isoformat())
    if isinstance(value, dict):
        pairs = []
        for key in sorted(value, key=str):
            item = value[key]
            if item is ABSENT:
                continue
            pairs.append(json.dumps(str(key), ensure_ascii=False) + ":" + _canonical(item))
        return "{" + ",".join(pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    raise TypeError(f"No canonical form for {type(value).__name__}")


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
