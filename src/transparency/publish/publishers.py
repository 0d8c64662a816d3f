"""Publish target variants.

Each variant takes an anchor and its target configuration and returns a
PublishResult. Variants may raise; the router converts any exception into
a failed result, so callers only ever see the result shape.

Every publish carries an idempotency key for the (anchor, target) pair.
Targets that write externally receive it so that a retried publish does
not create a second entry.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

from transparency.crypto.hashing import digest
from transparency.errors import PublishError
from transparency.models.anchor import Anchor, AnchorTarget, PublishResult, format_timestamp, utc_now
from transparency.net import NO_RETRY, RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)

PUBLISH_SOURCE = "transparency-anchor"


class Publisher(Protocol):
    """One target type's way of publishing an anchor."""

    async def publish(
        self, anchor: Anchor, target: AnchorTarget, idempotency_key: str
    ) -> PublishResult:
        ...


class LocalLogPublisher:
    """Development and fallback sink: a local append-only log.

    Entries are always written to the application log. With a
    ``log_path`` they are also appended to a JSONL file, which is read
    back before the first publish so that repeated idempotency keys keep
    returning the first result across restarts. A file that fails its
    integrity check makes every publish to this target fail; nothing else
    reads it.
    """

    def __init__(self, log_path: Optional[Path] = None) -> None:
        self._log_path = log_path
        self._published: dict[str, PublishResult] = {}
        self._loaded = log_path is None

    async def publish(
        self, anchor: Anchor, target: AnchorTarget, idempotency_key: str
    ) -> PublishResult:
        if not self._loaded:
            if self._log_path.exists():
                self._load_from_file(self._log_path)
            self._loaded = True

        previous = self._published.get(idempotency_key)
        if previous is not None:
            logger.info("Local log already holds key %s for anchor %d", idempotency_key, anchor.id)
            return previous

        entry = {
            "timestamp": format_timestamp(utc_now()),
            "combined_root_hash": anchor.combined_root_hash,
            "issuer_registry_root_hash": anchor.issuer_registry_root_hash,
            "wcaf_heads_root_hash": anchor.wcaf_heads_root_hash,
            "anchor_id": anchor.id,
        }
        result = PublishResult.ok(
            anchor_ref=f"local://log/{anchor.id}",
            proof={
                "type": "local-log",
                "entry_hash": digest(entry),
                "logged_at": entry["timestamp"],
                "idempotency_key": idempotency_key,
            },
        )
        logger.info("LOCAL LOG ENTRY: %s", json.dumps(entry, sort_keys=True))
        if self._log_path is not None:
            self._append_to_file(entry, result)
        self._published[idempotency_key] = result
        return result

    def _append_to_file(self, entry: dict[str, Any], result: PublishResult) -> None:
        record = {"entry": entry, "anchor_ref": result.anchor_ref, "proof": result.proof}
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        with self._log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Rebuild the key index, rejecting entries whose hash does not match.

        Raises PublishError for unreadable lines and hash mismatches.
        """
        published: dict[str, PublishResult] = {}
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    entry, proof = data["entry"], data["proof"]
                    entry_hash, key = proof["entry_hash"], proof["idempotency_key"]
                    anchor_ref = data["anchor_ref"]
                except (ValueError, KeyError, TypeError) as exc:
                    raise PublishError(
                        f"Local log {path} line {line_num} is malformed: {exc!r}"
                    ) from None
                if digest(entry) != entry_hash:
                    raise PublishError(
                        f"Integrity check failed ({path} line {line_num}): "
                        f"entry hash {entry_hash} does not match entry"
                    )
                published[key] = PublishResult.ok(anchor_ref=anchor_ref, proof=proof)
        self._published.update(published)


class PublicLogPublisher:
    """POSTs the anchor to an HTTP append-only log at ``<url>/entries``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        default_url: Optional[str] = None,
        retry_policy: RetryPolicy = NO_RETRY,
    ) -> None:
        self._client = client
        self._default_url = default_url
        self._retry = retry_policy

    async def publish(
        self, anchor: Anchor, target: AnchorTarget, idempotency_key: str
    ) -> PublishResult:
        log_url = (target.config.get("url") or self._default_url or "").rstrip("/")
        if not log_url:
            raise PublishError(f"No log URL configured for target {target.target_id}")

        response = await request_with_retry(
            self._client,
            "POST",
            f"{log_url}/entries",
            self._retry,
            json={
                "combined_root_hash": anchor.combined_root_hash,
                "issuer_registry_root_hash": anchor.issuer_registry_root_hash,
                "wcaf_heads_root_hash": anchor.wcaf_heads_root_hash,
                "timestamp": format_timestamp(utc_now()),
                "source": PUBLISH_SOURCE,
                "source_id": anchor.id,
                "idempotency_key": idempotency_key,
            },
            headers={"Idempotency-Key": idempotency_key},
        )
        if not response.is_success:
            raise PublishError(f"Log server returned {response.status_code}")

        body = response.json()
        entry_id = body.get("entry_id")
        entry_url = body.get("entry_url")
        return PublishResult.ok(
            anchor_ref=entry_url or f"{log_url}/entries/{entry_id}",
            proof={
                "type": "public-log",
                "entry_id": entry_id,
                "entry_url": entry_url,
                "entry_hash": body.get("entry_hash"),
                "inclusion_proof": body.get("inclusion_proof"),
            },
        )


class UnimplementedPublisher:
    """Placeholder for a target type with no integration yet.

    Always returns an ordinary failed result so callers can treat
    "not implemented" like any other publish failure.
    """

    def __init__(self, capability: str) -> None:
        self.capability = capability

    async def publish(
        self, anchor: Anchor, target: AnchorTarget, idempotency_key: str
    ) -> PublishResult:
        logger.info("%s publish not yet implemented (anchor %d)", self.capability, anchor.id)
        return PublishResult.failure(f"{self.capability} integration not yet implemented")
