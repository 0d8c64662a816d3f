"""Publish router: dispatches an anchor to the variant for its target.

Dispatch rules:
- The reserved ``local-log`` target id always uses the local log variant.
- Otherwise the variant registered for the target's type is used.
- A type with no registered variant fails with "Unknown target type".

No exception crosses this boundary. Whatever a variant raises becomes
``PublishResult(success=False, error=...)``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from transparency.crypto.hashing import digest
from transparency.errors import PublishError
from transparency.models.anchor import (
    LOCAL_LOG_TARGET_ID,
    Anchor,
    AnchorTarget,
    PublishResult,
    TargetType,
)
from transparency.net import NO_RETRY, RetryPolicy
from transparency.publish.publishers import (
    LocalLogPublisher,
    PublicLogPublisher,
    Publisher,
    UnimplementedPublisher,
)

logger = logging.getLogger(__name__)


def publish_idempotency_key(anchor: Anchor, target_id: str) -> str:
    """Stable key for one (anchor, target) publish."""
    return digest({
        "anchor_id": anchor.id,
        "target_id": target_id,
        "combined_root_hash": anchor.combined_root_hash,
    })


class PublishRouter:
    """Maps target types to publishers.

    Usage:
        router = PublishRouter(local_log=LocalLogPublisher())
        router.register(TargetType.PUBLIC_LOG, PublicLogPublisher(client))
        result = await router.publish(anchor, target)
    """

    def __init__(self, local_log: LocalLogPublisher) -> None:
        self._local_log = local_log
        self._publishers: dict[str, Publisher] = {}

    def register(self, target_type: TargetType | str, publisher: Publisher) -> None:
        """Add or replace the variant for a target type."""
        key = target_type.value if isinstance(target_type, TargetType) else target_type
        self._publishers[key] = publisher

    def supported_types(self) -> list[str]:
        return sorted(self._publishers)

    def publisher_for(self, target: AnchorTarget) -> Optional[Publisher]:
        if target.target_id == LOCAL_LOG_TARGET_ID:
            return self._local_log
        return self._publishers.get(target.target_type)

    async def publish(
        self,
        anchor: Anchor,
        target: AnchorTarget,
        idempotency_key: Optional[str] = None,
    ) -> PublishResult:
        publisher = self.publisher_for(target)
        if publisher is None:
            return PublishResult.failure(f"Unknown target type: {target.target_type}")

        key = idempotency_key or publish_idempotency_key(anchor, target.target_id)
        try:
            result = await publisher.publish(anchor, target, key)
        except Exception as exc:
            logger.warning(
                "Publish of anchor %d to %s failed: %s",
                anchor.id, target.target_id, exc, exc_info=not isinstance(exc, (httpx.HTTPError, PublishError)),
            )
            return PublishResult.failure(str(exc) or exc.__class__.__name__)

        if not result.success:
            logger.warning(
                "Publish of anchor %d to %s failed: %s", anchor.id, target.target_id, result.error,
            )
        return result


def build_router(
    client: httpx.AsyncClient,
    public_log_url: Optional[str] = None,
    local_log: Optional[LocalLogPublisher] = None,
    retry_policy: RetryPolicy = NO_RETRY,
) -> PublishRouter:
    """Router with every built-in variant registered."""
    router = PublishRouter(local_log=local_log or LocalLogPublisher())
    router.register(TargetType.PUBLIC_LOG, PublicLogPublisher(client, public_log_url, retry_policy))
    router.register(TargetType.NOTARY, UnimplementedPublisher("Notary"))
    router.register(TargetType.BLOCKCHAIN, UnimplementedPublisher("Blockchain"))
    return router
