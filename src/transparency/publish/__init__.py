"""Publishing anchors to transparency targets."""

from transparency.publish.publishers import (
    LocalLogPublisher,
    PublicLogPublisher,
    Publisher,
    UnimplementedPublisher,
)
from transparency.publish.router import PublishRouter, build_router, publish_idempotency_key

__all__ = [
    "LocalLogPublisher",
    "PublicLogPublisher",
    "PublishRouter",
    "Publisher",
    "UnimplementedPublisher",
    "build_router",
    "publish_idempotency_key",
]
