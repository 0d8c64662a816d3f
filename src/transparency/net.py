"""Outbound HTTP policy: bounded timeouts and limited retry with backoff.

Every call to an upstream collaborator or publish target goes through
request_with_retry(). Transport errors (connection failures, timeouts)
and gateway-style statuses are retried a fixed number of times with
exponential backoff; anything else is returned to the caller as-is.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """How many extra attempts to make and how long to wait between them."""
    retries: int = 2
    backoff_seconds: float = 0.5

    def delay(self, attempt: int) -> float:
        """Wait before retry number ``attempt`` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))


NO_RETRY = RetryPolicy(retries=0, backoff_seconds=0.0)


def build_client(timeout_seconds: float) -> httpx.AsyncClient:
    """Create the shared async client with a bounded timeout."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0)),
    )


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    policy: RetryPolicy = NO_RETRY,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transient failures.

    Returns the last response received. Raises the last transport error
    if every attempt failed to get a response.
    """
    attempt = 0
    while True:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= policy.retries:
                raise
            attempt += 1
            logger.info(
                "%s %s failed (%s); retry %d/%d",
                method, url, exc.__class__.__name__, attempt, policy.retries,
            )
        else:
            if response.status_code not in RETRYABLE_STATUSES or attempt >= policy.retries:
                return response
            attempt += 1
            logger.info(
                "%s %s returned %d; retry %d/%d",
                method, url, response.status_code, attempt, policy.retries,
            )
        await asyncio.sleep(policy.delay(attempt))
