"""Retry helper for transient transport failures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from indexkeeper.transport.base.exceptions import TransportError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retries(
    call: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    backoff: float,
    description: str,
) -> T:
    """Run ``call``, retrying retryable transport errors with exponential backoff.

    Non-retryable errors (not found, conflicts, configuration) propagate
    immediately. After ``max_retries`` failed retries the last error is raised.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except TransportError as e:
            if not is_retryable(e) or attempt >= max_retries:
                raise
            delay = backoff * (2**attempt)
            attempt += 1
            logger.warning(
                "Retrying %s (attempt %d/%d) in %.2fs after: %s",
                description,
                attempt + 1,
                1 + max_retries,
                delay,
                e,
            )
            await asyncio.sleep(delay)
