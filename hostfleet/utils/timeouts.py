"""Deadlines for reconciliation work.

A pass that overruns is cancelled outright; nothing it left half done needs
cleanup because every host write is an independent conditional update.
"""
from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class DeadlineExceeded(asyncio.TimeoutError):
    """Raised when work is cancelled for running past its deadline."""

    def __init__(self, description: str, timeout: float):
        super().__init__(f"{description} exceeded {timeout}s deadline")
        self.description = description
        self.timeout = timeout


async def with_timeout(coro, timeout: float, description: str = "operation"):
    """Await ``coro``, cancelling it once ``timeout`` seconds have passed.

    Raises:
        DeadlineExceeded: The coroutine was cancelled at the deadline
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"Cancelled {description} after {timeout}s")
        raise DeadlineExceeded(description, timeout) from e
