"""Supervisor wrapper for long-running monitor coroutines.

Restarts a crashed monitor with exponential backoff. Cancellation (clean
shutdown) is always re-raised.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


async def supervised_task(
    coro_factory: Callable[[], Coroutine[Any, Any, None]],
    name: str,
    max_restarts: int = 10,
    base_backoff: float = 5.0,
    max_backoff: float = 300.0,
    healthy_after: float = 600.0,
) -> int:
    """Run a monitor coroutine, restarting it when it crashes.

    A coroutine object can only be awaited once, so the monitor is passed
    as a factory and a fresh coroutine is built for every restart.

    Args:
        coro_factory: Zero-argument callable building the monitor coroutine
        name: Label used in log messages
        max_restarts: Consecutive crashes tolerated before giving up
        base_backoff: Delay before the first restart, in seconds
        max_backoff: Upper bound on the restart delay, in seconds
        healthy_after: A run lasting this long resets the crash count

    Returns:
        Number of consecutive crashes when the supervisor stopped
    """
    crashes = 0
    while crashes < max_restarts:
        started = time.monotonic()
        try:
            logger.info(f"Supervisor: launching {name}")
            await coro_factory()
            logger.warning(f"{name} returned; supervisor stopping")
            return crashes
        except asyncio.CancelledError:
            logger.info(f"{name} cancelled")
            raise
        except Exception as e:
            if time.monotonic() - started >= healthy_after:
                crashes = 0
            crashes += 1
            backoff = min(base_backoff * (2 ** (crashes - 1)), max_backoff)
            logger.error(
                f"{name} crashed ({crashes} consecutive, limit {max_restarts}): {e}",
                exc_info=True,
            )
            if crashes < max_restarts:
                logger.info(f"Relaunching {name} in {backoff:.0f}s")
                await asyncio.sleep(backoff)

    logger.critical(f"{name} crashed {max_restarts} times in a row, no longer supervised")
    return crashes
