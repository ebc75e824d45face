"""Helpers for background asyncio tasks whose failures must not go unseen."""
from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, Any

logger = logging.getLogger(__name__)


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.debug(f"Task '{task.get_name()}' was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            f"Background task '{task.get_name()}' failed: {type(exc).__name__}: {exc}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def safe_create_task(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
    """Create a task that logs its exception with a traceback when it fails.

    Must be called with a running event loop.
    """
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_failure)
    return task


def setup_asyncio_exception_handler(loop: asyncio.AbstractEventLoop | None = None) -> None:
    """Log exceptions the event loop would otherwise swallow.

    Call this during process startup.
    """
    if loop is None:
        loop = asyncio.get_running_loop()

    def handle_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exception = context.get("exception")
        message = context.get("message", "Unknown error")
        if exception is not None:
            logger.error(
                f"Unhandled exception in asyncio event loop: {message}",
                exc_info=(type(exception), exception, exception.__traceback__),
            )
        else:
            logger.error(f"Unhandled error in asyncio event loop: {message}")

    loop.set_exception_handler(handle_exception)
    logger.info("Asyncio exception handler configured")
