"""Retry policy for provider status queries."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from hostfleet.config import settings
from hostfleet.metrics import provider_request_duration
from hostfleet.providers.base import ProviderUnavailableError

logger = logging.getLogger(__name__)


def _observe(provider: str, status: str, started: float) -> None:
    provider_request_duration.labels(provider=provider, status=status).observe(time.monotonic() - started)


async def with_retry(
    func: Callable[..., Any],
    *args,
    provider: str,
    max_retries: int | None = None,
    timeout: float | None = None,
    **kwargs,
) -> Any:
    """Execute an async provider call with exponential backoff retry logic.

    Retries on:
    - ProviderUnavailableError (throttling, 5xx, connection problems)
    - Per-attempt timeouts

    Does not retry on any other ProviderError; those are final for the
    batch and may carry text the caller wants to inspect.
    """
    if max_retries is None:
        max_retries = settings.provider_max_retries
    if timeout is None:
        timeout = settings.provider_request_timeout

    last_exception: Exception | None = None

    for attempt in range(max_retries + 1):
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
        except (ProviderUnavailableError, asyncio.TimeoutError) as e:
            _observe(provider, "error", t0)
            if isinstance(e, asyncio.TimeoutError):
                e = ProviderUnavailableError(f"request timed out after {timeout}s", provider)
            last_exception = e
            if attempt < max_retries:
                delay = min(
                    settings.provider_retry_backoff_base * (2 ** attempt),
                    settings.provider_retry_backoff_max,
                )
                logger.warning(
                    f"Provider {provider} request failed (attempt {attempt + 1}/{max_retries + 1}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
            continue
        except Exception:
            _observe(provider, "error", t0)
            raise
        _observe(provider, "success", t0)
        return result

    logger.error(f"Provider {provider} request failed after {max_retries + 1} attempts: {last_exception}")
    raise ProviderUnavailableError(
        f"after {max_retries + 1} attempts, operation failed: {last_exception}",
        provider,
    )
