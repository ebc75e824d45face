"""Standalone scheduler service for the periodic reconciliation monitor.

Runs the cloud status monitor under a supervisor and exposes health and
Prometheus endpoints.

Usage:
    python -m hostfleet.scheduler
"""
# ruff: noqa: E402  -- faulthandler setup must run before other imports
from __future__ import annotations

import asyncio
import faulthandler
import logging
import signal
import sys

faulthandler.enable()
if hasattr(signal, "SIGUSR1"):
    faulthandler.register(signal.SIGUSR1, file=sys.stderr, all_threads=True)

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from hostfleet import db
from hostfleet.logging_config import setup_logging
from hostfleet.metrics import get_metrics
from hostfleet.tasks.cloud_status import cloud_status_monitor
from hostfleet.utils.async_tasks import safe_create_task, setup_asyncio_exception_handler
from hostfleet.utils.supervisor import supervised_task

logger = logging.getLogger(__name__)

# Supervisor tasks, cancelled on shutdown
_monitor_tasks: list[asyncio.Task] = []

MONITORS = [
    ("cloud_status_monitor", cloud_status_monitor),
]


async def healthz(request: Request) -> JSONResponse:
    """Report "degraded" when any supervised monitor has stopped."""
    active = sum(1 for t in _monitor_tasks if not t.done())
    result: dict = {
        "status": "ok" if active == len(_monitor_tasks) else "degraded",
        "service": "scheduler",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "monitors": {"active": active, "total": len(_monitor_tasks)},
    }
    return JSONResponse(result)


async def metrics(_: Request) -> Response:
    """Prometheus metrics endpoint for the scheduler process."""
    content, content_type = get_metrics()
    return Response(content=content, media_type=content_type)


async def wait_for_database(attempts: int = 30, delay: float = 2.0) -> None:
    """Block until the database answers; migrations are run separately."""
    for attempt in range(attempts):
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database reachable")
            return
        except Exception as e:
            if attempt == attempts - 1:
                logger.error(f"Database not reachable after {attempts} attempts: {e}")
                raise
            logger.warning(f"Database not ready (attempt {attempt + 1}/{attempts}), retrying in {delay:.0f}s...")
            await asyncio.sleep(delay)


async def startup() -> None:
    """Wait for the database, then launch each monitor under a supervisor."""
    logger.info("Starting hostfleet scheduler")
    setup_asyncio_exception_handler()
    await wait_for_database()

    for name, monitor_fn in MONITORS:
        task = safe_create_task(
            supervised_task(monitor_fn, name=name),
            name=f"supervised_{name}",
        )
        _monitor_tasks.append(task)

    logger.info(f"Scheduler running {len(_monitor_tasks)} monitor(s): {[name for name, _ in MONITORS]}")


async def shutdown() -> None:
    """Cancel the monitors and wait for them to unwind."""
    logger.info("Shutting down hostfleet scheduler")
    for task in _monitor_tasks:
        task.cancel()
    if _monitor_tasks:
        await asyncio.gather(*_monitor_tasks, return_exceptions=True)
    _monitor_tasks.clear()
    logger.info("All monitors stopped")


@asynccontextmanager
async def lifespan(_: Starlette):
    await startup()
    try:
        yield
    finally:
        await shutdown()


app = Starlette(
    routes=[Route("/healthz", healthz), Route("/metrics", metrics)],
    lifespan=lifespan,
)


if __name__ == "__main__":
    import uvicorn

    setup_logging(service="scheduler")
    uvicorn.run(
        "hostfleet.scheduler:app",
        host="0.0.0.0",
        port=8002,
        log_level="info",
    )
