"""rq worker entrypoint with Prometheus metrics export."""
from __future__ import annotations

import logging
from os import getenv

from prometheus_client import start_http_server
from redis import Redis
from rq import SimpleWorker, Worker

from hostfleet import metrics as _metrics  # noqa: F401  -- registers metric families
from hostfleet.config import settings
from hostfleet.jobs import QUEUE_NAME
from hostfleet.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _start_metrics_server() -> None:
    port = int(getenv("WORKER_METRICS_PORT", "8003"))
    start_http_server(port, addr="0.0.0.0")
    logger.info("Worker metrics endpoint started on :%s/metrics", port)


def main() -> None:
    setup_logging(service="worker")
    _start_metrics_server()
    redis_conn = Redis.from_url(settings.redis_url)
    # Forking workers would update Prometheus counters in child processes the
    # metrics server can't see, so run jobs in-process by default.
    worker_mode = getenv("WORKER_EXECUTION_MODE", "simple").strip().lower()
    worker_cls = SimpleWorker if worker_mode == "simple" else Worker
    logger.info("Starting worker with execution_mode=%s (%s)", worker_mode, worker_cls.__name__)
    worker = worker_cls([QUEUE_NAME], connection=redis_conn)
    worker.work()


if __name__ == "__main__":
    main()
