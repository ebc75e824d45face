"""rq integration: queue reconciliation passes for the worker process."""
from __future__ import annotations

import asyncio
import logging

from redis import Redis
from rq import Queue, get_current_job

from hostfleet.config import settings
from hostfleet.tasks.cloud_status import run_cloud_status_pass

logger = logging.getLogger(__name__)

QUEUE_NAME = "hostfleet"

redis_conn = Redis.from_url(settings.redis_url)
queue = Queue(QUEUE_NAME, connection=redis_conn)


def execute_cloud_status_job() -> dict:
    """rq entry point for one reconciliation pass.

    The rq job id doubles as the reconciliation run id so the two records
    can be matched up.
    """
    job = get_current_job()
    job_id = job.id if job is not None else None
    run = asyncio.run(run_cloud_status_pass(job_id=job_id))
    logger.info(f"Cloud status job {run.id} finished with status {run.status}")
    return {
        "run_id": run.id,
        "status": run.status,
        "batches_total": run.batches_total,
        "batches_failed": run.batches_failed,
        "hosts_transitioned": run.hosts_transitioned,
        "error": run.error_message,
    }


def enqueue_cloud_status_job():
    """Queue a reconciliation pass. Returns the rq job."""
    # rq kills the job at this point; the pass itself gives up a bit earlier
    job_timeout = int(settings.cloud_status_pass_timeout) + 60
    return queue.enqueue(execute_cloud_status_job, job_timeout=job_timeout)
