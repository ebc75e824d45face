"""Cloud host status reconciliation.

This task keeps host records in step with what their cloud provider
reports. Each pass:

1. Loads non-terminal candidate hosts
2. Groups them into provider/region batches
3. Queries each batch's provider for instance statuses
4. Moves hosts whose instance came up from starting to provisioning
5. Terminates hosts whose instance the provider no longer knows about

Batches are independent: one failing batch is recorded and retried on the
next pass without holding up the others. Every write is a conditional
update, so overlapping passes and other lifecycle jobs can race on the same
host safely.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ContextManager, Mapping, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hostfleet import models
from hostfleet.config import settings
from hostfleet.db import get_session
from hostfleet.metrics import cloud_status_batches, cloud_status_pass_duration, host_transitions
from hostfleet.providers.base import ProviderError
from hostfleet.providers.registry import ProviderRegistry, get_registry
from hostfleet.services.state_machine import HostStateMachine
from hostfleet.state import CloudStatus, HostStatus, ReconciliationRunStatus
from hostfleet.store import CandidateFilter, HostStore
from hostfleet.tasks.planner import BatchKey, plan_batches
from hostfleet.tasks.unknown_instances import terminate_unknown_hosts
from hostfleet.utils.locks import cloud_status_pass_lock
from hostfleet.utils.timeouts import DeadlineExceeded, with_timeout

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


@dataclass(frozen=True)
class HostSnapshot:
    """Detached view of a candidate host, safe to share across batches."""

    id: str
    provider: str
    region: str
    status: str

    @classmethod
    def from_host(cls, host: models.Host) -> "HostSnapshot":
        return cls(
            id=host.id,
            provider=host.provider or "",
            region=host.region,
            status=HostStatus(host.status).value,
        )


class BatchOutcomeKind(str, Enum):
    RECONCILED = "reconciled"  # Provider answered, transitions applied
    RECOVERED = "recovered"  # Provider failed, missing instances terminated
    FAILED = "failed"  # Nothing resolved, retried next pass


@dataclass
class BatchOutcome:
    key: BatchKey
    host_ids: list[str]
    outcome: BatchOutcomeKind = BatchOutcomeKind.RECONCILED
    transitioned: list[str] = field(default_factory=list)
    terminated: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["key"] = {"provider": self.key.provider, "region": self.key.region}
        data["outcome"] = self.outcome.value
        return data


@dataclass
class ReconciliationResult:
    candidates: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.outcome == BatchOutcomeKind.FAILED]

    @property
    def diagnostics(self) -> list[BatchOutcome]:
        """Batches that carried a provider or store error, resolved or not."""
        return [b for b in self.batches if b.error]

    @property
    def hosts_transitioned(self) -> int:
        return sum(len(b.transitioned) + len(b.terminated) for b in self.batches)

    def summary(self) -> dict:
        return {
            "candidates": self.candidates,
            "batches_total": len(self.batches),
            "batches_failed": len(self.failures),
            "hosts_transitioned": self.hosts_transitioned,
            "diagnostics": [b.to_dict() for b in self.diagnostics],
        }


def reconcile_batch(
    store: HostStore,
    hosts: Sequence[HostSnapshot],
    statuses: Mapping[str, CloudStatus],
) -> list[str]:
    """Apply the lifecycle policy to a batch the provider answered for.

    Hosts missing from ``statuses`` are skipped here. Each transition is a
    conditional update on the status observed when the pass loaded the
    host; if another writer got there first the update is dropped.

    Returns:
        Ids of hosts whose status changed
    """
    transitioned: list[str] = []
    for host in hosts:
        cloud_status = statuses.get(host.id)
        if cloud_status is None:
            continue
        target = HostStateMachine.next_status(host.status, cloud_status)
        if target is None:
            continue
        applied = store.conditional_update_status(
            host.id,
            host.status,
            target,
            reason=f"provider reported instance {cloud_status.value}",
        )
        if not applied:
            logger.debug(f"Host {host.id} changed concurrently, skipping {host.status} -> {target.value}")
            continue
        transitioned.append(host.id)
        host_transitions.labels(from_status=host.status, to_status=target.value).inc()
        logger.info(
            f"Host {host.id} {host.status} -> {target.value} "
            f"(provider status: {cloud_status.value})"
        )
    return transitioned


class CloudHostReadyJob:
    """One reconciliation pass over all candidate hosts.

    The scheduler inspects ``result`` and ``error`` after ``run()``
    completes. ``error`` is only set when the pass could not load its
    candidates; per-batch failures are reported through ``result``.
    """

    job_type = "cloud-host-ready"

    def __init__(
        self,
        job_id: str | None = None,
        *,
        session_factory: SessionFactory | None = None,
        registry: ProviderRegistry | None = None,
        candidate_filter: CandidateFilter | None = None,
        concurrency: int | None = None,
    ):
        self.id = job_id or f"{self.job_type}.{uuid.uuid4()}"
        self._session_factory = session_factory or get_session
        self._registry = registry or get_registry()
        self.candidate_filter = candidate_filter or CandidateFilter(
            exclude_providers=tuple(settings.cloud_status_excluded_providers),
            limit=settings.cloud_status_max_hosts,
        )
        self.concurrency = max(1, concurrency or settings.cloud_status_batch_concurrency)
        self.result: ReconciliationResult | None = None
        self.error: Exception | None = None

    def error_text(self) -> str | None:
        return str(self.error) if self.error is not None else None

    async def run(self) -> None:
        t0 = time.monotonic()
        try:
            with self._session_factory() as session:
                hosts = HostStore(session).find_candidate_hosts(self.candidate_filter)
                snapshots = [HostSnapshot.from_host(h) for h in hosts]
        except SQLAlchemyError as e:
            logger.error(f"Job {self.id}: failed to load candidate hosts: {e}")
            self.error = e
            return

        result = ReconciliationResult(candidates=len(snapshots))
        batches = plan_batches(snapshots)
        by_id = {s.id: s for s in snapshots}
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(key: BatchKey, host_ids: list[str]) -> BatchOutcome:
            async with semaphore:
                return await self._process_batch(key, [by_id[i] for i in host_ids])

        result.batches = list(
            await asyncio.gather(*(_bounded(key, ids) for key, ids in batches.items()))
        )
        self.result = result

        duration = time.monotonic() - t0
        cloud_status_pass_duration.observe(duration)
        logger.info(
            f"Job {self.id}: reconciled {result.candidates} host(s) in {len(result.batches)} "
            f"batch(es), {result.hosts_transitioned} transitioned, "
            f"{len(result.failures)} batch(es) failed ({duration:.2f}s)"
        )

    async def _process_batch(self, key: BatchKey, hosts: list[HostSnapshot]) -> BatchOutcome:
        outcome = BatchOutcome(key=key, host_ids=[h.id for h in hosts])
        candidates = {h.id: h for h in hosts}
        client = None
        try:
            client = self._registry.get(key.provider)
            statuses = await client.fetch_statuses(key.region, outcome.host_ids)
        except ProviderError as e:
            unknown_ids = client.unknown_instance_ids(str(e)) if client is not None else []
            self._recover(outcome, candidates, unknown_ids, e)
        except Exception as e:
            logger.error(f"Unexpected error querying batch {key}: {e}", exc_info=True)
            outcome.outcome = BatchOutcomeKind.FAILED
            outcome.error = str(e)
        else:
            missing = [h.id for h in hosts if h.id not in statuses]
            try:
                with self._session_factory() as session:
                    store = HostStore(session)
                    outcome.transitioned = reconcile_batch(store, hosts, statuses)
                    if missing:
                        logger.info(
                            f"Provider {key.provider} omitted {len(missing)} instance(s) "
                            f"in region '{key.region}': {missing}"
                        )
                        outcome.terminated = terminate_unknown_hosts(
                            store, candidates, missing, provider=key.provider
                        )
            except SQLAlchemyError as e:
                logger.error(f"Store error reconciling batch {key}: {e}")
                outcome.outcome = BatchOutcomeKind.FAILED
                outcome.error = f"store error: {e}"

        cloud_status_batches.labels(provider=key.provider, outcome=outcome.outcome.value).inc()
        return outcome

    def _recover(
        self,
        outcome: BatchOutcome,
        candidates: Mapping[str, HostSnapshot],
        unknown_ids: list[str],
        error: ProviderError,
    ) -> None:
        outcome.error = str(error)
        if not unknown_ids:
            logger.warning(f"Status query for batch {outcome.key} failed: {error}")
            outcome.outcome = BatchOutcomeKind.FAILED
            return

        try:
            with self._session_factory() as session:
                outcome.terminated = terminate_unknown_hosts(
                    HostStore(session), candidates, unknown_ids, provider=outcome.key.provider
                )
        except SQLAlchemyError as e:
            logger.error(f"Store error terminating unknown hosts in batch {outcome.key}: {e}")
            outcome.outcome = BatchOutcomeKind.FAILED
            outcome.error = f"{error}; store error: {e}"
            return

        if not outcome.terminated:
            logger.warning(
                f"Status query for batch {outcome.key} failed and named no terminable host "
                f"{unknown_ids}: {error}"
            )
            outcome.outcome = BatchOutcomeKind.FAILED
            return

        outcome.outcome = BatchOutcomeKind.RECOVERED
        logger.warning(
            f"Status query for batch {outcome.key} failed; terminated "
            f"{len(outcome.terminated)} host(s) missing from provider, "
            f"{len(outcome.host_ids) - len(outcome.terminated)} deferred: {error}"
        )


async def _forward_summary(run_id: str, status: str, summary: dict) -> None:
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(
                settings.log_forward_url,
                json={"run_id": run_id, "job": CloudHostReadyJob.job_type, "status": status, **summary},
            )
    except httpx.HTTPError as e:
        logger.warning(f"Failed to forward reconciliation summary for run {run_id}: {e}")


def _finish_run(
    run_id: str,
    status: ReconciliationRunStatus,
    error_message: str | None,
    summary: dict,
) -> models.ReconciliationRun:
    with get_session() as session:
        run = session.get(models.ReconciliationRun, run_id)
        run.status = status.value
        run.finished_at = datetime.now(timezone.utc)
        run.error_message = error_message
        run.batches_total = summary.get("batches_total", 0)
        run.batches_failed = summary.get("batches_failed", 0)
        run.hosts_transitioned = summary.get("hosts_transitioned", 0)
        run.diagnostics_json = json.dumps(summary.get("diagnostics", []))
        session.commit()
        session.refresh(run)
        return run


async def run_cloud_status_pass(job_id: str | None = None) -> models.ReconciliationRun:
    """Run one recorded, lock-guarded reconciliation pass.

    Skips (and records the skip) when another pass holds the lock. The
    pass is abandoned after ``cloud_status_pass_timeout`` seconds; nothing
    carries over, the next pass starts from scratch. A pass cancelled from
    outside (scheduler shutdown) is recorded as failed before the
    cancellation propagates.
    """
    with cloud_status_pass_lock() as acquired:
        with get_session() as session:
            run = models.ReconciliationRun(id=job_id or str(uuid.uuid4()))
            if not acquired:
                logger.info("Another cloud status pass is in progress, skipping")
                run.status = ReconciliationRunStatus.SKIPPED.value
                run.finished_at = datetime.now(timezone.utc)
                session.add(run)
                session.commit()
                session.refresh(run)
                return run
            session.add(run)
            session.commit()
            run_id = run.id

        job = CloudHostReadyJob(run_id)
        summary: dict = {}
        try:
            await with_timeout(job.run(), settings.cloud_status_pass_timeout, "cloud status pass")
            if job.error is not None:
                status = ReconciliationRunStatus.FAILED
                error_message = job.error_text()
            else:
                status = ReconciliationRunStatus.COMPLETED
                error_message = None
                summary = job.result.summary() if job.result else {}
        except DeadlineExceeded as e:
            status = ReconciliationRunStatus.FAILED
            error_message = str(e)
        except asyncio.CancelledError:
            logger.warning(f"Cloud status pass {run_id} cancelled")
            _finish_run(run_id, ReconciliationRunStatus.FAILED, "cloud status pass cancelled", {})
            raise

        run = _finish_run(run_id, status, error_message, summary)

    if settings.log_forward_url:
        await _forward_summary(run_id, status.value, summary)
    return run


async def cloud_status_monitor():
    """Background task to periodically reconcile cloud host statuses."""
    interval = settings.get_interval("cloud_status")
    logger.info(f"Cloud status monitor started (interval: {interval}s)")

    while True:
        try:
            await asyncio.sleep(interval)
            await run_cloud_status_pass()
        except asyncio.CancelledError:
            logger.info("Cloud status monitor stopped")
            break
        except Exception as e:
            logger.error(f"Error in cloud status monitor: {e}")
            # Continue running - don't let one error stop the monitor
