"""Tests for the recorded, lock-guarded cloud status pass and its monitor."""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from hostfleet import models
from hostfleet.config import settings
from hostfleet.providers.base import ProviderError
from hostfleet.state import HostStatus, ReconciliationRunStatus
from hostfleet.store import HostStore
from hostfleet.tasks import cloud_status
from hostfleet.tasks.cloud_status import CloudHostReadyJob, cloud_status_monitor, run_cloud_status_pass


def _lock(acquired: bool):
    @contextmanager
    def _fake_lock(ttl=None):
        yield acquired
    return _fake_lock


@pytest.fixture
def pass_env(session_factory, registry):
    """Route the pass through the test session and mock provider registry."""
    with patch.object(cloud_status, "get_session", session_factory), \
         patch.object(cloud_status, "get_registry", return_value=registry), \
         patch.object(cloud_status, "cloud_status_pass_lock", _lock(True)):
        yield


class TestRunCloudStatusPass:

    @pytest.mark.asyncio
    async def test_records_completed_run(self, pass_env, make_host, host_status, test_db):
        make_host("h1")
        make_host("h2", status=HostStatus.STOPPED.value)

        run = await run_cloud_status_pass("run-1")

        assert run.id == "run-1"
        assert run.status == ReconciliationRunStatus.COMPLETED.value
        assert run.finished_at is not None
        assert run.batches_total == 1
        assert run.batches_failed == 0
        assert run.hosts_transitioned == 1
        assert run.error_message is None
        assert run.get_diagnostics() == []
        assert host_status("h1") == HostStatus.PROVISIONING.value

        stored = test_db.get(models.ReconciliationRun, "run-1")
        assert stored.status == ReconciliationRunStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_failed_batches_land_in_diagnostics(self, pass_env, make_host, mock_client):
        make_host("h1")
        mock_client.fail_with(ProviderError("AuthFailure"))

        run = await run_cloud_status_pass()

        assert run.status == ReconciliationRunStatus.COMPLETED.value
        assert run.batches_failed == 1
        diagnostics = run.get_diagnostics()
        assert len(diagnostics) == 1
        assert diagnostics[0]["error"] == "AuthFailure"
        assert diagnostics[0]["outcome"] == "failed"

    @pytest.mark.asyncio
    async def test_store_failure_fails_run(self, pass_env, make_host):
        make_host("h1")
        error = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(HostStore, "find_candidate_hosts", side_effect=error):
            run = await run_cloud_status_pass()

        assert run.status == ReconciliationRunStatus.FAILED.value
        assert "database is locked" in run.error_message
        assert run.batches_total == 0

    @pytest.mark.asyncio
    async def test_skips_when_lock_is_held(self, session_factory, registry, make_host, host_status, mock_client):
        make_host("h1")

        with patch.object(cloud_status, "get_session", session_factory), \
             patch.object(cloud_status, "get_registry", return_value=registry), \
             patch.object(cloud_status, "cloud_status_pass_lock", _lock(False)):
            run = await run_cloud_status_pass()

        assert run.status == ReconciliationRunStatus.SKIPPED.value
        assert run.finished_at is not None
        assert mock_client.calls == []
        assert host_status("h1") == HostStatus.STARTING.value

    @pytest.mark.asyncio
    async def test_pass_deadline(self, pass_env, monkeypatch):
        monkeypatch.setattr(settings, "cloud_status_pass_timeout", 0.01)

        async def slow_run(self):
            await asyncio.sleep(1)

        with patch.object(CloudHostReadyJob, "run", slow_run):
            run = await run_cloud_status_pass()

        assert run.status == ReconciliationRunStatus.FAILED.value
        assert run.error_message == "cloud status pass exceeded 0.01s deadline"

    @pytest.mark.asyncio
    async def test_cancelled_pass_is_recorded_as_failed(self, pass_env, test_db):
        async def cancelled_run(self):
            raise asyncio.CancelledError()

        with patch.object(CloudHostReadyJob, "run", cancelled_run):
            with pytest.raises(asyncio.CancelledError):
                await run_cloud_status_pass("run-1")

        test_db.expire_all()
        run = test_db.get(models.ReconciliationRun, "run-1")
        assert run.status == ReconciliationRunStatus.FAILED.value
        assert run.error_message == "cloud status pass cancelled"
        assert run.finished_at is not None

    @pytest.mark.asyncio
    async def test_forwards_summary_when_configured(self, pass_env, make_host, monkeypatch):
        monkeypatch.setattr(settings, "log_forward_url", "http://logs.local/ingest")
        make_host("h1")

        with patch.object(cloud_status, "_forward_summary", new_callable=AsyncMock) as forward:
            run = await run_cloud_status_pass("run-1")

        forward.assert_awaited_once()
        run_id, status, summary = forward.await_args.args
        assert run_id == run.id
        assert status == "completed"
        assert summary["hosts_transitioned"] == 1

    @pytest.mark.asyncio
    async def test_does_not_forward_by_default(self, pass_env, monkeypatch):
        monkeypatch.setattr(settings, "log_forward_url", None)

        with patch.object(cloud_status, "_forward_summary", new_callable=AsyncMock) as forward:
            await run_cloud_status_pass()

        forward.assert_not_awaited()


class TestForwardSummary:

    @pytest.mark.asyncio
    async def test_posts_summary(self, monkeypatch):
        monkeypatch.setattr(settings, "log_forward_url", "http://logs.local/ingest")

        with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock) as post:
            await cloud_status._forward_summary("run-1", "completed", {"batches_total": 2})

        post.assert_awaited_once_with(
            "http://logs.local/ingest",
            json={
                "run_id": "run-1",
                "job": "cloud-host-ready",
                "status": "completed",
                "batches_total": 2,
            },
        )

    @pytest.mark.asyncio
    async def test_http_errors_are_logged_not_raised(self, monkeypatch, caplog):
        monkeypatch.setattr(settings, "log_forward_url", "http://logs.local/ingest")

        with patch.object(
            httpx.AsyncClient, "post", new_callable=AsyncMock, side_effect=httpx.ConnectError("refused")
        ):
            await cloud_status._forward_summary("run-1", "completed", {})

        assert "Failed to forward reconciliation summary for run run-1" in caplog.text


class TestCloudStatusMonitor:

    @pytest.mark.asyncio
    async def test_runs_a_pass_per_interval(self, monkeypatch):
        monkeypatch.setattr(settings, "cloud_status_interval", 7)

        with patch.object(cloud_status.asyncio, "sleep", new_callable=AsyncMock) as sleep, \
             patch.object(cloud_status, "run_cloud_status_pass", new_callable=AsyncMock) as run_pass:
            sleep.side_effect = [None, None, asyncio.CancelledError()]
            await cloud_status_monitor()

        assert run_pass.await_count == 2
        sleep.assert_awaited_with(7)

    @pytest.mark.asyncio
    async def test_survives_pass_errors(self):
        with patch.object(cloud_status.asyncio, "sleep", new_callable=AsyncMock) as sleep, \
             patch.object(cloud_status, "run_cloud_status_pass", new_callable=AsyncMock) as run_pass:
            sleep.side_effect = [None, None, asyncio.CancelledError()]
            run_pass.side_effect = [RuntimeError("redis down"), None]
            await cloud_status_monitor()

        assert run_pass.await_count == 2

    @pytest.mark.asyncio
    async def test_interval_override(self, monkeypatch):
        monkeypatch.setattr(settings, "interval_overrides", {"cloud_status": 3})

        with patch.object(cloud_status.asyncio, "sleep", new_callable=AsyncMock) as sleep, \
             patch.object(cloud_status, "run_cloud_status_pass", new_callable=AsyncMock):
            sleep.side_effect = asyncio.CancelledError()
            await cloud_status_monitor()

        sleep.assert_awaited_once_with(3)
