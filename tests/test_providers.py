"""Tests for status client base class, retry policy, mock client and registry."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from hostfleet.providers import (
    EC2StatusClient,
    MockStatusClient,
    ProviderError,
    ProviderNotFoundError,
    ProviderRegistry,
    ProviderUnavailableError,
    StatusClient,
    get_registry,
)
from hostfleet.providers.retry import with_retry
from hostfleet.state import CloudStatus


class PerInstanceClient(StatusClient):
    """Client without a batch API."""

    def __init__(self, statuses: dict[str, CloudStatus]):
        self.statuses = statuses
        self.queried: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "per-instance"

    async def get_instance_status(self, region: str, instance_id: str) -> CloudStatus:
        self.queried.append((region, instance_id))
        return self.statuses[instance_id]


class TestStatusClientBase:

    @pytest.mark.asyncio
    async def test_batches_per_instance_queries(self):
        client = PerInstanceClient({"a": CloudStatus.RUNNING, "b": CloudStatus.STOPPED})

        result = await client.fetch_statuses("r1", ["a", "b"])

        assert result == {"a": CloudStatus.RUNNING, "b": CloudStatus.STOPPED}
        assert client.queried == [("r1", "a"), ("r1", "b")]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_calls(self):
        client = PerInstanceClient({})
        assert await client.fetch_statuses("r1", []) == {}
        assert client.queried == []

    @pytest.mark.asyncio
    async def test_missing_per_instance_support(self):
        class BareClient(StatusClient):
            @property
            def name(self) -> str:
                return "bare"

        with pytest.raises(NotImplementedError):
            await BareClient().fetch_statuses("", ["a"])

    def test_unknown_instance_ids_uses_shared_parser(self):
        client = PerInstanceClient({})
        assert client.unknown_instance_ids("The instance IDs 'a, b' do not exist") == ["a", "b"]


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        func = AsyncMock(return_value={"a": CloudStatus.RUNNING})
        assert await with_retry(func, "r1", provider="mock", max_retries=3) == {"a": CloudStatus.RUNNING}
        func.assert_awaited_once_with("r1")

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        func = AsyncMock(side_effect=[
            ProviderUnavailableError("Throttling: Rate exceeded"),
            ProviderUnavailableError("Throttling: Rate exceeded"),
            {"a": CloudStatus.RUNNING},
        ])

        result = await with_retry(func, provider="mock", max_retries=3)

        assert result == {"a": CloudStatus.RUNNING}
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_bounded_attempts(self):
        func = AsyncMock(side_effect=ProviderUnavailableError("InternalError: oops"))

        with pytest.raises(ProviderUnavailableError) as exc_info:
            await with_retry(func, provider="mock", max_retries=2)

        assert func.await_count == 3
        assert "after 3 attempts" in str(exc_info.value)
        assert "InternalError: oops" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_backoff_is_exponential_and_capped(self, monkeypatch):
        from hostfleet.config import settings

        monkeypatch.setattr(settings, "provider_retry_backoff_base", 1.0)
        monkeypatch.setattr(settings, "provider_retry_backoff_max", 3.0)
        func = AsyncMock(side_effect=ProviderUnavailableError("slow down"))

        with patch("hostfleet.providers.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(ProviderUnavailableError):
                await with_retry(func, provider="mock", max_retries=3)

        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_attempt_duration_recorded_before_backoff(self):
        func = AsyncMock(side_effect=[ProviderUnavailableError("slow down"), {"i-1": CloudStatus.RUNNING}])
        observed_at_sleep: list[int] = []

        with patch("hostfleet.providers.retry.provider_request_duration") as duration, \
             patch("hostfleet.providers.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            mock_sleep.side_effect = lambda delay: observed_at_sleep.append(
                duration.labels.return_value.observe.call_count
            )
            await with_retry(func, provider="mock", max_retries=1)

        assert observed_at_sleep == [1]
        assert [c.kwargs for c in duration.labels.call_args_list] == [
            {"provider": "mock", "status": "error"},
            {"provider": "mock", "status": "success"},
        ]
        assert duration.labels.return_value.observe.call_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_permanent_errors(self):
        func = AsyncMock(side_effect=ProviderError("InvalidInstanceID.NotFound: The instance ID 'a' does not exist"))

        with pytest.raises(ProviderError) as exc_info:
            await with_retry(func, provider="mock", max_retries=5)

        assert func.await_count == 1
        assert not isinstance(exc_info.value, ProviderUnavailableError)

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        calls = 0

        async def slow_then_fast():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)
            return {}

        assert await with_retry(slow_then_fast, provider="mock", max_retries=1, timeout=0.01) == {}
        assert calls == 2


class TestMockStatusClient:

    @pytest.mark.asyncio
    async def test_default_and_registered_statuses(self):
        client = MockStatusClient()
        client.set_status("b", CloudStatus.STOPPED)

        result = await client.fetch_statuses("r1", ["a", "b"])

        assert result == {"a": CloudStatus.RUNNING, "b": CloudStatus.STOPPED}
        assert client.calls == [("r1", ["a", "b"])]

    @pytest.mark.asyncio
    async def test_nonexistent_instances_are_omitted(self):
        client = MockStatusClient()
        client.set_status("gone", CloudStatus.NONEXISTENT)

        assert await client.fetch_statuses("", ["a", "gone"]) == {"a": CloudStatus.RUNNING}

    @pytest.mark.asyncio
    async def test_region_scoped_error(self):
        client = MockStatusClient()
        client.fail_with(ProviderError("boom"), region="bad")

        with pytest.raises(ProviderError):
            await client.fetch_statuses("bad", ["a"])
        assert await client.fetch_statuses("good", ["a"]) == {"a": CloudStatus.RUNNING}

        client.fail_with(None, region="bad")
        assert await client.fetch_statuses("bad", ["a"]) == {"a": CloudStatus.RUNNING}

    @pytest.mark.asyncio
    async def test_reset(self):
        client = MockStatusClient()
        client.fail_with(ProviderError("boom"))
        client.set_status("a", CloudStatus.STOPPED)
        client.reset()

        assert await client.fetch_statuses("", ["a"]) == {"a": CloudStatus.RUNNING}


class TestProviderRegistry:

    def test_lazy_singleton_per_name(self):
        registry = ProviderRegistry()
        created = []

        def factory():
            created.append(1)
            return MockStatusClient()

        registry.register("mock", factory)
        assert registry.get("mock") is registry.get("mock")
        assert len(created) == 1

        registry.reset()
        registry.get("mock")
        assert len(created) == 2

    def test_unknown_provider(self):
        with pytest.raises(ProviderNotFoundError) as exc_info:
            ProviderRegistry().get("gce")
        assert exc_info.value.provider == "gce"
        assert "gce" in str(exc_info.value)

    def test_register_client(self):
        registry = ProviderRegistry()
        client = MockStatusClient()
        registry.register_client(client)

        assert registry.get("mock") is client
        assert registry.list_providers() == ["mock"]

    def test_default_registry(self):
        registry = get_registry()

        assert {"mock", "ec2", "ec2-ondemand", "ec2-spot", "ec2-fleet"} <= set(registry.list_providers())
        spot = registry.get("ec2-spot")
        assert isinstance(spot, EC2StatusClient)
        assert spot.name == "ec2-spot"
        assert isinstance(registry.get("mock"), MockStatusClient)
