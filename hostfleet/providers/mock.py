"""In-memory status client for tests and local development."""

from __future__ import annotations

from hostfleet.providers.base import ProviderError, StatusClient
from hostfleet.state import CloudStatus


class MockStatusClient(StatusClient):
    """Status client backed by an in-memory instance table.

    Instances that were never registered report ``default_status``;
    instances registered as NONEXISTENT are left out of results, the way a
    real provider drops ids it no longer knows.
    """

    def __init__(self, default_status: CloudStatus = CloudStatus.RUNNING):
        self.default_status = default_status
        self.instances: dict[str, CloudStatus] = {}
        self.region_errors: dict[str, ProviderError] = {}
        self.error: ProviderError | None = None
        self.calls: list[tuple[str, list[str]]] = []

    @property
    def name(self) -> str:
        return "mock"

    def set_status(self, instance_id: str, status: CloudStatus) -> None:
        self.instances[instance_id] = status

    def fail_with(self, error: ProviderError | None, region: str | None = None) -> None:
        """Make every query (or every query for one region) raise ``error``."""
        if region is None:
            self.error = error
        elif error is None:
            self.region_errors.pop(region, None)
        else:
            self.region_errors[region] = error

    def reset(self) -> None:
        self.instances.clear()
        self.region_errors.clear()
        self.error = None
        self.calls.clear()

    async def query_statuses(self, region: str, instance_ids: list[str]) -> dict[str, CloudStatus]:
        self.calls.append((region, list(instance_ids)))
        if self.error is not None:
            raise self.error
        if region in self.region_errors:
            raise self.region_errors[region]

        statuses: dict[str, CloudStatus] = {}
        for instance_id in instance_ids:
            status = self.instances.get(instance_id, self.default_status)
            if status == CloudStatus.NONEXISTENT:
                continue
            statuses[instance_id] = status
        return statuses
