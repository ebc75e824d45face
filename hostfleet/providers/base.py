"""Base provider interface for cloud instance status queries."""

from __future__ import annotations

from abc import ABC, abstractmethod

from hostfleet.state import CloudStatus
from hostfleet.tasks.unknown_instances import parse_unknown_instance_ids


class ProviderError(Exception):
    """Base exception for provider status query failures."""
    def __init__(self, message: str, provider: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.retriable = retriable


class ProviderUnavailableError(ProviderError):
    """Transient failure: throttling, timeouts, connection problems."""
    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, provider, retriable=True)


class ProviderNotFoundError(ProviderError):
    """No status client is registered for a provider name."""
    def __init__(self, provider: str):
        super().__init__(f"No status client registered for provider '{provider}'", provider)


class StatusClient(ABC):
    """Abstract base class for per-provider instance status clients.

    Subclasses with a batch API override :meth:`query_statuses`; others only
    implement :meth:`get_instance_status` and get batching for free.
    Callers go through :meth:`fetch_statuses`, which applies the retry
    policy.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'ec2', 'mock')."""
        ...

    async def fetch_statuses(self, region: str, instance_ids: list[str]) -> dict[str, CloudStatus]:
        """Get the provider status of each instance in one region.

        Transient failures are retried with exponential backoff. Instances
        the provider no longer recognizes are absent from the result, or
        the whole call fails with an error naming them.

        Raises:
            ProviderError: Final failure for this batch
        """
        from hostfleet.providers.retry import with_retry

        if not instance_ids:
            return {}
        return await with_retry(
            self.query_statuses,
            region,
            list(instance_ids),
            provider=self.name,
        )

    async def query_statuses(self, region: str, instance_ids: list[str]) -> dict[str, CloudStatus]:
        """Single attempt at querying a batch of instances.

        Default implementation queries instances one at a time.
        """
        statuses: dict[str, CloudStatus] = {}
        for instance_id in instance_ids:
            statuses[instance_id] = await self.get_instance_status(region, instance_id)
        return statuses

    async def get_instance_status(self, region: str, instance_id: str) -> CloudStatus:
        """Single attempt at querying one instance."""
        raise NotImplementedError(f"{self.name} does not support per-instance status queries")

    def unknown_instance_ids(self, error_text: str) -> list[str]:
        """Recover instance ids the provider reported as missing.

        Providers with a different error wording override this.
        """
        return parse_unknown_instance_ids(error_text)
