"""Registry mapping provider names to status clients."""

from __future__ import annotations

import logging
from typing import Callable

from hostfleet.providers.base import ProviderNotFoundError, StatusClient
from hostfleet.providers.ec2 import EC2StatusClient
from hostfleet.providers.mock import MockStatusClient

logger = logging.getLogger(__name__)

StatusClientFactory = Callable[[], StatusClient]


class ProviderRegistry:
    """Lazily instantiates one status client per provider name."""

    def __init__(self):
        self._factories: dict[str, StatusClientFactory] = {}
        self._clients: dict[str, StatusClient] = {}

    def register(self, name: str, factory: StatusClientFactory) -> None:
        self._factories[name] = factory
        self._clients.pop(name, None)

    def register_client(self, client: StatusClient, name: str | None = None) -> None:
        """Register an already-built client (used by tests)."""
        name = name or client.name
        self._factories[name] = lambda: client
        self._clients[name] = client

    def get(self, name: str) -> StatusClient:
        """Get the status client for a provider.

        Raises:
            ProviderNotFoundError: Nothing is registered under ``name``
        """
        if name not in self._clients:
            factory = self._factories.get(name)
            if factory is None:
                raise ProviderNotFoundError(name)
            self._clients[name] = factory()
            logger.debug(f"Created status client for provider {name}")
        return self._clients[name]

    def list_providers(self) -> list[str]:
        return sorted(self._factories)

    def reset(self) -> None:
        """Drop instantiated clients; factories stay registered."""
        self._clients.clear()


def _build_default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("mock", MockStatusClient)
    for name in ("ec2", "ec2-ondemand", "ec2-spot", "ec2-fleet"):
        registry.register(name, lambda name=name: EC2StatusClient(provider_name=name))
    return registry


_registry: ProviderRegistry | None = None


def get_registry() -> ProviderRegistry:
    """Get the process-wide provider registry, creating it if necessary."""
    global _registry
    if _registry is None:
        _registry = _build_default_registry()
    return _registry


def get_status_client(name: str) -> StatusClient:
    return get_registry().get(name)
