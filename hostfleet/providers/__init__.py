"""Cloud provider status clients."""

from hostfleet.providers.base import (
    ProviderError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    StatusClient,
)
from hostfleet.providers.ec2 import EC2StatusClient
from hostfleet.providers.mock import MockStatusClient
from hostfleet.providers.registry import (
    ProviderRegistry,
    get_registry,
    get_status_client,
)

__all__ = [
    # Base classes and errors
    "StatusClient",
    "ProviderError",
    "ProviderNotFoundError",
    "ProviderUnavailableError",
    # Client implementations
    "EC2StatusClient",
    "MockStatusClient",
    # Registry
    "ProviderRegistry",
    "get_registry",
    "get_status_client",
]
