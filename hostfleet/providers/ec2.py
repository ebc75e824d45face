"""EC2 status client.

Credentials are resolved via boto3's standard credential chain.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from hostfleet.config import settings
from hostfleet.providers.base import ProviderError, ProviderUnavailableError, StatusClient
from hostfleet.state import CloudStatus

logger = logging.getLogger(__name__)

EC2_STATE_MAP: dict[str, CloudStatus] = {
    "pending": CloudStatus.INITIALIZING,
    "running": CloudStatus.RUNNING,
    "stopping": CloudStatus.STOPPING,
    "stopped": CloudStatus.STOPPED,
    "shutting-down": CloudStatus.TERMINATED,
    "terminated": CloudStatus.TERMINATED,
}

# Error codes worth retrying; anything else fails the batch immediately
TRANSIENT_ERROR_CODES = {
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
    "InternalError",
    "ServiceUnavailable",
    "Unavailable",
}

_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)

# Retries are owned by hostfleet.providers.retry
_BOTO_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


def _default_client_factory(region: str) -> Any:
    return boto3.client("ec2", region_name=region, config=_BOTO_CONFIG)


class EC2StatusClient(StatusClient):
    """Batched instance status queries via DescribeInstances."""

    def __init__(
        self,
        provider_name: str = "ec2",
        client_factory: Callable[[str], Any] | None = None,
    ):
        self._name = provider_name
        self._client_factory = client_factory or _default_client_factory
        self._clients: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._name

    def _client(self, region: str) -> Any:
        region = region or settings.ec2_default_region
        if region not in self._clients:
            self._clients[region] = self._client_factory(region)
        return self._clients[region]

    def _describe(self, client: Any, instance_ids: list[str]) -> dict[str, CloudStatus]:
        statuses: dict[str, CloudStatus] = {}
        paginator = client.get_paginator("describe_instances")
        for page in paginator.paginate(InstanceIds=instance_ids):
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    state = instance.get("State", {}).get("Name", "")
                    statuses[instance["InstanceId"]] = EC2_STATE_MAP.get(state, CloudStatus.UNKNOWN)
        return statuses

    async def query_statuses(self, region: str, instance_ids: list[str]) -> dict[str, CloudStatus]:
        try:
            # Created on the loop thread, boto3's default session is not thread-safe
            client = self._client(region)
            return await asyncio.to_thread(self._describe, client, instance_ids)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "ClientError")
            message = error.get("Message", str(e))
            if code in TRANSIENT_ERROR_CODES:
                raise ProviderUnavailableError(f"{code}: {message}", self.name) from e
            raise ProviderError(f"error describing instances: {code}: {message}", self.name) from e
        except _CONNECTION_ERRORS as e:
            raise ProviderUnavailableError(f"error describing instances: {e}", self.name) from e
        except BotoCoreError as e:
            raise ProviderError(f"error describing instances: {e}", self.name) from e
