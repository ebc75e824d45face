"""Batch planning for provider status queries."""
from __future__ import annotations

from typing import Iterable, NamedTuple, Protocol


class BatchKey(NamedTuple):
    """Provider/region pair that one status query can cover."""

    provider: str
    region: str


class PlannableHost(Protocol):
    id: str
    provider: str
    region: str


def plan_batches(hosts: Iterable[PlannableHost]) -> dict[BatchKey, list[str]]:
    """Group hosts into provider/region batches.

    Hosts without distro provider settings have an empty region and share
    one batch per provider; they are never dropped. Input order is kept
    within each batch.
    """
    batches: dict[BatchKey, list[str]] = {}
    for host in hosts:
        key = BatchKey(host.provider or "", host.region or "")
        batches.setdefault(key, []).append(host.id)
    return batches
