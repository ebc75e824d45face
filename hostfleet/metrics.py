"""Prometheus metrics for hostfleet.

Usage:
    from hostfleet.metrics import (
        cloud_status_batches, host_transitions, unknown_instances_terminated,
        cloud_status_pass_duration, provider_request_duration,
    )

The scheduler's /metrics endpoint and the worker's metrics server expose
these in Prometheus format.
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)


# --- Reconciliation Metrics ---

cloud_status_batches = Counter(
    "hostfleet_cloud_status_batches_total",
    "Cloud status batches processed, by outcome",
    ["provider", "outcome"],
)

host_transitions = Counter(
    "hostfleet_host_transitions_total",
    "Host status transitions applied by reconciliation",
    ["from_status", "to_status"],
)

unknown_instances_terminated = Counter(
    "hostfleet_unknown_instances_terminated_total",
    "Hosts terminated because the provider no longer knows the instance",
    ["provider"],
)

cloud_status_pass_duration = Histogram(
    "hostfleet_cloud_status_pass_duration_seconds",
    "Duration of a full cloud status reconciliation pass",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

# --- Provider Metrics ---

provider_request_duration = Histogram(
    "hostfleet_provider_request_duration_seconds",
    "Duration of individual provider status query attempts",
    ["provider", "status"],
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, float("inf")),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics output.

    Returns:
        Tuple of (metrics content, content type)
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
