"""Centralized state enums for host lifecycle handling.

Transition rules between these states live in services/state_machine.py.
"""

from enum import Enum


class HostStatus(str, Enum):
    """Lifecycle status stored on a host record (closed set)."""

    STARTING = "starting"  # Requested, provider confirmation pending
    PROVISIONING = "provisioning"  # Provider confirmed the instance is up
    PROVISION_FAILED = "provision failed"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    QUARANTINED = "quarantined"
    DECOMMISSIONED = "decommissioned"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class CloudStatus(str, Enum):
    """Instance status as classified from a provider response.

    Never persisted; UNKNOWN in particular is only ever inferred.
    """

    UNKNOWN = "unknown"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"
    FAILED = "failed"
    NONEXISTENT = "nonexistent"


class ReconciliationRunStatus(str, Enum):
    """Status of a recorded reconciliation pass."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Another pass held the lock
