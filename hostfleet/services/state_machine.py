"""State machine for host lifecycle transitions driven by provider status.

Only the early part of the lifecycle is owned here: confirming that a
requested instance actually came up. Everything downstream of
``provisioning`` belongs to other subsystems and is left alone.
"""

from typing import Optional

from hostfleet.state import CloudStatus, HostStatus


class HostStateMachine:
    """Centralized transition policy for cloud host reconciliation.

    Host lifecycle as seen by the reconciler:
        starting -> provisioning (provider reports the instance running)
        starting -> terminated (provider reports it gone or failed)
        any non-terminal -> terminated (provider no longer knows the instance)
    """

    # Hosts in these states are never candidates and never revisited
    TERMINAL_STATES: set[HostStatus] = {
        HostStatus.TERMINATING,
        HostStatus.TERMINATED,
    }

    # Provider statuses that confirm the instance is up
    ALIVE_CLOUD_STATUSES: set[CloudStatus] = {
        CloudStatus.RUNNING,
    }

    # Provider statuses after which the instance will never come up
    GONE_CLOUD_STATUSES: set[CloudStatus] = {
        CloudStatus.TERMINATED,
        CloudStatus.FAILED,
        CloudStatus.NONEXISTENT,
    }

    @classmethod
    def non_terminal_states(cls) -> set[HostStatus]:
        return {s for s in HostStatus if not cls.is_terminal(s)}

    @classmethod
    def is_terminal(cls, status: HostStatus | str) -> bool:
        return HostStatus(status) in cls.TERMINAL_STATES

    @classmethod
    def is_alive(cls, cloud_status: CloudStatus) -> bool:
        return cloud_status in cls.ALIVE_CLOUD_STATUSES

    @classmethod
    def next_status(
        cls,
        current: HostStatus | str,
        cloud_status: CloudStatus,
    ) -> Optional[HostStatus]:
        """Get the status a host should move to given its provider status.

        Returns None when no transition applies. Only hosts still waiting
        for provider confirmation move; anything already past ``starting``
        is left for the subsystems that own those states.
        """
        if HostStatus(current) != HostStatus.STARTING:
            return None
        if cls.is_alive(cloud_status):
            return HostStatus.PROVISIONING
        if cloud_status in cls.GONE_CLOUD_STATUSES:
            return HostStatus.TERMINATED
        return None
