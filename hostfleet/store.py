"""Host store: candidate lookup and conditional status updates.

The store is the only writer of committed host state. Every status change
goes through :meth:`HostStore.conditional_update_status`, which applies the
write only if the row still holds an expected prior status. Concurrent
writers (other reconciliation passes, provisioning and termination jobs)
therefore can't lose each other's updates; the loser's write simply
doesn't apply.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hostfleet import models
from hostfleet.services.host_events import HostEventLog
from hostfleet.services.state_machine import HostStateMachine
from hostfleet.state import HostStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateFilter:
    """Selects hosts for a reconciliation pass.

    Terminal hosts are always excluded. ``statuses=None`` means every
    non-terminal status.
    """

    statuses: tuple[HostStatus, ...] | None = None
    providers: tuple[str, ...] | None = None
    exclude_providers: tuple[str, ...] = ()
    limit: int | None = None

    def effective_statuses(self) -> list[str]:
        allowed = HostStateMachine.non_terminal_states()
        if self.statuses is not None:
            allowed &= {HostStatus(s) for s in self.statuses}
        return sorted(s.value for s in allowed)


def _status_values(expected: HostStatus | str | Iterable[HostStatus | str]) -> list[str]:
    if isinstance(expected, (HostStatus, str)):
        return [HostStatus(expected).value]
    return [HostStatus(s).value for s in expected]



# Bounds re-reads when other writers keep moving a host between the read
# and the conditional write
_MAX_SWAP_ATTEMPTS = 3


class HostStore:
    """Host persistence operations bound to one session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, host_id: str) -> models.Host | None:
        return self.session.get(models.Host, host_id)

    def find_candidate_hosts(self, candidate_filter: CandidateFilter | None = None) -> list[models.Host]:
        """Load non-terminal hosts matching the filter.

        Hosts still waiting in ``starting`` come first, then everything else
        oldest first. Under a ``limit`` the long-lived hosts are the ones
        left for a later pass, never the unconfirmed ones.
        """
        candidate_filter = candidate_filter or CandidateFilter()
        query = self.session.query(models.Host).filter(
            models.Host.status.in_(candidate_filter.effective_statuses())
        )
        if candidate_filter.providers is not None:
            query = query.filter(models.Host.provider.in_(candidate_filter.providers))
        if candidate_filter.exclude_providers:
            query = query.filter(models.Host.provider.notin_(candidate_filter.exclude_providers))
        awaiting_first = case((models.Host.status == HostStatus.STARTING.value, 0), else_=1)
        query = query.order_by(awaiting_first, models.Host.created_at, models.Host.id)
        if candidate_filter.limit:
            query = query.limit(candidate_filter.limit)
        return query.all()

    def swap_status(
        self,
        host_id: str,
        expected: HostStatus | str | Iterable[HostStatus | str],
        new_status: HostStatus | str,
        reason: str | None = None,
    ) -> str | None:
        """Set a host's status only if it currently holds an expected status.

        The row's current status is read, then written back with a
        conditional ``UPDATE ... WHERE status = <that status>``, so the
        event entry records the exact prior status even when several were
        acceptable. If another writer moves the host in between, the read
        is repeated.

        Args:
            host_id: Host to update
            expected: Prior status, or collection of acceptable prior statuses
            new_status: Status to write
            reason: Stored on the host and in its event entry

        Returns:
            The status the host held before the update, or None if the host
            was missing or had already moved on (a benign race, not an
            error).

        Raises:
            SQLAlchemyError: The store itself failed. The session is rolled
                back before re-raising.
        """
        expected_values = _status_values(expected)
        new_value = HostStatus(new_status).value

        try:
            for _ in range(_MAX_SWAP_ATTEMPTS):
                current = self.session.execute(
                    select(models.Host.status).where(models.Host.id == host_id)
                ).scalar_one_or_none()
                if current is None or current not in expected_values:
                    self.session.rollback()
                    logger.debug(
                        f"Conditional update of host {host_id} to {new_value} not applied "
                        f"(status {current}, expected one of {expected_values})"
                    )
                    return None

                now = datetime.now(timezone.utc)
                values: dict = {
                    "status": new_value,
                    "status_reason": reason,
                    "updated_at": now,
                }
                if new_value == HostStatus.TERMINATED.value:
                    values["termination_time"] = now
                stmt = (
                    update(models.Host)
                    .where(models.Host.id == host_id, models.Host.status == current)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if self.session.execute(stmt).rowcount == 1:
                    HostEventLog.record(
                        self.session, host_id, new_value, old_status=current, reason=reason
                    )
                    self.session.commit()
                    return current
                self.session.rollback()

            logger.debug(f"Host {host_id} kept changing under update to {new_value}, giving up")
            return None
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def conditional_update_status(
        self,
        host_id: str,
        expected: HostStatus | str | Iterable[HostStatus | str],
        new_status: HostStatus | str,
        reason: str | None = None,
    ) -> bool:
        """Like :meth:`swap_status`, reporting only whether the update applied."""
        return self.swap_status(host_id, expected, new_status, reason=reason) is not None
