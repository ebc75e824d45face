"""Host event log for tracking status changes."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from hostfleet import models
from hostfleet.state import HostStatus

logger = logging.getLogger(__name__)

EVENT_STATUS_CHANGED = "status_changed"
EVENT_TERMINATED = "terminated"


class HostEventLog:
    """Records host event entries in the caller's transaction."""

    @staticmethod
    def record(
        db: Session,
        host_id: str,
        new_status: str,
        *,
        old_status: str | None = None,
        reason: str | None = None,
    ) -> models.HostEvent:
        """Add a host event for a status change.

        The event type is derived from the new status so terminations can be
        queried separately from ordinary progress.

        Args:
            db: Database session (the caller commits)
            host_id: Host the event belongs to
            new_status: Status the host moved to
            old_status: Status the host moved from, if known
            reason: Free-form explanation
        """
        event_type = EVENT_TERMINATED if new_status == HostStatus.TERMINATED.value else EVENT_STATUS_CHANGED
        entry = models.HostEvent(
            host_id=host_id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
        )
        db.add(entry)
        logger.debug(f"Host {host_id} event {event_type}: {old_status} -> {new_status}")
        return entry

    @staticmethod
    def for_host(db: Session, host_id: str) -> list[models.HostEvent]:
        return (
            db.query(models.HostEvent)
            .filter(models.HostEvent.host_id == host_id)
            .order_by(models.HostEvent.created_at)
            .all()
        )
