from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from hostfleet.state import HostStatus, ReconciliationRunStatus


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Distro(Base):
    """Host image/flavor definition carrying per-provider settings."""

    __tablename__ = "distros"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    provider: Mapped[str] = mapped_column(String(50))
    # JSON list of settings documents, e.g. [{"region": "us-east-1", ...}]
    provider_settings: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    hosts: Mapped[list["Host"]] = relationship(back_populates="distro")

    @property
    def provider_settings_list(self) -> list[dict]:
        """Decode provider settings; malformed or non-list JSON reads as empty."""
        if not self.provider_settings:
            return []
        try:
            decoded = json.loads(self.provider_settings)
        except (json.JSONDecodeError, TypeError):
            return []
        if not isinstance(decoded, list):
            return []
        return [doc for doc in decoded if isinstance(doc, dict)]

    def set_provider_settings(self, documents: list[dict]) -> None:
        self.provider_settings = json.dumps(documents)


class Host(Base):
    """A cloud-provisioned worker host. The id is the provider instance id."""

    __tablename__ = "hosts"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    provider: Mapped[str] = mapped_column(String(50), default="", index=True)
    distro_id: Mapped[str | None] = mapped_column(
        String(100), ForeignKey("distros.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(50), default=HostStatus.STARTING.value, index=True
    )
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    termination_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    distro: Mapped[Distro | None] = relationship(back_populates="hosts", lazy="joined")

    @property
    def region(self) -> str:
        """Region from the first distro settings document, "" when absent."""
        if self.distro is None:
            return ""
        documents = self.distro.provider_settings_list
        if not documents:
            return ""
        return str(documents[0].get("region") or "")


class HostEvent(Base):
    """Append-only record of host status changes."""

    __tablename__ = "host_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    host_id: Mapped[str] = mapped_column(String(100), index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    old_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str] = mapped_column(String(50))
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ReconciliationRun(Base):
    """Outcome of one cloud status reconciliation pass."""

    __tablename__ = "reconciliation_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    status: Mapped[str] = mapped_column(String(20), default=ReconciliationRunStatus.RUNNING.value)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    batches_total: Mapped[int] = mapped_column(Integer, default=0)
    batches_failed: Mapped[int] = mapped_column(Integer, default=0)
    hosts_transitioned: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnostics_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    def get_diagnostics(self) -> list[dict]:
        if not self.diagnostics_json:
            return []
        return json.loads(self.diagnostics_json)
