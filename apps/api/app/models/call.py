"""Call record model."""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType, enum_values

METADATA_CALL_SID = "call_sid"
METADATA_TO_NUMBER = "to_number"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallChannel(str, enum.Enum):
    WEB = "web"
    PHONE = "phone"


class CallStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    # Administrative states, only set through a manual patch.
    NO_RESPONSE = "no_response"
    UNKNOWN = "unknown"


class TicketResolution(str, enum.Enum):
    YES = "yes"
    NO = "no"


class CallRecord(Base):
    """One logical support call tracked through recording and enrichment."""

    __tablename__ = "call_records"
    __table_args__ = (
        Index("ix_call_records_started_at", "started_at"),
        Index("ix_call_records_agent_id", "agent_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    agent_id: Mapped[str] = mapped_column(String, nullable=False)
    channel: Mapped[CallChannel] = mapped_column(
        Enum(CallChannel, name="call_channel", values_callable=enum_values),
        default=CallChannel.WEB,
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[CallStatus] = mapped_column(
        Enum(CallStatus, name="call_status", values_callable=enum_values),
        default=CallStatus.ACTIVE,
        nullable=False,
    )
    recording_key: Mapped[str | None] = mapped_column(String)
    transcript: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType)
    call_summary: Mapped[str | None] = mapped_column(Text)
    end_reason: Mapped[str | None] = mapped_column(String)
    ticket_resolved: Mapped[TicketResolution | None] = mapped_column(
        Enum(TicketResolution, name="ticket_resolution", values_callable=enum_values)
    )
    linked_ticket_id: Mapped[str | None] = mapped_column(ForeignKey("tickets.id", ondelete="SET NULL"))
    call_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    @property
    def call_sid(self) -> str | None:
        return (self.call_metadata or {}).get(METADATA_CALL_SID) or None

    @property
    def to_number(self) -> str | None:
        return (self.call_metadata or {}).get(METADATA_TO_NUMBER) or None
