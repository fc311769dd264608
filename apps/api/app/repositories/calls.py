"""Call record queries."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.call import (
    METADATA_CALL_SID,
    METADATA_TO_NUMBER,
    CallChannel,
    CallRecord,
)


async def get_by_id(session: AsyncSession, call_id: str, *, refresh: bool = False) -> CallRecord | None:
    """Return a call record by identifier.

    ``refresh`` forces a round trip so guard clauses see writes made by
    concurrent producers since the object was first loaded.
    """

    return await session.get(CallRecord, call_id, populate_existing=refresh)


async def create_call(
    session: AsyncSession,
    *,
    agent_id: str,
    channel: CallChannel,
    metadata: dict[str, Any] | None = None,
    linked_ticket_id: str | None = None,
) -> CallRecord:
    """Insert a new active call record."""

    call = CallRecord(
        id=uuid4().hex,
        agent_id=agent_id,
        channel=channel,
        call_metadata=dict(metadata or {}),
        linked_ticket_id=linked_ticket_id,
    )
    session.add(call)
    await session.flush()
    return call


async def delete_call(session: AsyncSession, call: CallRecord) -> None:
    await session.delete(call)
    await session.flush()


async def list_recent(session: AsyncSession, *, limit: int = 50) -> Sequence[CallRecord]:
    """Return the most recently started call records."""

    stmt = select(CallRecord).order_by(CallRecord.started_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_by_call_sid(session: AsyncSession, call_sid: str) -> CallRecord | None:
    """Return the call record whose metadata carries the provider call sid."""

    stmt = (
        select(CallRecord)
        .where(CallRecord.call_metadata[METADATA_CALL_SID].as_string() == call_sid)
        .order_by(CallRecord.started_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_latest_phone_call(
    session: AsyncSession,
    *,
    to_number: str,
    require_missing_recording: bool,
) -> CallRecord | None:
    """Return the most recently started phone call placed to ``to_number``."""

    stmt = select(CallRecord).where(
        CallRecord.channel == CallChannel.PHONE,
        CallRecord.call_metadata[METADATA_TO_NUMBER].as_string() == to_number,
    )
    if require_missing_recording:
        stmt = stmt.where(CallRecord.recording_key.is_(None))
    stmt = stmt.order_by(CallRecord.started_at.desc()).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_missing_recordings(
    session: AsyncSession,
    *,
    limit: int,
    started_after: datetime | None = None,
) -> Sequence[CallRecord]:
    """Return calls with a provider call sid but no stored recording, newest first.

    Calls that never get a recording (unanswered, busy) drop out of the batch
    as newer calls arrive, and entirely once older than ``started_after``.
    """

    call_sid = CallRecord.call_metadata[METADATA_CALL_SID].as_string()
    stmt = select(CallRecord).where(
        call_sid.is_not(None),
        call_sid != "",
        CallRecord.recording_key.is_(None),
    )
    if started_after is not None:
        stmt = stmt.where(CallRecord.started_at >= started_after)
    stmt = stmt.order_by(CallRecord.started_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()
