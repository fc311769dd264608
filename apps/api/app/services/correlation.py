"""Match inbound provider events to call records."""
from __future__ import annotations

import enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.call import CallRecord
from ..repositories import calls as calls_repo
from .payloads import InboundCallEvent

logger = logging.getLogger(__name__)


class ResolveMode(str, enum.Enum):
    """Why the caller is resolving; controls the phone-number fallback."""

    RECORDING = "recording"
    TRANSCRIPT = "transcript"


async def resolve(
    session: AsyncSession,
    event: InboundCallEvent,
    mode: ResolveMode,
) -> CallRecord | None:
    """Return the call record an event belongs to, or None.

    The injected call record id is authoritative. Without it the most
    recently started phone call to the called number is used; in recording
    mode calls that already hold a recording are excluded.
    """

    if event.call_record_id:
        call = await calls_repo.get_by_id(session, event.call_record_id)
        if call is not None:
            return call
        logger.info("Event carried unknown call record id %s", event.call_record_id)

    if event.called_number:
        call = await calls_repo.find_latest_phone_call(
            session,
            to_number=event.called_number,
            require_missing_recording=mode is ResolveMode.RECORDING,
        )
        if call is not None:
            logger.info(
                "Resolved event to call %s via called number %s (%s)",
                call.id,
                event.called_number,
                mode.value,
            )
            return call

    return None


async def resolve_by_call_sid(session: AsyncSession, call_sid: str) -> CallRecord | None:
    """Return the call record created for a telephony provider call sid."""

    if not call_sid:
        return None
    return await calls_repo.get_by_call_sid(session, call_sid)
