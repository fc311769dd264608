"""Call record operations behind the calls API."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import CallNotFoundError, MalformedPayloadError, MissingPreconditionError, UpstreamServiceError
from ..models.call import METADATA_CALL_SID, METADATA_TO_NUMBER, CallChannel, CallRecord
from ..repositories import calls as calls_repo
from ..schemas import calls as schemas
from . import payloads, pipeline, storage, telephony, voice_provider

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


def to_read(call: CallRecord) -> schemas.CallRecordRead:
    return schemas.CallRecordRead(
        id=call.id,
        agent_id=call.agent_id,
        channel=call.channel,
        status=call.status,
        started_at=call.started_at,
        duration_seconds=call.duration_seconds,
        recording_key=call.recording_key,
        transcript=call.transcript,
        call_summary=call.call_summary,
        end_reason=call.end_reason,
        ticket_resolved=call.ticket_resolved,
        linked_ticket_id=call.linked_ticket_id,
        metadata=dict(call.call_metadata or {}),
    )


def _normalized_metadata(metadata: dict) -> dict:
    result = dict(metadata)
    if result.get(METADATA_TO_NUMBER):
        result[METADATA_TO_NUMBER] = payloads.normalize_phone_number(
            result[METADATA_TO_NUMBER], settings.phone_default_country_code
        )
    return result


async def create_call(payload: schemas.CallCreateRequest, session: AsyncSession) -> schemas.CallRecordRead:
    """Open a new active call record."""

    async with session.begin():
        call = await calls_repo.create_call(
            session,
            agent_id=payload.agent_id,
            channel=payload.channel,
            metadata=_normalized_metadata(payload.metadata),
            linked_ticket_id=payload.linked_ticket_id,
        )
    logger.info("Created %s call record %s for agent %s", call.channel.value, call.id, call.agent_id)
    return to_read(call)


async def list_calls(session: AsyncSession, *, limit: int = 50) -> schemas.CallListResponse:
    async with session.begin():
        rows = await calls_repo.list_recent(session, limit=max(1, min(limit, MAX_LIST_LIMIT)))
    return schemas.CallListResponse(
        items=[
            schemas.CallListItem(
                id=call.id,
                agent_id=call.agent_id,
                channel=call.channel,
                status=call.status,
                started_at=call.started_at,
                duration_seconds=call.duration_seconds,
                has_recording=bool(call.recording_key),
                end_reason=call.end_reason,
                ticket_resolved=call.ticket_resolved,
            )
            for call in rows
        ]
    )


async def get_call(session: AsyncSession, call_id: str) -> schemas.CallRecordDetail:
    """Return a call record with a short-lived playback URL when recorded."""

    async with session.begin():
        call = await calls_repo.get_by_id(session, call_id)
    if call is None:
        raise CallNotFoundError(call_id)

    playback_url = None
    if call.recording_key:
        try:
            playback_url = await storage.get_blob_store().signed_get_url(
                call.recording_key, settings.recording_url_ttl_seconds
            )
        except UpstreamServiceError as exc:
            logger.warning("Could not sign playback URL for call %s: %s", call.id, exc)

    return schemas.CallRecordDetail(**to_read(call).model_dump(), recording_playback_url=playback_url)


async def patch_call(
    session: AsyncSession,
    call_id: str,
    payload: schemas.CallPatchRequest,
) -> schemas.CallRecordRead:
    """Apply an operator edit to the mutable fields."""

    changes = payload.model_dump(exclude_unset=True)
    async with session.begin():
        call = await calls_repo.get_by_id(session, call_id, refresh=True)
        if call is None:
            raise CallNotFoundError(call_id)

        if "transcript" in changes:
            call.transcript = (
                [line.model_dump(mode="json") for line in payload.transcript]
                if payload.transcript is not None
                else None
            )
        if "metadata" in changes:
            merged = {**(call.call_metadata or {}), **(payload.metadata or {})}
            call.call_metadata = _normalized_metadata(merged)
        for field in ("duration_seconds", "end_reason", "ticket_resolved", "call_summary", "linked_ticket_id"):
            if field in changes:
                setattr(call, field, getattr(payload, field))
        if payload.status is not None:
            call.status = payload.status
        session.add(call)

    logger.info("Call %s patched: %s", call_id, ", ".join(sorted(changes)) or "no fields")
    return to_read(call)


async def start_outbound_call(
    session: AsyncSession,
    payload: schemas.OutboundCallRequest,
) -> schemas.OutboundCallResponse:
    """Create a phone call record and have the voice agent dial the customer.

    The record id travels to the provider as a dynamic variable so that the
    post-call webhooks can be matched back to this record.
    """

    to_number = payloads.normalize_phone_number(payload.to_number, settings.phone_default_country_code)
    if not to_number:
        raise MalformedPayloadError("to_number is empty")

    voice = voice_provider.get_voice_client()
    agent_id = payload.agent_id or voice.agent_id
    if not agent_id:
        raise MissingPreconditionError("no_agent", "No voice agent id supplied or configured")

    async with session.begin():
        call = await calls_repo.create_call(
            session,
            agent_id=agent_id,
            channel=CallChannel.PHONE,
            metadata={METADATA_TO_NUMBER: to_number},
            linked_ticket_id=payload.linked_ticket_id,
        )

    dynamic_variables = {**payload.dynamic_variables, "call_record_id": call.id}
    try:
        placed = await voice.start_outbound_call(
            to_number=to_number, dynamic_variables=dynamic_variables, agent_id=agent_id
        )
    except UpstreamServiceError:
        async with session.begin():
            stale = await calls_repo.get_by_id(session, call.id)
            if stale is not None:
                await calls_repo.delete_call(session, stale)
        logger.warning("Outbound call to %s failed; removed call record %s", to_number, call.id)
        raise

    response = schemas.OutboundCallResponse(call_id=call.id, call_sid=placed.call_sid)
    if not placed.call_sid:
        logger.warning("Provider placed call %s without returning a call sid", call.id)
        return response

    async with session.begin():
        fresh = await calls_repo.get_by_id(session, call.id, refresh=True)
        if fresh is not None:
            fresh.call_metadata = {**(fresh.call_metadata or {}), METADATA_CALL_SID: placed.call_sid}
            session.add(fresh)

    if telephony.get_telephony_client().configured:
        pipeline.schedule_recording_start(placed.call_sid)
        response.recording_requested = True
    return response
