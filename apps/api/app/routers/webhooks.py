"""Provider webhooks for post-call audio, transcripts and recording status."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import PipelineError
from ..db.session import get_session
from ..schemas.webhooks import TranscriptionAck, WebhookAck
from ..services import enrichment, pipeline, recordings
from ..services.payloads import RecordingStatusEvent

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/post-call-audio", response_model=WebhookAck)
async def post_call_audio(request: Request, session: AsyncSession = Depends(get_session)) -> WebhookAck:
    """Store inline call audio; always acknowledged with 200."""

    payload = await _read_json(request)
    try:
        return await recordings.ingest_post_call_audio(session, payload)
    except PipelineError as exc:
        logger.warning("Post-call audio not processed: %s", exc)
        return WebhookAck(ok=False, reason=exc.code)


@router.post("/post-call-transcription", response_model=TranscriptionAck)
async def post_call_transcription(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> TranscriptionAck:
    """Save a provider transcript and continue enrichment in the background."""

    payload = await _read_json(request)
    try:
        ack = await enrichment.apply_event_transcript(session, payload)
    except PipelineError as exc:
        logger.warning("Post-call transcription not processed: %s", exc)
        return TranscriptionAck(ok=False, reason=exc.code)

    if ack.ok and ack.call_id:
        pipeline.schedule_enrichment(ack.call_id)
    return ack


@router.post("/twilio-recording", response_class=PlainTextResponse)
async def recording_status(
    call_sid: str | None = Form(default=None, alias="CallSid"),
    recording_sid: str | None = Form(default=None, alias="RecordingSid"),
    recording_status: str | None = Form(default=None, alias="RecordingStatus"),
    session: AsyncSession = Depends(get_session),
) -> PlainTextResponse:
    """Fetch a finished recording from the provider without blocking the callback."""

    if not call_sid or not recording_sid:
        return PlainTextResponse("Missing CallSid or RecordingSid", status_code=status.HTTP_400_BAD_REQUEST)

    event = RecordingStatusEvent(call_sid=call_sid, recording_sid=recording_sid, status=recording_status or "")
    if not event.is_completed:
        return PlainTextResponse("OK")

    call = await recordings.match_recording_status(session, event)
    if call is None:
        logger.warning("Recording callback for unknown call sid %s", event.call_sid)
        return PlainTextResponse("Call not found", status_code=status.HTTP_404_NOT_FOUND)

    if call.recording_key:
        logger.info("Call %s already has a recording; ignoring callback", call.id)
    else:
        pipeline.schedule_acquisition(call.id, event.recording_sid)
    return PlainTextResponse("OK")
