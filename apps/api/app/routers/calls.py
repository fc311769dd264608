"""Call record endpoints for operators and the support console."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import get_session
from ..schemas import calls as calls_schema
from ..services import calls as calls_service
from ..services import enrichment, pipeline, recordings
from ..services.poller import recording_poller

router = APIRouter()


@router.post("", response_model=calls_schema.CallRecordRead, status_code=status.HTTP_201_CREATED)
async def create_call(
    payload: calls_schema.CallCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.CallRecordRead:
    """Open a call record when a session begins."""

    return await calls_service.create_call(payload, session)


@router.get("", response_model=calls_schema.CallListResponse)
async def list_calls(
    limit: int = Query(default=50, ge=1, le=calls_service.MAX_LIST_LIMIT),
    session: AsyncSession = Depends(get_session),
) -> calls_schema.CallListResponse:
    return await calls_service.list_calls(session, limit=limit)


@router.post("/outbound", response_model=calls_schema.OutboundCallResponse, status_code=status.HTTP_201_CREATED)
async def start_outbound_call(
    payload: calls_schema.OutboundCallRequest,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.OutboundCallResponse:
    """Have the voice agent call a customer."""

    return await calls_service.start_outbound_call(session, payload)


@router.post("/poll-recordings", response_model=calls_schema.PollReport)
async def poll_recordings() -> calls_schema.PollReport:
    """Run one recording sweep now."""

    return await recording_poller.run_once()


@router.post("/by-call-sid/{call_sid}/recording", response_model=calls_schema.RecordingAttachResponse)
async def attach_recording_by_call_sid(
    call_sid: str,
    payload: calls_schema.AttachRecordingRequest,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.RecordingAttachResponse:
    return await recordings.attach_recording_by_call_sid(session, call_sid, str(payload.source_url))


@router.get("/{call_id}", response_model=calls_schema.CallRecordDetail)
async def get_call(
    call_id: str,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.CallRecordDetail:
    """Return a call with a signed playback URL for its recording."""

    return await calls_service.get_call(session, call_id)


@router.patch("/{call_id}", response_model=calls_schema.CallRecordRead)
async def patch_call(
    call_id: str,
    payload: calls_schema.CallPatchRequest,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.CallRecordRead:
    return await calls_service.patch_call(session, call_id, payload)


@router.post("/{call_id}/recording", response_model=calls_schema.RecordingAttachResponse)
async def attach_recording(
    call_id: str,
    payload: calls_schema.AttachRecordingRequest,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.RecordingAttachResponse:
    """Store audio from a URL as the call's recording."""

    return await recordings.attach_recording_from_url(session, call_id, str(payload.source_url))


@router.post("/{call_id}/transcript", response_model=calls_schema.TranscriptResult)
async def generate_transcript(
    call_id: str,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.TranscriptResult:
    """Derive the transcript from the recording, then continue enrichment in the background."""

    result = await enrichment.generate_transcript(session, call_id)
    if result.generated:
        pipeline.schedule_enrichment(call_id)
    return result


@router.post("/{call_id}/summary", response_model=calls_schema.SummaryResult)
async def generate_summary(
    call_id: str,
    session: AsyncSession = Depends(get_session),
) -> calls_schema.SummaryResult:
    """Regenerate the summary, replacing any existing one."""

    return await enrichment.summarize_call(session, call_id, force=True)


@router.post("/{call_id}/outcome", response_model=calls_schema.OutcomeResult)
async def extract_outcome(
    call_id: str,
    save: bool = Query(default=True),
    session: AsyncSession = Depends(get_session),
) -> calls_schema.OutcomeResult:
    """Extract end reason and resolution; ``save=false`` only previews them."""

    return await enrichment.extract_call_outcome(session, call_id, persist=save)
