"""Transcript, summary and outcome stages for a recorded call.

Each stage re-reads the call immediately before writing and skips when its
output already exists, so concurrent triggers (webhook, sweep, operator)
converge on a single result.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import CallNotFoundError, MissingPreconditionError, UpstreamServiceError
from ..models.call import CallRecord, TicketResolution
from ..models.ticket import TicketStatus
from ..repositories import calls as calls_repo
from ..repositories import tickets as tickets_repo
from ..schemas import calls as schemas
from ..schemas.webhooks import TranscriptionAck
from . import correlation, llm, payloads, storage, transcription
from .correlation import ResolveMode

logger = logging.getLogger(__name__)

DERIVED_SPEAKER = "agent"
UNSET_END_REASONS = frozenset({"", "unset", "unknown", "none", "n/a"})
AUTO_RESOLUTION_NOTE = "Auto-resolved: support call {call_id} confirmed the ticket was resolved"


async def _load(session: AsyncSession, call_id: str) -> CallRecord:
    async with session.begin():
        call = await calls_repo.get_by_id(session, call_id, refresh=True)
    if call is None:
        raise CallNotFoundError(call_id)
    return call


def _lines(transcript: list[dict[str, Any]] | None) -> list[schemas.TranscriptLine]:
    return [schemas.TranscriptLine.model_validate(line) for line in transcript or []]


def normalize_end_reason(value: str | None) -> str | None:
    """Map placeholder phrases like ``unset``/``unknown`` to None."""

    if value is None:
        return None
    cleaned = value.strip().strip(".").strip()
    if cleaned.lower() in UNSET_END_REASONS:
        return None
    return cleaned


async def apply_event_transcript(session: AsyncSession, payload: Any) -> TranscriptionAck:
    """Attach a provider-diarized transcript (and summary, duration) to its call."""

    event = payloads.parse_call_event(payload, default_country_code=settings.phone_default_country_code)
    if not event.has_correlation_key:
        logger.info("Transcription webhook carried no call reference")
        return TranscriptionAck(ok=False, reason="malformed_payload")

    async with session.begin():
        call = await correlation.resolve(session, event, ResolveMode.TRANSCRIPT)
        if call is None:
            logger.warning(
                "No call matched transcription event (call_record_id=%s, called_number=%s)",
                event.call_record_id,
                event.called_number,
            )
            return TranscriptionAck(ok=False, reason="no_call")

        if not event.transcript and not event.summary and event.duration_seconds is None:
            return TranscriptionAck(ok=True, call_id=call.id, reason="nothing_to_save")

        saved = False
        if event.transcript:
            if call.transcript:
                logger.info("Call %s already has a transcript; keeping it", call.id)
            else:
                call.transcript = event.transcript
                saved = True
        if event.summary and not call.call_summary:
            call.call_summary = event.summary
        if event.duration_seconds is not None:
            call.duration_seconds = event.duration_seconds
        session.add(call)

    return TranscriptionAck(
        ok=True,
        call_id=call.id,
        saved=saved,
        transcript_length=len(call.transcript or []),
    )


async def generate_transcript(session: AsyncSession, call_id: str) -> schemas.TranscriptResult:
    """Derive a transcript from the stored recording unless one exists.

    Derived segments are all attributed to the agent; speaker separation is
    only available from provider-supplied transcripts.
    """

    call = await _load(session, call_id)
    if call.transcript:
        return schemas.TranscriptResult(call_id=call.id, transcript=_lines(call.transcript), generated=False)
    if not call.recording_key:
        raise MissingPreconditionError("no_recording", f"Call {call.id} has no recording to transcribe")

    audio = await storage.get_blob_store().get(call.recording_key)
    suffix = "." + call.recording_key.rsplit(".", 1)[-1] if "." in call.recording_key else ".mp3"
    try:
        segments = await transcription.transcribe_segments(audio, suffix=suffix)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Transcription failed for call %s", call.id)
        raise UpstreamServiceError("transcription", str(exc)) from exc

    lines = [
        {"speaker": DERIVED_SPEAKER, "text": segment.text, "time": payloads.format_offset(segment.start)}
        for segment in segments
        if segment.text
    ]
    if not lines:
        raise UpstreamServiceError("transcription", f"no speech found in recording for call {call.id}")

    async with session.begin():
        fresh = await calls_repo.get_by_id(session, call.id, refresh=True)
        if fresh is None:
            raise CallNotFoundError(call.id)
        if fresh.transcript:
            logger.info("Call %s received a transcript while transcribing; discarding derived one", call.id)
            return schemas.TranscriptResult(call_id=call.id, transcript=_lines(fresh.transcript), generated=False)
        fresh.transcript = lines
        session.add(fresh)

    logger.info("Derived %d transcript lines for call %s", len(lines), call.id)
    return schemas.TranscriptResult(call_id=call.id, transcript=_lines(lines), generated=True)


async def summarize_call(session: AsyncSession, call_id: str, *, force: bool = False) -> schemas.SummaryResult:
    """Summarise the transcript.

    The automatic path (``force=False``) keeps an existing summary; the
    operator path always regenerates and overwrites it.
    """

    call = await _load(session, call_id)
    if not force and call.call_summary:
        return schemas.SummaryResult(call_id=call.id, call_summary=call.call_summary, generated=False)
    if not call.transcript:
        raise MissingPreconditionError("no_transcript", f"Call {call.id} has no transcript to summarise")

    try:
        summary = (await llm.summarize_transcript(call.transcript)).strip()
    except (llm.LLMUnavailableError, ValueError) as exc:
        logger.warning("Summary generation failed for call %s: %s", call.id, exc)
        raise UpstreamServiceError("summarization", str(exc)) from exc
    if not summary:
        raise UpstreamServiceError("summarization", f"empty summary for call {call.id}")

    async with session.begin():
        fresh = await calls_repo.get_by_id(session, call.id, refresh=True)
        if fresh is None:
            raise CallNotFoundError(call.id)
        if not force and fresh.call_summary:
            return schemas.SummaryResult(call_id=call.id, call_summary=fresh.call_summary, generated=False)
        fresh.call_summary = summary
        session.add(fresh)

    return schemas.SummaryResult(call_id=call.id, call_summary=summary, generated=True)


async def extract_call_outcome(
    session: AsyncSession,
    call_id: str,
    *,
    persist: bool = True,
    only_if_missing: bool = False,
) -> schemas.OutcomeResult:
    """Derive end reason and resolution from the summary.

    An extraction with no discernible end reason is inconclusive: nothing is
    stored and no ticket is touched.
    """

    call = await _load(session, call_id)
    if only_if_missing and (call.end_reason or call.ticket_resolved):
        return schemas.OutcomeResult(
            call_id=call.id, end_reason=call.end_reason, ticket_resolved=call.ticket_resolved
        )
    if not call.call_summary:
        raise MissingPreconditionError("no_summary", f"Call {call.id} has no summary to analyse")

    try:
        extraction = await llm.extract_outcome(call.call_summary)
    except (llm.LLMUnavailableError, ValueError) as exc:
        logger.warning("Outcome extraction failed for call %s: %s", call.id, exc)
        raise UpstreamServiceError("outcome_extraction", str(exc)) from exc

    end_reason = normalize_end_reason(extraction.end_reason)
    if end_reason is None:
        logger.info("Outcome for call %s is inconclusive; leaving it unset", call.id)
        return schemas.OutcomeResult(call_id=call.id)

    resolution = TicketResolution(extraction.ticket_resolved)
    if not persist:
        return schemas.OutcomeResult(call_id=call.id, end_reason=end_reason, ticket_resolved=resolution)

    async with session.begin():
        fresh = await calls_repo.get_by_id(session, call.id, refresh=True)
        if fresh is None:
            raise CallNotFoundError(call.id)
        if only_if_missing and (fresh.end_reason or fresh.ticket_resolved):
            return schemas.OutcomeResult(
                call_id=call.id, end_reason=fresh.end_reason, ticket_resolved=fresh.ticket_resolved
            )
        fresh.end_reason = end_reason
        fresh.ticket_resolved = resolution
        linked_ticket_id = fresh.linked_ticket_id
        session.add(fresh)

    ticket_updated = False
    if resolution is TicketResolution.YES and linked_ticket_id:
        ticket_updated = await resolve_linked_ticket(session, call.id, linked_ticket_id)

    return schemas.OutcomeResult(
        call_id=call.id,
        end_reason=end_reason,
        ticket_resolved=resolution,
        persisted=True,
        ticket_updated=ticket_updated,
    )


async def resolve_linked_ticket(session: AsyncSession, call_id: str, ticket_id: str) -> bool:
    """Mark the linked ticket resolved unless it already is."""

    async with session.begin():
        ticket = await tickets_repo.get_by_id(session, ticket_id, refresh=True)
        if ticket is None:
            logger.warning("Call %s links to missing ticket %s", call_id, ticket_id)
            return False
        if ticket.status is TicketStatus.RESOLVED:
            logger.info("Ticket %s already resolved; call %s leaves it untouched", ticket_id, call_id)
            return False
        ticket.status = TicketStatus.RESOLVED
        ticket.resolved_at = datetime.now(timezone.utc)
        if not ticket.resolution_note:
            ticket.resolution_note = AUTO_RESOLUTION_NOTE.format(call_id=call_id)
        session.add(ticket)

    logger.info("Ticket %s auto-resolved from call %s", ticket_id, call_id)
    return True


async def run_chain(session: AsyncSession, call_id: str) -> None:
    """Run every missing stage in order, stopping at the first gap."""

    try:
        await generate_transcript(session, call_id)
    except (MissingPreconditionError, UpstreamServiceError) as exc:
        logger.warning("Transcript stage for call %s did not complete: %s", call_id, exc)

    try:
        await summarize_call(session, call_id)
    except (MissingPreconditionError, UpstreamServiceError) as exc:
        logger.warning("Summary stage for call %s did not complete: %s", call_id, exc)
        return

    try:
        await extract_call_outcome(session, call_id, only_if_missing=True)
    except (MissingPreconditionError, UpstreamServiceError) as exc:
        logger.warning("Outcome stage for call %s did not complete: %s", call_id, exc)
