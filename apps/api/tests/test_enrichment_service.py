"""Tests for the transcript, summary and outcome stages."""
from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.core.errors import MissingPreconditionError, UpstreamServiceError
from app.models.call import TicketResolution
from app.models.ticket import TicketStatus
from app.repositories import tickets as tickets_repo
from app.services import enrichment, llm, transcription
from app.services.llm import OutcomeExtraction
from app.services.transcription import TranscriptSegment

TRANSCRIPT = [
    {"speaker": "agent", "text": "Hi, calling about your refund ticket.", "time": "00:00"},
    {"speaker": "user", "text": "Yes, the money arrived yesterday.", "time": "00:04"},
]


@pytest.fixture
def tickets(monkeypatch):
    store: dict[str, SimpleNamespace] = {}

    async def get_by_id(session, ticket_id, *, refresh=False):
        return store.get(ticket_id)

    monkeypatch.setattr(tickets_repo, "get_by_id", get_by_id)
    return store


@pytest.mark.asyncio
async def test_transcript_requires_recording(session, calls_store, call_factory):
    calls_store["call-1"] = call_factory("call-1")

    with pytest.raises(MissingPreconditionError) as exc:
        await enrichment.generate_transcript(session, "call-1")

    assert exc.value.reason == "no_recording"
    assert calls_store["call-1"].transcript is None


@pytest.mark.asyncio
async def test_derived_transcript_labels_every_segment_agent(
    monkeypatch, session, calls_store, blob_store, call_factory
):
    call = calls_store["call-1"] = call_factory("call-1", recording_key="recordings/call-1.wav")
    blob_store.objects["recordings/call-1.wav"] = b"RIFF...."
    transcribe = AsyncMock(
        return_value=[TranscriptSegment(start=0.2, text="Hello there."), TranscriptSegment(start=65.0, text="Bye.")]
    )
    monkeypatch.setattr(transcription, "transcribe_segments", transcribe)

    result = await enrichment.generate_transcript(session, "call-1")

    assert result.generated is True
    assert call.transcript == [
        {"speaker": "agent", "text": "Hello there.", "time": "00:00"},
        {"speaker": "agent", "text": "Bye.", "time": "01:05"},
    ]
    assert transcribe.await_args.kwargs["suffix"] == ".wav"


@pytest.mark.asyncio
async def test_existing_transcript_is_never_replaced(monkeypatch, session, calls_store, call_factory):
    calls_store["call-1"] = call_factory("call-1", recording_key="recordings/call-1.mp3", transcript=TRANSCRIPT)
    transcribe = AsyncMock()
    monkeypatch.setattr(transcription, "transcribe_segments", transcribe)

    result = await enrichment.generate_transcript(session, "call-1")

    assert result.generated is False
    assert len(result.transcript) == 2
    transcribe.assert_not_awaited()


@pytest.mark.asyncio
async def test_transcription_failure_leaves_stage_incomplete(
    monkeypatch, session, calls_store, blob_store, call_factory
):
    call = calls_store["call-1"] = call_factory("call-1", recording_key="recordings/call-1.mp3")
    blob_store.objects["recordings/call-1.mp3"] = b"ID3"
    monkeypatch.setattr(transcription, "transcribe_segments", AsyncMock(side_effect=RuntimeError("model crashed")))

    with pytest.raises(UpstreamServiceError) as exc:
        await enrichment.generate_transcript(session, "call-1")

    assert exc.value.service == "transcription"
    assert call.transcript is None


@pytest.mark.asyncio
async def test_event_transcript_keeps_existing_and_accepts_summary(session, calls_store, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", transcript=TRANSCRIPT)
    payload = {
        "chat_id": "call-1",
        "data": {
            "transcript": [{"role": "user", "message": "Different text"}],
            "analysis": {"transcript_summary": "Refund confirmed."},
            "call_duration_secs": 31,
        },
    }

    ack = await enrichment.apply_event_transcript(session, payload)

    assert ack.ok is True
    assert ack.saved is False
    assert ack.transcript_length == 2
    assert call.transcript == TRANSCRIPT
    assert call.call_summary == "Refund confirmed."
    assert call.duration_seconds == 31


@pytest.mark.asyncio
async def test_event_transcript_saved_for_matching_call(session, calls_store, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", recording_key="recordings/call-1.mp3")
    payload = {"data": {"chat_id": "call-1", "messages": [{"role": "agent", "text": "Hello", "start": 3}]}}

    ack = await enrichment.apply_event_transcript(session, payload)

    assert ack.saved is True
    assert call.transcript == [{"speaker": "agent", "text": "Hello", "time": "00:03"}]


@pytest.mark.asyncio
async def test_event_transcript_for_unknown_call(session, calls_store):
    ack = await enrichment.apply_event_transcript(session, {"chat_id": "ghost", "transcript": TRANSCRIPT})

    assert (ack.ok, ack.reason) == (False, "no_call")


@pytest.mark.asyncio
async def test_automatic_summary_runs_once(monkeypatch, session, calls_store, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", recording_key="recordings/call-1.mp3", transcript=TRANSCRIPT)
    summarize = AsyncMock(side_effect=["First summary.", "Second summary."])
    monkeypatch.setattr(llm, "summarize_transcript", summarize)

    for _ in range(2):
        await enrichment.generate_transcript(session, "call-1")
        await enrichment.summarize_call(session, "call-1")

    assert summarize.await_count == 1
    assert call.call_summary == "First summary."


@pytest.mark.asyncio
async def test_manual_summary_overwrites(monkeypatch, session, calls_store, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", transcript=TRANSCRIPT, call_summary="Old.")
    monkeypatch.setattr(llm, "summarize_transcript", AsyncMock(return_value="New."))

    result = await enrichment.summarize_call(session, "call-1", force=True)

    assert result.generated is True
    assert call.call_summary == "New."


@pytest.mark.asyncio
async def test_summary_requires_transcript(session, calls_store, call_factory):
    calls_store["call-1"] = call_factory("call-1")

    with pytest.raises(MissingPreconditionError) as exc:
        await enrichment.summarize_call(session, "call-1", force=True)

    assert exc.value.reason == "no_transcript"


@pytest.mark.asyncio
async def test_inconclusive_outcome_changes_nothing(monkeypatch, session, calls_store, tickets, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", call_summary="The line dropped.", linked_ticket_id="t-1")
    tickets["t-1"] = SimpleNamespace(id="t-1", status=TicketStatus.OPEN, resolved_at=None, resolution_note=None)
    monkeypatch.setattr(llm, "extract_outcome", AsyncMock(return_value=OutcomeExtraction("Unknown", "yes")))

    result = await enrichment.extract_call_outcome(session, "call-1")

    assert result.end_reason is None
    assert result.ticket_resolved is None
    assert result.persisted is False
    assert call.end_reason is None
    assert call.ticket_resolved is None
    assert tickets["t-1"].status is TicketStatus.OPEN


@pytest.mark.asyncio
async def test_resolved_outcome_resolves_open_ticket(monkeypatch, session, calls_store, tickets, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", call_summary="Refund received.", linked_ticket_id="t-1")
    ticket = tickets["t-1"] = SimpleNamespace(
        id="t-1", status=TicketStatus.OPEN, resolved_at=None, resolution_note=None
    )
    monkeypatch.setattr(llm, "extract_outcome", AsyncMock(return_value=OutcomeExtraction("Refund confirmed", "yes")))

    result = await enrichment.extract_call_outcome(session, "call-1")

    assert result.persisted is True
    assert result.ticket_updated is True
    assert call.end_reason == "Refund confirmed"
    assert call.ticket_resolved is TicketResolution.YES
    assert ticket.status is TicketStatus.RESOLVED
    assert ticket.resolved_at is not None
    assert "call-1" in ticket.resolution_note


@pytest.mark.asyncio
async def test_already_resolved_ticket_is_left_alone(monkeypatch, session, calls_store, tickets, call_factory):
    calls_store["call-1"] = call_factory("call-1", call_summary="Refund received.", linked_ticket_id="t-1")
    resolved_at = datetime(2025, 10, 1, tzinfo=timezone.utc)
    ticket = tickets["t-1"] = SimpleNamespace(
        id="t-1", status=TicketStatus.RESOLVED, resolved_at=resolved_at, resolution_note="Closed by agent."
    )
    monkeypatch.setattr(llm, "extract_outcome", AsyncMock(return_value=OutcomeExtraction("Refund confirmed", "yes")))

    result = await enrichment.extract_call_outcome(session, "call-1")

    assert result.ticket_updated is False
    assert ticket.resolved_at == resolved_at
    assert ticket.resolution_note == "Closed by agent."


@pytest.mark.asyncio
async def test_outcome_preview_does_not_persist(monkeypatch, session, calls_store, tickets, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", call_summary="Still broken.")
    monkeypatch.setattr(llm, "extract_outcome", AsyncMock(return_value=OutcomeExtraction("Issue unresolved", "no")))

    result = await enrichment.extract_call_outcome(session, "call-1", persist=False)

    assert result.end_reason == "Issue unresolved"
    assert result.ticket_resolved is TicketResolution.NO
    assert result.persisted is False
    assert call.end_reason is None


@pytest.mark.asyncio
async def test_outcome_service_failure_is_upstream_error(monkeypatch, session, calls_store, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", call_summary="Something.")
    monkeypatch.setattr(llm, "extract_outcome", AsyncMock(side_effect=llm.OutcomeParseError("garbled")))

    with pytest.raises(UpstreamServiceError):
        await enrichment.extract_call_outcome(session, "call-1")

    assert call.end_reason is None


@pytest.mark.asyncio
async def test_undecided_resolution_keeps_stored_outcome(monkeypatch, session, calls_store, call_factory):
    call = calls_store["call-1"] = call_factory(
        "call-1",
        call_summary="The customer hung up mid-sentence.",
        end_reason="Issue resolved",
        ticket_resolved=TicketResolution.YES,
    )
    monkeypatch.setattr(
        llm, "_generate", AsyncMock(return_value='{"endReason": "Customer hung up", "ticketResolved": "unsure"}')
    )

    with pytest.raises(UpstreamServiceError) as exc:
        await enrichment.extract_call_outcome(session, "call-1")

    assert exc.value.service == "outcome_extraction"
    assert call.end_reason == "Issue resolved"
    assert call.ticket_resolved is TicketResolution.YES


@pytest.mark.asyncio
async def test_outcome_requires_summary(session, calls_store, call_factory):
    calls_store["call-1"] = call_factory("call-1")

    with pytest.raises(MissingPreconditionError) as exc:
        await enrichment.extract_call_outcome(session, "call-1")

    assert exc.value.reason == "no_summary"


@pytest.mark.asyncio
async def test_chain_runs_missing_stages_in_order(monkeypatch, session, calls_store, tickets, call_factory):
    call = calls_store["call-1"] = call_factory("call-1", transcript=TRANSCRIPT)
    monkeypatch.setattr(llm, "summarize_transcript", AsyncMock(return_value="Refund arrived."))
    extract = AsyncMock(return_value=OutcomeExtraction("Customer confirmed refund", "no"))
    monkeypatch.setattr(llm, "extract_outcome", extract)

    await enrichment.run_chain(session, "call-1")
    await enrichment.run_chain(session, "call-1")

    assert call.call_summary == "Refund arrived."
    assert call.end_reason == "Customer confirmed refund"
    assert call.ticket_resolved is TicketResolution.NO
    assert extract.await_count == 1


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("unset", None), ("Unknown.", None), ("  ", None), (None, None), ("Customer hung up", "Customer hung up")],
)
def test_normalize_end_reason(raw, expected):
    assert enrichment.normalize_end_reason(raw) == expected
