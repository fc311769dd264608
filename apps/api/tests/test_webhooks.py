"""Webhook endpoint behaviour with the services stubbed out."""
from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.errors import UpstreamServiceError
from app.db.session import get_session
from app.main import app
from app.routers import webhooks
from app.schemas.webhooks import TranscriptionAck, WebhookAck



@pytest.fixture
def client_factory(session):
    async def _override():
        yield session

    app.dependency_overrides[get_session] = _override

    def _make() -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")

    yield _make
    app.dependency_overrides.pop(get_session, None)


@pytest.mark.asyncio
async def test_post_call_audio_accepts_invalid_json(client_factory, monkeypatch):
    ingest = AsyncMock(return_value=WebhookAck(ok=False, reason="malformed_payload"))
    monkeypatch.setattr(webhooks.recordings, "ingest_post_call_audio", ingest)

    async with client_factory() as client:
        response = await client.post(
            "/webhooks/post-call-audio", content=b"{not json", headers={"content-type": "application/json"}
        )

    assert response.status_code == 200
    assert response.json()["ok"] is False
    assert ingest.await_args.args[1] is None


@pytest.mark.asyncio
async def test_post_call_audio_upstream_failure_is_acknowledged(client_factory, monkeypatch):
    ingest = AsyncMock(side_effect=UpstreamServiceError("blob_store", "unreachable"))
    monkeypatch.setattr(webhooks.recordings, "ingest_post_call_audio", ingest)

    async with client_factory() as client:
        response = await client.post("/webhooks/post-call-audio", json={"data": {}})

    assert response.status_code == 200
    assert response.json() == {"ok": False, "reason": "upstream_failure", "call_id": None}


@pytest.mark.asyncio
async def test_transcription_schedules_enrichment(client_factory, monkeypatch):
    apply = AsyncMock(return_value=TranscriptionAck(ok=True, call_id="call-9", saved=True, transcript_length=3))
    schedule = Mock()
    monkeypatch.setattr(webhooks.enrichment, "apply_event_transcript", apply)
    monkeypatch.setattr(webhooks.pipeline, "schedule_enrichment", schedule)

    async with client_factory() as client:
        response = await client.post("/webhooks/post-call-transcription", json={"data": {"transcript": []}})

    assert response.status_code == 200
    assert response.json()["transcript_length"] == 3
    schedule.assert_called_once_with("call-9")


@pytest.mark.asyncio
async def test_unmatched_transcription_does_not_schedule(client_factory, monkeypatch):
    apply = AsyncMock(return_value=TranscriptionAck(ok=False, reason="no_call"))
    schedule = Mock()
    monkeypatch.setattr(webhooks.enrichment, "apply_event_transcript", apply)
    monkeypatch.setattr(webhooks.pipeline, "schedule_enrichment", schedule)

    async with client_factory() as client:
        response = await client.post("/webhooks/post-call-transcription", json={})

    assert response.json()["reason"] == "no_call"
    schedule.assert_not_called()


@pytest.mark.asyncio
async def test_recording_status_requires_sids(client_factory):
    async with client_factory() as client:
        response = await client.post("/webhooks/twilio-recording", data={"CallSid": "CA1"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_recording_status_ignores_unfinished_recordings(client_factory, monkeypatch):
    match = AsyncMock()
    monkeypatch.setattr(webhooks.recordings, "match_recording_status", match)

    async with client_factory() as client:
        response = await client.post(
            "/webhooks/twilio-recording",
            data={"CallSid": "CA1", "RecordingSid": "RE1", "RecordingStatus": "in-progress"},
        )

    assert response.status_code == 200
    assert response.text == "OK"
    match.assert_not_awaited()


@pytest.mark.asyncio
async def test_recording_status_unknown_call(client_factory, monkeypatch):
    monkeypatch.setattr(webhooks.recordings, "match_recording_status", AsyncMock(return_value=None))

    async with client_factory() as client:
        response = await client.post(
            "/webhooks/twilio-recording",
            data={"CallSid": "CA404", "RecordingSid": "RE1", "RecordingStatus": "completed"},
        )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_recording_status_schedules_acquisition(client_factory, call_factory, monkeypatch):
    monkeypatch.setattr(
        webhooks.recordings, "match_recording_status", AsyncMock(return_value=call_factory("call-5"))
    )
    schedule = Mock()
    monkeypatch.setattr(webhooks.pipeline, "schedule_acquisition", schedule)

    async with client_factory() as client:
        response = await client.post(
            "/webhooks/twilio-recording",
            data={"CallSid": "CA5", "RecordingSid": "RE5", "RecordingStatus": "completed"},
        )

    assert response.status_code == 200
    schedule.assert_called_once_with("call-5", "RE5")


@pytest.mark.asyncio
async def test_recording_status_skips_recorded_calls(client_factory, call_factory, monkeypatch):
    recorded = call_factory("call-6", recording_key="recordings/call-6.mp3")
    monkeypatch.setattr(webhooks.recordings, "match_recording_status", AsyncMock(return_value=recorded))
    schedule = Mock()
    monkeypatch.setattr(webhooks.pipeline, "schedule_acquisition", schedule)

    async with client_factory() as client:
        response = await client.post(
            "/webhooks/twilio-recording",
            data={"CallSid": "CA6", "RecordingSid": "RE6", "RecordingStatus": "completed"},
        )

    assert response.status_code == 200
    schedule.assert_not_called()
