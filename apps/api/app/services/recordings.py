"""Recording acquisition from webhooks, provider fetches and manual uploads.

Every producer writes to the same deterministic key for a call, so a late
or duplicate producer overwrites equivalent bytes instead of creating a
second artifact. Producers still short-circuit once ``recording_key`` is
set to avoid redundant provider calls.
"""
from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import CallNotFoundError, MissingPreconditionError, UpstreamServiceError
from ..models.call import CallRecord, CallStatus
from ..repositories import calls as calls_repo
from ..schemas import calls as schemas
from ..schemas.webhooks import WebhookAck
from . import correlation, payloads, storage, telephony
from .correlation import ResolveMode

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AcquisitionResult:
    call_id: str
    recording_key: str | None
    uploaded: bool


def audio_format(data: bytes) -> tuple[str, str]:
    """Return ``(ext, content_type)`` sniffed from the audio header."""

    if data[:4] == b"RIFF":
        return "wav", "audio/wav"
    return "mp3", "audio/mpeg"


def _decode_audio(encoded: str) -> bytes:
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    return base64.b64decode(encoded)


async def _upload(
    session: AsyncSession,
    call: CallRecord,
    audio: bytes,
    ext: str,
    content_type: str,
) -> tuple[str, bool]:
    """Put ``audio`` under the call's key; return ``(key, uploaded)``.

    The record is re-read first so a producer that lost a race reuses the
    winner's key. Audio in a different format than the stored recording is
    not written.
    """

    async with session.begin():
        fresh = await calls_repo.get_by_id(session, call.id, refresh=True)
    existing = fresh.recording_key if fresh is not None else call.recording_key
    if existing and existing != storage.recording_key(call.id, ext):
        logger.info("Call %s already stored as %s; skipping %s upload", call.id, existing, ext)
        return existing, False

    key = existing or storage.recording_key(call.id, ext)
    await storage.get_blob_store().put(key, audio, content_type)
    return key, True


async def _store_recording(
    session: AsyncSession,
    call_id: str,
    key: str,
    *,
    duration_seconds: int | None = None,
) -> CallRecord:
    """Point the call at its stored recording and mark it completed."""

    async with session.begin():
        call = await calls_repo.get_by_id(session, call_id, refresh=True)
        if call is None:
            raise CallNotFoundError(call_id)
        if call.recording_key and call.recording_key != key:
            logger.warning(
                "Call %s already references %s; not replacing it with %s",
                call_id,
                call.recording_key,
                key,
            )
        else:
            call.recording_key = key
        call.status = CallStatus.COMPLETED
        if duration_seconds is not None:
            call.duration_seconds = duration_seconds
        session.add(call)
    return call


async def ingest_post_call_audio(session: AsyncSession, payload: Any) -> WebhookAck:
    """Store inline base64 audio posted by the voice provider after a call."""

    event = payloads.parse_call_event(payload, default_country_code=settings.phone_default_country_code)
    if not event.audio_base64:
        logger.info("Post-call audio webhook carried no audio field")
        return WebhookAck(ok=False, reason="no_audio")
    if not event.has_correlation_key:
        logger.info("Post-call audio webhook carried no call reference")
        return WebhookAck(ok=False, reason="malformed_payload")

    async with session.begin():
        call = await correlation.resolve(session, event, ResolveMode.RECORDING)
    if call is None:
        logger.warning(
            "No call matched post-call audio (call_record_id=%s, called_number=%s)",
            event.call_record_id,
            event.called_number,
        )
        return WebhookAck(ok=False, reason="no_call")
    if call.recording_key:
        logger.info("Call %s already has recording %s; ignoring audio", call.id, call.recording_key)
        return WebhookAck(ok=True, reason="already_recorded", call_id=call.id)

    try:
        audio = _decode_audio(event.audio_base64)
    except (binascii.Error, ValueError):
        logger.warning("Post-call audio for call %s was not valid base64", call.id)
        return WebhookAck(ok=False, reason="invalid_audio", call_id=call.id)
    if not audio:
        return WebhookAck(ok=False, reason="empty_audio", call_id=call.id)

    ext, content_type = audio_format(audio)
    try:
        key, _ = await _upload(session, call, audio, ext, content_type)
    except UpstreamServiceError as exc:
        logger.warning("Could not store audio for call %s: %s", call.id, exc)
        return WebhookAck(ok=False, reason="upload_failed", call_id=call.id)

    await _store_recording(session, call.id, key, duration_seconds=event.duration_seconds)
    logger.info("Stored post-call audio for call %s at %s", call.id, key)
    return WebhookAck(ok=True, call_id=call.id)


async def match_recording_status(
    session: AsyncSession,
    event: payloads.RecordingStatusEvent,
) -> CallRecord | None:
    """Find the call a recording-status callback refers to."""

    async with session.begin():
        return await correlation.resolve_by_call_sid(session, event.call_sid)


async def acquire_provider_recording(
    session: AsyncSession,
    call_id: str,
    recording_sid: str | None = None,
) -> AcquisitionResult:
    """Download a call's recording from the telephony provider and store it.

    Without ``recording_sid`` the provider is asked for the call's newest
    recording first.
    """

    async with session.begin():
        call = await calls_repo.get_by_id(session, call_id, refresh=True)
    if call is None:
        raise CallNotFoundError(call_id)
    if call.recording_key:
        return AcquisitionResult(call_id=call.id, recording_key=call.recording_key, uploaded=False)

    client = telephony.get_telephony_client()
    if recording_sid is None:
        call_sid = call.call_sid
        if not call_sid:
            raise MissingPreconditionError("no_call_sid", f"Call {call.id} has no provider call sid")
        recording = telephony.latest_recording(await client.list_recordings(call_sid))
        if recording is None:
            raise MissingPreconditionError("no_recording", f"Provider has no recording for {call_sid} yet")
        if not recording.sid:
            raise UpstreamServiceError("telephony", f"recording listed for {call_sid} has no sid")
        recording_sid = recording.sid

    audio = await client.download_recording(recording_sid)
    key, uploaded = await _upload(session, call, audio.content, audio.ext, audio.content_type)
    stored = await _store_recording(session, call.id, key)
    if uploaded:
        logger.info("Stored provider recording %s for call %s at %s", recording_sid, call.id, key)
    return AcquisitionResult(call_id=call.id, recording_key=stored.recording_key, uploaded=uploaded)


async def attach_recording_from_url(
    session: AsyncSession,
    call_id: str,
    source_url: str,
) -> schemas.RecordingAttachResponse:
    """Download audio from ``source_url`` and store it as the call's recording."""

    async with session.begin():
        call = await calls_repo.get_by_id(session, call_id)
    if call is None:
        raise CallNotFoundError(call_id)
    return await _attach(session, call, source_url)


async def attach_recording_by_call_sid(
    session: AsyncSession,
    call_sid: str,
    source_url: str,
) -> schemas.RecordingAttachResponse:
    """Same as ``attach_recording_from_url`` but keyed by provider call sid."""

    async with session.begin():
        call = await correlation.resolve_by_call_sid(session, call_sid)
    if call is None:
        raise CallNotFoundError(call_sid)
    return await _attach(session, call, source_url)


async def _attach(session: AsyncSession, call: CallRecord, source_url: str) -> schemas.RecordingAttachResponse:
    audio = await telephony.download_from_url(source_url)
    key, _ = await _upload(session, call, audio.content, audio.ext, audio.content_type)
    stored = await _store_recording(session, call.id, key)
    return schemas.RecordingAttachResponse(call_id=stored.id, recording_key=stored.recording_key or key)
