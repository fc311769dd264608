"""Background jobs that advance a call without holding a request open."""
from __future__ import annotations

import asyncio
import logging
from functools import partial

from ..core.config import settings
from ..core.errors import PipelineError
from ..db.session import SessionLocal
from . import enrichment, recordings, telephony
from .dispatcher import dispatcher

logger = logging.getLogger(__name__)


async def enrich_call(call_id: str) -> None:
    """Run the transcript, summary and outcome stages in a fresh session."""

    async with SessionLocal() as session:
        await enrichment.run_chain(session, call_id)


async def acquire_and_enrich(call_id: str, recording_sid: str | None = None) -> None:
    """Fetch the provider recording, then hand off to enrichment."""

    try:
        async with SessionLocal() as session:
            result = await recordings.acquire_provider_recording(session, call_id, recording_sid)
    except PipelineError as exc:
        logger.warning("Recording acquisition for call %s failed, left for the next sweep: %s", call_id, exc)
        return

    if result.uploaded:
        schedule_enrichment(call_id)


async def start_call_recording(call_sid: str) -> None:
    """Ask the telephony provider to record a live outbound call."""

    callback = None
    if settings.webhook_base_url:
        callback = f"{settings.webhook_base_url.rstrip('/')}/webhooks/twilio-recording"
    result = await telephony.get_telephony_client().start_recording(
        call_sid,
        status_callback=callback,
        max_wait_seconds=settings.recording_start_max_wait_seconds,
        poll_seconds=settings.recording_start_poll_seconds,
    )
    if result.started:
        logger.info("Recording %s started for call %s", result.recording_sid, call_sid)
    else:
        logger.warning("Recording not started for call %s: %s", call_sid, result.error)


def schedule_enrichment(call_id: str) -> asyncio.Task[None]:
    return dispatcher.dispatch(f"enrich:{call_id}", partial(enrich_call, call_id))


def schedule_acquisition(call_id: str, recording_sid: str | None) -> asyncio.Task[None]:
    return dispatcher.dispatch(f"acquire:{call_id}", partial(acquire_and_enrich, call_id, recording_sid))


def schedule_recording_start(call_sid: str) -> asyncio.Task[None]:
    return dispatcher.dispatch(f"record:{call_sid}", partial(start_call_recording, call_sid))
