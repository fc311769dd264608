"""Recurring sweep that recovers recordings whose webhooks never arrived."""
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import MissingPreconditionError, UpstreamServiceError
from ..db.session import SessionLocal
from ..models.call import CallRecord
from ..repositories import calls as calls_repo
from ..schemas.calls import PollEntry, PollEntryStatus, PollReport
from . import pipeline, recordings, telephony

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


class SweepState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class RecordingPoller:
    """Own the sweep's run state and its periodic loop."""

    def __init__(
        self,
        *,
        interval_seconds: float,
        batch_size: int,
        max_age_hours: float | None = None,
        session_factory: SessionFactory = SessionLocal,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.max_age_hours = max_age_hours
        self._session_factory = session_factory
        self._state = SweepState.IDLE
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SweepState:
        return self._state

    @property
    def running_loop(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> PollReport:
        """Run one sweep, or return a skipped report if one is in flight."""

        # No await between the check and the assignment, so ticks cannot interleave here.
        if self._state is SweepState.RUNNING:
            logger.info("Recording sweep already running; skipping this tick")
            return PollReport(skipped=True)
        self._state = SweepState.RUNNING
        try:
            return await self._sweep()
        finally:
            self._state = SweepState.IDLE

    async def _sweep(self) -> PollReport:
        if not telephony.get_telephony_client().configured:
            return PollReport(error="telephony_not_configured")

        report = PollReport()
        async with self._session_factory() as session:
            async with session.begin():
                candidates = list(
                    await calls_repo.list_missing_recordings(
                        session, limit=self.batch_size, started_after=self._cutoff()
                    )
                )
            for call in candidates:
                report.entries.append(await self._process(session, call))
        report.processed = len(report.entries)

        for entry in report.entries:
            if entry.status is PollEntryStatus.UPLOADED:
                pipeline.schedule_enrichment(entry.call_id)

        uploaded = sum(1 for entry in report.entries if entry.status is PollEntryStatus.UPLOADED)
        logger.info("Recording sweep checked %d calls, uploaded %d", report.processed, uploaded)
        return report

    def _cutoff(self) -> datetime | None:
        if not self.max_age_hours:
            return None
        return datetime.now(timezone.utc) - timedelta(hours=self.max_age_hours)

    async def _process(self, session: AsyncSession, call: CallRecord) -> PollEntry:
        if not call.call_sid:
            return PollEntry(call_id=call.id, status=PollEntryStatus.MISSING_CALL_SID)

        try:
            result = await recordings.acquire_provider_recording(session, call.id)
        except MissingPreconditionError as exc:
            status = (
                PollEntryStatus.NO_RECORDING if exc.reason == "no_recording" else PollEntryStatus.MISSING_CALL_SID
            )
            return PollEntry(call_id=call.id, status=status, error=exc.detail)
        except UpstreamServiceError as exc:
            status = PollEntryStatus.PROVIDER_ERROR if exc.service == "telephony" else PollEntryStatus.FAILED
            return PollEntry(call_id=call.id, status=status, error=exc.detail)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Recording sweep failed for call %s", call.id)
            return PollEntry(call_id=call.id, status=PollEntryStatus.FAILED, error=str(exc))

        if not result.uploaded:
            return PollEntry(
                call_id=call.id, status=PollEntryStatus.ALREADY_RECORDED, recording_key=result.recording_key
            )
        return PollEntry(call_id=call.id, status=PollEntryStatus.UPLOADED, recording_key=result.recording_key)

    def start(self) -> None:
        """Begin sweeping every ``interval_seconds`` on the running loop."""

        if self.running_loop:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="recording-poller")
        logger.info("Recording poller started (every %ss, batch %d)", self.interval_seconds, self.batch_size)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("Recording sweep crashed")


recording_poller = RecordingPoller(
    interval_seconds=settings.recording_poll_interval_seconds,
    batch_size=settings.recording_poll_batch_size,
    max_age_hours=settings.recording_poll_max_age_hours,
)
