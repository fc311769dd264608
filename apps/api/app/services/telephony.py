"""Twilio REST helpers for call recordings."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import Any

import httpx

from ..core.config import settings
from ..core.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

CALL_IN_PROGRESS = "in-progress"
TERMINAL_CALL_STATES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})


@dataclass(slots=True)
class DownloadedAudio:
    content: bytes
    content_type: str

    @property
    def ext(self) -> str:
        return "wav" if "wav" in self.content_type.lower() else "mp3"


@dataclass(slots=True)
class ProviderRecording:
    sid: str | None
    date_created: datetime | None = None


@dataclass(slots=True)
class RecordingStartResult:
    started: bool
    recording_sid: str | None = None
    error: str | None = None


def _parse_date(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def latest_recording(recordings: list[ProviderRecording]) -> ProviderRecording | None:
    """Pick the most recently created recording."""

    if not recordings:
        return None
    dated = [item for item in recordings if item.date_created is not None]
    if not dated:
        return recordings[0]
    return max(dated, key=lambda item: item.date_created)


class TwilioClient:
    """Async client for the subset of the Twilio API the pipeline needs."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        *,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.account_sid = account_sid
        self._auth_token = auth_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self._auth_token)

    def _account_path(self, suffix: str) -> str:
        return f"/Accounts/{self.account_sid}/{suffix.lstrip('/')}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self.configured:
            raise UpstreamServiceError("telephony", "Twilio credentials are not configured")

        async with httpx.AsyncClient(
            base_url=self._base_url,
            auth=(self.account_sid, self._auth_token),
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Twilio %s %s returned %s: %s",
                    method,
                    path,
                    exc.response.status_code,
                    exc.response.text[:200],
                )
                raise UpstreamServiceError(
                    "telephony", f"HTTP {exc.response.status_code} for {path}"
                ) from exc
            except httpx.RequestError as exc:
                logger.warning("Twilio %s %s failed: %s", method, path, exc)
                raise UpstreamServiceError("telephony", f"request to {path} failed: {exc}") from exc
        return response

    async def list_recordings(self, call_sid: str) -> list[ProviderRecording]:
        """Return every recording the provider holds for ``call_sid``."""

        response = await self._request(
            "GET", self._account_path("Recordings.json"), params={"CallSid": call_sid}
        )
        payload = response.json()
        items = payload.get("recordings") if isinstance(payload, dict) else None
        recordings = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            recordings.append(
                ProviderRecording(
                    sid=item.get("sid") or item.get("Sid"),
                    date_created=_parse_date(item.get("date_created")),
                )
            )
        return recordings

    async def download_recording(self, recording_sid: str) -> DownloadedAudio:
        """Download a recording's MP3 rendition."""

        response = await self._request("GET", self._account_path(f"Recordings/{recording_sid}.mp3"))
        if not response.content:
            raise UpstreamServiceError("telephony", f"recording {recording_sid} was empty")
        return DownloadedAudio(
            content=response.content,
            content_type=response.headers.get("content-type", "audio/mpeg"),
        )

    async def fetch_call_status(self, call_sid: str) -> str:
        response = await self._request("GET", self._account_path(f"Calls/{call_sid}.json"))
        payload = response.json()
        return str(payload.get("status") or "").lower()

    async def start_recording(
        self,
        call_sid: str,
        *,
        status_callback: str | None = None,
        max_wait_seconds: float = 20.0,
        poll_seconds: float = 1.0,
    ) -> RecordingStartResult:
        """Start recording a live call once it is in progress.

        Never raises for provider-side problems: the call may end, never be
        answered, or stay ringing past ``max_wait_seconds``.
        """

        if not call_sid or not call_sid.startswith("CA"):
            return RecordingStartResult(started=False, error="invalid_call_sid")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait_seconds

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return RecordingStartResult(started=False, error="timeout_waiting_for_in_progress")
            try:
                call_status = await asyncio.wait_for(self.fetch_call_status(call_sid), timeout=remaining)
            except asyncio.TimeoutError:
                return RecordingStartResult(started=False, error="timeout_waiting_for_in_progress")
            except UpstreamServiceError as exc:
                return RecordingStartResult(started=False, error=exc.detail)

            if call_status == CALL_IN_PROGRESS:
                break
            if call_status in TERMINAL_CALL_STATES:
                logger.info("Call %s reached %s before recording could start", call_sid, call_status)
                return RecordingStartResult(started=False, error=f"call_{call_status}")
            await asyncio.sleep(min(poll_seconds, max(0.0, deadline - loop.time())))

        form = {"RecordingChannels": "mono", "Trim": "do-not-trim"}
        if status_callback:
            form.update(
                {
                    "RecordingStatusCallback": status_callback,
                    "RecordingStatusCallbackEvent": "completed",
                    "RecordingStatusCallbackMethod": "POST",
                }
            )

        try:
            response = await asyncio.wait_for(
                self._request("POST", self._account_path(f"Calls/{call_sid}/Recordings.json"), data=form),
                timeout=max(self._timeout, deadline - loop.time()),
            )
        except asyncio.TimeoutError:
            return RecordingStartResult(started=False, error="timeout_creating_recording")
        except UpstreamServiceError as exc:
            return RecordingStartResult(started=False, error=exc.detail)

        payload = response.json()
        recording_sid = payload.get("sid") if isinstance(payload, dict) else None
        logger.info("Started recording %s for call %s", recording_sid, call_sid)
        return RecordingStartResult(started=True, recording_sid=recording_sid)


async def download_from_url(
    url: str,
    *,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DownloadedAudio:
    """Fetch audio from an arbitrary URL, following redirects."""

    async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamServiceError(
                "recording_source", f"HTTP {exc.response.status_code} from {url}"
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamServiceError("recording_source", f"download from {url} failed: {exc}") from exc

    if not response.content:
        raise UpstreamServiceError("recording_source", f"{url} returned no audio")
    return DownloadedAudio(
        content=response.content,
        content_type=response.headers.get("content-type", "audio/mpeg"),
    )


@lru_cache
def get_telephony_client() -> TwilioClient:
    """Return the process-wide Twilio client built from settings."""

    return TwilioClient(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        base_url=settings.twilio_api_base,
        timeout=settings.twilio_timeout_seconds,
    )
