"""Normalise loosely-shaped provider webhook payloads.

Voice and telephony providers move fields between the top level and a
nested ``data`` envelope and rename them between API versions. Each logical
field is described by an ordered tuple of key paths; the first path that
yields a non-empty value wins. Everything downstream consumes the typed
``InboundCallEvent`` instead of the raw dictionary.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

FieldPath = tuple[str, ...]

_DYNAMIC_VARS = ("conversation_initiation_client_data", "dynamic_variables")

CALL_RECORD_ID_PATHS: tuple[FieldPath, ...] = tuple(
    (*prefix, key)
    for key in ("call_record_id", "chat_id", "chatId")
    for prefix in ((), ("data",))
) + tuple(
    (*prefix, key)
    for prefix in (
        _DYNAMIC_VARS,
        ("data", *_DYNAMIC_VARS),
        ("dynamic_variables",),
        ("data", "dynamic_variables"),
    )
    for key in ("call_record_id", "chat_id")
)

CALLED_NUMBER_PATHS: tuple[FieldPath, ...] = (
    ("called_number",),
    ("calledNumber",),
    ("system__called_number",),
    ("to_number",),
    ("data", "called_number"),
    ("data", "calledNumber"),
    ("data", "to_number"),
    ("data", *_DYNAMIC_VARS, "system__called_number"),
    ("data", "metadata", "phone_call", "external_number"),
)

AUDIO_PATHS: tuple[FieldPath, ...] = (
    ("audio",),
    ("audio_base64",),
    ("recording",),
    ("recording_base64",),
    ("full_audio",),
    ("data", "audio"),
    ("data", "audio_base64"),
    ("data", "full_audio"),
)

TRANSCRIPT_PATHS: tuple[FieldPath, ...] = tuple(
    (*prefix, *path)
    for prefix in (("data",), ())
    for path in (
        ("transcript",),
        ("messages",),
        ("conversation", "transcript"),
        ("conversation", "messages"),
        ("analysis", "transcript"),
    )
)

SUMMARY_PATHS: tuple[FieldPath, ...] = tuple(
    (*prefix, *path)
    for prefix in (("data",), ())
    for path in (
        ("summary",),
        ("call_summary",),
        ("callSummary",),
        ("analysis", "summary"),
        ("analysis", "call_summary"),
        ("analysis", "transcript_summary"),
        ("conversation_summary",),
    )
)

DURATION_PATHS: tuple[FieldPath, ...] = (
    ("call_duration_secs",),
    ("system__call_duration_secs",),
    ("data", "call_duration_secs"),
    ("data", "metadata", "call_duration_secs"),
    ("data", *_DYNAMIC_VARS, "system__call_duration_secs"),
)

UTTERANCE_TEXT_KEYS = ("text", "message", "content", "transcript")
UTTERANCE_ROLE_KEYS = ("role", "speaker", "type")
UTTERANCE_OFFSET_KEYS = ("start", "start_time", "start_s", "offset", "time_in_call_secs")

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class InboundCallEvent:
    """Provider-agnostic view of a post-call webhook."""

    call_record_id: str | None = None
    called_number: str | None = None
    audio_base64: str | None = None
    transcript: list[dict[str, str]] = field(default_factory=list)
    summary: str | None = None
    duration_seconds: int | None = None

    @property
    def has_correlation_key(self) -> bool:
        return bool(self.call_record_id or self.called_number)


@dataclass(slots=True)
class RecordingStatusEvent:
    """Form fields posted by the telephony provider's recording callback."""

    call_sid: str
    recording_sid: str
    status: str

    @property
    def is_completed(self) -> bool:
        return self.status.strip().lower() == "completed"


def dig(payload: Any, path: FieldPath) -> Any:
    """Follow ``path`` through nested mappings, returning None on any miss."""

    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def first_match(payload: Any, paths: Iterable[FieldPath]) -> Any:
    """Return the first non-empty value found along ``paths``."""

    for path in paths:
        value = dig(payload, path)
        if not _is_empty(value):
            return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _as_seconds(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds != seconds or seconds < 0:
        return None
    return seconds


def format_offset(value: Any) -> str:
    """Render a second offset as ``MM:SS``; empty string if not numeric."""

    seconds = _as_seconds(value)
    if seconds is None:
        return ""
    whole = int(seconds)
    return f"{whole // 60:02d}:{whole % 60:02d}"


def normalize_utterance(item: Any) -> dict[str, str] | None:
    """Map one provider transcript item onto ``{speaker, text, time}``."""

    if not isinstance(item, Mapping):
        return None
    text = _as_text(first_match(item, ((key,) for key in UTTERANCE_TEXT_KEYS)))
    if not text:
        return None
    role = _as_text(first_match(item, ((key,) for key in UTTERANCE_ROLE_KEYS))) or ""
    speaker = "user" if role.lower() == "user" else "agent"
    offset = first_match(item, ((key,) for key in UTTERANCE_OFFSET_KEYS))
    return {"speaker": speaker, "text": text, "time": format_offset(offset)}


def normalize_transcript(items: Any) -> list[dict[str, str]]:
    """Normalise a provider message list, dropping empty utterances."""

    if not isinstance(items, list):
        return []
    lines = []
    for item in items:
        line = normalize_utterance(item)
        if line is not None:
            lines.append(line)
    return lines


def normalize_phone_number(raw: str | None, default_country_code: str = "") -> str | None:
    """Strip whitespace and prefix the default country code when no ``+`` is present."""

    if raw is None:
        return None
    number = _WHITESPACE.sub("", str(raw))
    if not number:
        return None
    if not number.startswith("+") and default_country_code:
        number = f"{default_country_code}{number}"
    return number


def _transcript_items(payload: Any) -> Any:
    items = first_match(payload, TRANSCRIPT_PATHS)
    if items is None:
        data = dig(payload, ("data",))
        if isinstance(data, list):
            return data
    return items


def parse_call_event(payload: Any, *, default_country_code: str = "") -> InboundCallEvent:
    """Build the normalised event for a post-call webhook body."""

    if not isinstance(payload, Mapping):
        return InboundCallEvent()

    duration = _as_seconds(first_match(payload, DURATION_PATHS))
    audio = first_match(payload, AUDIO_PATHS)
    return InboundCallEvent(
        call_record_id=_as_text(first_match(payload, CALL_RECORD_ID_PATHS)),
        called_number=normalize_phone_number(
            _as_text(first_match(payload, CALLED_NUMBER_PATHS)), default_country_code
        ),
        audio_base64=audio if isinstance(audio, str) else None,
        transcript=normalize_transcript(_transcript_items(payload)),
        summary=_as_text(first_match(payload, SUMMARY_PATHS)),
        duration_seconds=int(round(duration)) if duration is not None else None,
    )
