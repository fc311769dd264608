"""Schemas for the call record API."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, HttpUrl

from ..models.call import CallChannel, CallStatus, TicketResolution


class Speaker(str, enum.Enum):
    AGENT = "agent"
    USER = "user"


class TranscriptLine(BaseModel):
    speaker: Speaker
    text: str
    time: str = ""


class CallCreateRequest(BaseModel):
    agent_id: str = Field(min_length=1)
    channel: CallChannel = CallChannel.WEB
    metadata: dict[str, Any] = Field(default_factory=dict)
    linked_ticket_id: str | None = None


class CallPatchRequest(BaseModel):
    """Operator-editable fields; anything omitted is left untouched."""

    duration_seconds: int | None = Field(default=None, ge=0)
    end_reason: str | None = None
    ticket_resolved: TicketResolution | None = None
    status: CallStatus | None = None
    transcript: list[TranscriptLine] | None = None
    call_summary: str | None = None
    metadata: dict[str, Any] | None = None
    linked_ticket_id: str | None = None


class CallRecordRead(BaseModel):
    id: str
    agent_id: str
    channel: CallChannel
    status: CallStatus
    started_at: datetime
    duration_seconds: int | None = None
    recording_key: str | None = None
    transcript: list[TranscriptLine] | None = None
    call_summary: str | None = None
    end_reason: str | None = None
    ticket_resolved: TicketResolution | None = None
    linked_ticket_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CallRecordDetail(CallRecordRead):
    recording_playback_url: str | None = None


class CallListItem(BaseModel):
    id: str
    agent_id: str
    channel: CallChannel
    status: CallStatus
    started_at: datetime
    duration_seconds: int | None = None
    has_recording: bool
    end_reason: str | None = None
    ticket_resolved: TicketResolution | None = None


class CallListResponse(BaseModel):
    items: list[CallListItem]


class AttachRecordingRequest(BaseModel):
    source_url: HttpUrl


class RecordingAttachResponse(BaseModel):
    call_id: str
    recording_key: str


class TranscriptResult(BaseModel):
    call_id: str
    transcript: list[TranscriptLine]
    generated: bool = Field(description="False when an existing transcript was returned unchanged.")


class SummaryResult(BaseModel):
    call_id: str
    call_summary: str
    generated: bool


class OutcomeResult(BaseModel):
    call_id: str
    end_reason: str | None = None
    ticket_resolved: TicketResolution | None = None
    persisted: bool = False
    ticket_updated: bool = False


class OutboundCallRequest(BaseModel):
    to_number: str = Field(min_length=3)
    agent_id: str | None = None
    linked_ticket_id: str | None = None
    dynamic_variables: dict[str, Any] = Field(default_factory=dict)


class OutboundCallResponse(BaseModel):
    call_id: str
    call_sid: str | None = None
    recording_requested: bool = False


class PollEntryStatus(str, enum.Enum):
    UPLOADED = "uploaded"
    NO_RECORDING = "no_recording"
    PROVIDER_ERROR = "provider_error"
    MISSING_CALL_SID = "missing_call_sid"
    ALREADY_RECORDED = "already_recorded"
    FAILED = "failed"


class PollEntry(BaseModel):
    call_id: str
    status: PollEntryStatus
    recording_key: str | None = None
    error: str | None = None


class PollReport(BaseModel):
    processed: int = 0
    entries: list[PollEntry] = Field(default_factory=list)
    skipped: bool = False
    error: str | None = None
