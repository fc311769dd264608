"""Schemas for provider webhook acknowledgements."""
from __future__ import annotations

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Body returned to providers; always sent with HTTP 200."""

    ok: bool
    reason: str | None = None
    call_id: str | None = None


class TranscriptionAck(WebhookAck):
    transcript_length: int = 0
    saved: bool = False
