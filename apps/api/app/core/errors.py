"""Error taxonomy shared by the recording and enrichment pipeline."""
from __future__ import annotations

from fastapi import status


class PipelineError(Exception):
    """Base class for errors that map onto an API status code."""

    code = "pipeline_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class CallNotFoundError(PipelineError):
    """No call record matched the identifier or event."""

    code = "call_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, call_id: str | None = None) -> None:
        detail = f"Call record {call_id} not found" if call_id else "Call record not found"
        super().__init__(detail)
        self.call_id = call_id


class MissingPreconditionError(PipelineError):
    """A stage was invoked before the data it consumes exists."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.reason


class UpstreamServiceError(PipelineError):
    """A collaborator (blob store, LLM, telephony provider) failed."""

    code = "upstream_failure"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, service: str, detail: str) -> None:
        super().__init__(f"{service}: {detail}")
        self.service = service


class MalformedPayloadError(PipelineError):
    """An inbound payload carried none of the recognised fields."""

    code = "malformed_payload"
    status_code = 422
