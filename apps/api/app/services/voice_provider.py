"""ElevenLabs conversational agent client used to place outbound calls."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from ..core.config import settings
from ..core.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OutboundCall:
    call_sid: str | None
    conversation_id: str | None = None


class ElevenLabsClient:
    """Place agent-driven phone calls over the provider's Twilio integration."""

    def __init__(
        self,
        api_key: str,
        *,
        agent_id: str = "",
        phone_number_id: str = "",
        base_url: str = "https://api.elevenlabs.io/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.agent_id = agent_id
        self.phone_number_id = phone_number_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self.phone_number_id)

    async def start_outbound_call(
        self,
        *,
        to_number: str,
        dynamic_variables: dict[str, Any],
        agent_id: str | None = None,
    ) -> OutboundCall:
        """Ask the provider to dial ``to_number`` with the given dynamic variables."""

        resolved_agent = agent_id or self.agent_id
        if not self.configured or not resolved_agent:
            raise UpstreamServiceError("voice_provider", "ElevenLabs agent or phone number is not configured")

        body = {
            "agent_id": resolved_agent,
            "agent_phone_number_id": self.phone_number_id,
            "to_number": to_number,
            "conversation_initiation_client_data": {"dynamic_variables": dynamic_variables},
        }
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post(
                    "/convai/twilio/outbound-call",
                    json=body,
                    headers={"xi-api-key": self._api_key},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Outbound call to %s rejected (%s): %s",
                    to_number,
                    exc.response.status_code,
                    exc.response.text[:200],
                )
                raise UpstreamServiceError(
                    "voice_provider", f"HTTP {exc.response.status_code} placing call"
                ) from exc
            except httpx.RequestError as exc:
                raise UpstreamServiceError("voice_provider", f"request failed: {exc}") from exc

        payload = response.json() if response.content else {}
        if isinstance(payload, dict) and payload.get("success") is False:
            raise UpstreamServiceError("voice_provider", str(payload.get("message") or "call was not placed"))
        payload = payload if isinstance(payload, dict) else {}
        return OutboundCall(
            call_sid=payload.get("callSid") or payload.get("call_sid") or payload.get("sid"),
            conversation_id=payload.get("conversation_id"),
        )


@lru_cache
def get_voice_client() -> ElevenLabsClient:
    return ElevenLabsClient(
        settings.elevenlabs_api_key,
        agent_id=settings.elevenlabs_agent_id,
        phone_number_id=settings.elevenlabs_phone_number_id,
        base_url=settings.elevenlabs_api_base,
    )
