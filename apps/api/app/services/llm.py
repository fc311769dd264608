"""Gemini helpers for call summaries and outcome extraction."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, Mapping

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from ..core.config import settings

SUMMARY_PROMPT = (
    "You are reviewing a customer support phone call between a support agent and a customer. "
    "Write a short summary of 2 to 4 sentences covering why the customer called, what was "
    "discussed, and how the call ended. Use plain prose without bullet points."
)

OUTCOME_PROMPT = (
    "You are given the summary of a customer support call. Reply with a JSON object only, "
    'shaped exactly as {"endReason": "<short phrase>", "ticketResolved": "yes" | "no"}. '
    "endReason is a short phrase (at most eight words) describing why or how the call ended; "
    'use "unset" if the summary gives no discernible reason. ticketResolved is "yes" only if '
    'the customer confirmed their issue is resolved, otherwise "no".'
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

logger = logging.getLogger(__name__)


class LLMUnavailableError(RuntimeError):
    """Raised when no configured Gemini models are available."""


class OutcomeParseError(ValueError):
    """Raised when the model reply does not carry both outcome fields."""


@dataclass(slots=True)
class OutcomeExtraction:
    end_reason: str
    ticket_resolved: str


def _has_api_key() -> bool:
    return bool(settings.gemini_api_key.strip())


@lru_cache
def _configured_api() -> bool:
    """Configure the Google Generative AI client once."""

    if not _has_api_key():
        raise RuntimeError("GEMINI_API_KEY is missing")

    genai.configure(api_key=settings.gemini_api_key)
    return True


_model_cache: Dict[str, genai.GenerativeModel] = {}


def _get_model(name: str) -> genai.GenerativeModel:
    """Return a cached Gemini model instance."""

    _configured_api()
    model_name = name.strip()
    if not model_name:
        raise RuntimeError("Gemini model name was empty")

    if model_name not in _model_cache:
        _model_cache[model_name] = genai.GenerativeModel(model_name)
    return _model_cache[model_name]


def _candidate_models() -> list[str]:
    candidates: list[str] = []
    seen: set[str] = set()
    for candidate in (settings.gemini_model, *settings.gemini_model_fallbacks):
        if candidate and candidate not in seen:
            candidates.append(candidate)
            seen.add(candidate)
    return candidates


async def _generate(prompt: str, *, generation_config: dict[str, Any] | None = None) -> str:
    """Run ``prompt`` against the first Gemini model that answers."""

    if not _has_api_key():
        raise LLMUnavailableError("GEMINI_API_KEY is missing")

    loop = asyncio.get_running_loop()
    last_error: Exception | None = None

    for model_name in _candidate_models():
        def _run_inference(current_model: str = model_name) -> str:
            response = _get_model(current_model).generate_content(
                prompt, generation_config=generation_config
            )
            text = getattr(response, "text", "") or ""
            return text.strip()

        try:
            result = await loop.run_in_executor(None, _run_inference)
            if result:
                return result
            logger.warning("Gemini model %s returned an empty reply", model_name)
        except google_exceptions.NotFound as exc:
            logger.warning("Gemini model %s not available: %s", model_name, exc)
            _model_cache.pop(model_name, None)
            last_error = exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Gemini generate_content failed for %s", model_name)
            last_error = exc

    raise LLMUnavailableError("No Gemini models responded") from last_error


def format_transcript(lines: Iterable[Mapping[str, Any]]) -> str:
    """Render transcript lines as ``Customer:``/``Agent:`` prefixed text."""

    rendered = []
    for line in lines:
        text = str(line.get("text") or "").strip()
        if not text:
            continue
        label = "Customer" if line.get("speaker") == "user" else "Agent"
        rendered.append(f"{label}: {text}")
    return "\n".join(rendered)


async def summarize_transcript(lines: Iterable[Mapping[str, Any]]) -> str:
    """Return a short natural-language summary of the conversation."""

    conversation = format_transcript(lines)
    if not conversation:
        raise ValueError("Transcript has no text to summarise")
    return await _generate(f"{SUMMARY_PROMPT}\n\nTranscript:\n{conversation}\n\nSummary:")


def parse_outcome(reply: str) -> OutcomeExtraction:
    """Parse the model's JSON reply into an end reason and resolved flag."""

    cleaned = _CODE_FENCE.sub("", reply.strip()).strip()
    match = _JSON_OBJECT.search(cleaned)
    if match is None:
        raise OutcomeParseError(f"No JSON object in reply: {reply[:120]!r}")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise OutcomeParseError(f"Invalid JSON in reply: {exc}") from exc
    if not isinstance(data, dict) or "endReason" not in data or "ticketResolved" not in data:
        raise OutcomeParseError("Reply is missing endReason or ticketResolved")

    end_reason = str(data.get("endReason") or "").strip() or "unset"
    flag = str(data.get("ticketResolved") or "").strip().lower()
    if flag not in {"yes", "no"}:
        raise OutcomeParseError(f"ticketResolved must be yes or no, got {data.get('ticketResolved')!r}")
    return OutcomeExtraction(end_reason=end_reason, ticket_resolved=flag)


async def extract_outcome(summary: str) -> OutcomeExtraction:
    """Ask Gemini why the call ended and whether the ticket was resolved."""

    if not summary.strip():
        raise ValueError("Summary is empty")
    reply = await _generate(
        f"{OUTCOME_PROMPT}\n\nCall summary:\n{summary.strip()}",
        generation_config={"response_mime_type": "application/json", "temperature": 0},
    )
    return parse_outcome(reply)
