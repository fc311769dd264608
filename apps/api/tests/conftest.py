"""Shared stand-ins for the database session and external collaborators."""
from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.core.errors import UpstreamServiceError
from app.models.call import CallChannel, CallStatus
from app.repositories import calls as calls_repo
from app.services import storage


class DummySession:
    """Minimal session stub supporting async transaction context."""

    def __init__(self) -> None:
        self.added: list[object] = []
        self.transactions = 0

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def begin(self):  # noqa: D401 - mimic SQLAlchemy's async begin
        session = self

        class _Tx:
            async def __aenter__(self_inner):
                session.transactions += 1
                return session

            async def __aexit__(self_inner, exc_type, exc, tb):
                return False

        return _Tx()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class CallStub(SimpleNamespace):
    def __init__(self, call_id: str = "call-1", **overrides: object) -> None:
        fields: dict[str, object] = dict(
            id=call_id,
            agent_id="agent-1",
            channel=CallChannel.PHONE,
            status=CallStatus.ACTIVE,
            started_at=datetime(2025, 10, 10, 12, 0, tzinfo=timezone.utc),
            duration_seconds=None,
            recording_key=None,
            transcript=None,
            call_summary=None,
            end_reason=None,
            ticket_resolved=None,
            linked_ticket_id=None,
            call_metadata={},
            call_sid=None,
        )
        fields.update(overrides)
        super().__init__(**fields)


class FakeBlobStore:
    configured = True

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts: list[tuple[str, bytes, str]] = []

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.puts.append((key, data, content_type))
        self.objects[key] = data
        return key

    async def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise UpstreamServiceError("blob_store", f"{key} not found")
        return self.objects[key]

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://blobs.test/{key}?expires={ttl_seconds}"


@pytest.fixture
def session() -> DummySession:
    return DummySession()


@pytest.fixture
def call_factory():
    return CallStub


@pytest.fixture
def calls_store(monkeypatch) -> dict[str, CallStub]:
    """Back ``calls_repo.get_by_id`` with an in-memory dict."""

    store: dict[str, CallStub] = {}

    async def get_by_id(session, call_id, *, refresh=False):
        return store.get(call_id)

    monkeypatch.setattr(calls_repo, "get_by_id", get_by_id)
    return store


@pytest.fixture
def blob_store(monkeypatch) -> FakeBlobStore:
    store = FakeBlobStore()
    monkeypatch.setattr(storage, "get_blob_store", lambda: store)
    return store
