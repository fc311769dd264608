"""Ticket lookups for the call outcome hook."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.ticket import Ticket


async def get_by_id(session: AsyncSession, ticket_id: str, *, refresh: bool = False) -> Ticket | None:
    """Return a ticket, optionally bypassing the identity map."""

    return await session.get(Ticket, ticket_id, populate_existing=refresh)
