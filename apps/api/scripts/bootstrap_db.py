"""Create the database schema and a demo ticket for development."""
from __future__ import annotations

import asyncio

from app.db.session import SessionLocal, engine
from app.models.base import Base
from app.models.ticket import Ticket, TicketStatus

DEMO_TICKETS = [
	{
		"id": "ticket-demo-001",
		"subject": "Refund for a double-charged order has not arrived",
	},
	{
		"id": "ticket-demo-002",
		"subject": "Delivery address could not be updated in the app",
	},
]


async def create_schema() -> None:
	"""Create the database schema if it does not already exist."""

	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)


async def seed_tickets() -> None:
	"""Insert open demo tickets that outbound calls can be linked to."""

	async with SessionLocal() as session:
		async with session.begin():
			for ticket_data in DEMO_TICKETS:
				ticket = await session.get(Ticket, ticket_data["id"])
				if ticket is None:
					session.add(
						Ticket(
							id=ticket_data["id"],
							subject=ticket_data["subject"],
							status=TicketStatus.OPEN,
						)
					)


async def main() -> None:
	await create_schema()
	await seed_tickets()
	print("Database schema ensured and demo tickets seeded.")


if __name__ == "__main__":
	asyncio.run(main())
