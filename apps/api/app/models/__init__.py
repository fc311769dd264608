"""Expose ORM models."""
from .call import CallChannel, CallRecord, CallStatus, TicketResolution
from .ticket import Ticket, TicketStatus

__all__ = [
    "CallChannel",
    "CallRecord",
    "CallStatus",
    "Ticket",
    "TicketResolution",
    "TicketStatus",
]
