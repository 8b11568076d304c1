from classbook.db.models.base import Base
from classbook.db.models.bookings import Booking
from classbook.db.models.class_templates import ClassTemplate, TicketClassLink
from classbook.db.models.session_instances import SessionInstance
from classbook.db.models.ticket_ledger_entries import TicketLedgerEntry
from classbook.db.models.tickets import Ticket
from classbook.db.models.user_tickets import UserTicket

__all__ = [
    "Base",
    "Booking",
    "ClassTemplate",
    "SessionInstance",
    "Ticket",
    "TicketClassLink",
    "TicketLedgerEntry",
    "UserTicket",
]
