from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Ticket states; agents may move a ticket between any of them."""

    OPEN = "OPEN"
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketChannel(str, Enum):
    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"
    FORM = "FORM"
    CHAT = "CHAT"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class SenderType(str, Enum):
    CLIENT = "CLIENT"
    AGENT = "AGENT"


# Conversations in these states still accept inbound messages on the same ticket.
OPEN_STATES: frozenset[TicketStatus] = frozenset({TicketStatus.OPEN, TicketStatus.PENDING})
