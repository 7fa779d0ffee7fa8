from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from helpdesk.integrations.base import DeliveryStatus

from .state import SenderType, TicketChannel, TicketPriority, TicketStatus


@dataclass(slots=True)
class Message:
    """Single entry in a ticket thread."""

    id: str
    ticket_id: str
    sender_type: SenderType
    sender_id: str | None
    content: str
    read: bool
    timestamp: datetime
    external_id: str | None = None
    delivery_status: DeliveryStatus | None = None


@dataclass(slots=True)
class Ticket:
    """Support conversation bound to one client and one channel."""

    id: str
    subject: str
    description: str | None
    client_id: str
    agent_id: str | None
    channel: TicketChannel
    status: TicketStatus
    priority: TicketPriority
    unread: bool
    session_id: str | None
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = field(default_factory=list)


@dataclass(slots=True)
class TicketListFilters:
    channel: TicketChannel | None = None
    status: TicketStatus | None = None
    agent_id: str | None = None
    client_id: str | None = None
    unread: bool | None = None
    page: int = 1
    limit: int = 20
