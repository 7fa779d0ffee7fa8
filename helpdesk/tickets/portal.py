from __future__ import annotations

from dataclasses import dataclass

from helpdesk.directory.service import ClientService

from .models import Message, Ticket
from .repository import TicketRepository
from .service import TicketNotFoundError, TicketService
from .state import SenderType

SHORT_REFERENCE_LENGTH = 8


@dataclass(slots=True)
class PortalService:
    """Customer-facing ticket access guarded by the client's email address.

    Every mismatch is reported as not found so the portal never reveals
    whether a ticket exists.
    """

    tickets: TicketService
    repository: TicketRepository
    clients: ClientService

    async def lookup(self, reference: str, email: str) -> Ticket:
        reference = (reference or "").strip().lower()
        if len(reference) < SHORT_REFERENCE_LENGTH:
            raise TicketNotFoundError("Ticket not found")
        ticket = await self.repository.get_ticket(reference, with_messages=False)
        if ticket is None:
            matches = await self.repository.find_by_prefix(reference)
            # an ambiguous short reference is treated as unknown
            ticket = matches[0] if len(matches) == 1 else None
        return await self._authorize(ticket, email)

    async def view(self, ticket_id: str, email: str) -> Ticket:
        ticket = await self.repository.get_ticket(ticket_id)
        return await self._authorize(ticket, email)

    async def reply(self, ticket_id: str, email: str, content: str) -> Message:
        ticket = await self._authorize(await self.repository.get_ticket(ticket_id, with_messages=False), email)
        return await self.tickets.post_message(
            ticket.id,
            content=content,
            sender_type=SenderType.CLIENT,
            sender_id=ticket.client_id,
        )

    async def _authorize(self, ticket: Ticket | None, email: str) -> Ticket:
        if ticket is None:
            raise TicketNotFoundError("Ticket not found")
        client = await self.clients.repository.get_client(ticket.client_id)
        if client is None or client.email != (email or "").strip().lower():
            raise TicketNotFoundError("Ticket not found")
        return ticket
