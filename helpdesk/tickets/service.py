from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from helpdesk.core.errors import NotFoundError, ValidationFailedError
from helpdesk.db.pagination import Page
from helpdesk.db.session import utcnow
from helpdesk.directory.service import AgentService, ClientService
from helpdesk.integrations.base import DeliveryResult, DeliveryStatus, EmailSender, MessagingSender

from .models import Message, Ticket, TicketListFilters
from .repository import TicketRepository
from .state import SenderType, TicketChannel, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)


class TicketNotFoundError(NotFoundError):
    """Raised when a ticket could not be located."""


class MessageNotFoundError(NotFoundError):
    """Raised when a message does not exist on the ticket."""


class EmptyMessageError(ValidationFailedError):
    """Raised when posting a message without content."""


@dataclass(slots=True)
class TicketService:
    """Ticket threads, unread bookkeeping and outbound delivery."""

    repository: TicketRepository
    clients: ClientService
    agents: AgentService
    messaging: MessagingSender | None = None
    email: EmailSender | None = None

    async def create_ticket(
        self,
        *,
        subject: str,
        client_id: str | None,
        channel: TicketChannel,
        priority: TicketPriority = TicketPriority.MEDIUM,
        agent_id: str | None = None,
        description: str | None = None,
        initial_message: str | None = None,
        session_id: str | None = None,
    ) -> Ticket:
        subject = (subject or "").strip()
        if not subject or not client_id:
            raise ValidationFailedError("Subject, client and channel are required")
        await self.clients.get_client(client_id)
        if agent_id:
            await self.agents.get_agent(agent_id)

        now = utcnow()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            subject=subject[:255],
            description=description,
            client_id=client_id,
            agent_id=agent_id,
            channel=channel,
            status=TicketStatus.OPEN,
            priority=priority,
            unread=bool(initial_message),
            session_id=session_id,
            created_at=now,
            updated_at=now,
        )
        message = None
        if initial_message:
            message = Message(
                id=str(uuid.uuid4()),
                ticket_id=ticket.id,
                sender_type=SenderType.CLIENT,
                sender_id=client_id,
                content=initial_message,
                read=False,
                timestamp=now,
            )
            ticket.messages = [message]
        await self.repository.create_ticket(ticket, message)
        logger.info("Opened %s ticket %s for client %s", channel.value, ticket.id, client_id)
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self.repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(self, filters: TicketListFilters) -> Page[Ticket]:
        return await self.repository.list_tickets(filters)

    async def update_ticket(self, ticket_id: str, **changes: Any) -> Ticket:
        await self.get_ticket(ticket_id)
        if "subject" in changes and not (changes["subject"] or "").strip():
            raise ValidationFailedError("Subject cannot be empty")
        if changes.get("agent_id"):
            await self.agents.get_agent(changes["agent_id"])
        updated = await self.repository.update_ticket(ticket_id, changes=changes, now=utcnow())
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return updated

    async def delete_ticket(self, ticket_id: str) -> None:
        if not await self.repository.delete_ticket(ticket_id):
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

    async def list_messages(self, ticket_id: str) -> list[Message]:
        await self.get_ticket(ticket_id)
        return await self.repository.list_messages(ticket_id)

    async def post_message(
        self,
        ticket_id: str,
        *,
        content: str,
        sender_type: SenderType = SenderType.AGENT,
        sender_id: str | None = None,
        external_id: str | None = None,
        deliver: bool = True,
    ) -> Message:
        """Persist a message, then hand AGENT replies to the channel's sender.

        Delivery failures are recorded on the message and never undo the write.
        """

        content = (content or "").strip()
        if not content:
            raise EmptyMessageError("Message content is required")
        ticket = await self.repository.get_ticket(ticket_id, with_messages=False)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

        now = utcnow()
        message = Message(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            sender_type=sender_type,
            sender_id=sender_id,
            content=content,
            read=sender_type == SenderType.AGENT,
            timestamp=now,
            external_id=external_id,
        )
        if await self.repository.add_message(message, now=now) is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

        if deliver and sender_type == SenderType.AGENT:
            result = await self._deliver(ticket, content)
            if result is not None:
                message.delivery_status = result.status
                message.external_id = result.message_id
                await self.repository.set_delivery(message.id, status=result.status, external_id=result.message_id)
        return message

    async def mark_message_read(self, ticket_id: str, message_id: str) -> Message:
        message = await self.repository.mark_message_read(ticket_id, message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found on ticket {ticket_id}")
        return message

    async def mark_all_read(self, ticket_id: str) -> int:
        await self.get_ticket(ticket_id)
        return await self.repository.mark_all_read(ticket_id)

    async def record_delivery_status(self, external_id: str, status: DeliveryStatus) -> bool:
        return await self.repository.update_delivery_by_external_id(external_id, status)

    async def _deliver(self, ticket: Ticket, content: str) -> DeliveryResult | None:
        if ticket.channel == TicketChannel.WHATSAPP and self.messaging is not None:
            client = await self.clients.get_client(ticket.client_id)
            recipient = client.whatsapp_id or client.phone
            if not recipient:
                return None
            sender, send = "whatsapp", lambda: self.messaging.send_text(recipient, content)
        elif ticket.channel == TicketChannel.EMAIL and self.email is not None:
            client = await self.clients.get_client(ticket.client_id)
            subject = ticket.subject if ticket.subject.lower().startswith("re:") else f"Re: {ticket.subject}"
            sender, send = "email", lambda: self.email.send_email(client.email, subject, content)
        else:
            return None

        try:
            result = await send()
        except Exception as exc:  # noqa: BLE001 - delivery is best effort
            logger.error("Delivering ticket %s reply via %s failed: %s", ticket.id, sender, exc)
            return DeliveryResult(success=False, error=str(exc))
        if not result.success:
            logger.warning("Provider rejected ticket %s reply via %s: %s", ticket.id, sender, result.error)
        return result
