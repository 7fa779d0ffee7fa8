"""Public intake channels: web form, live chat, WhatsApp and inbound email.

Each entry point resolves (or creates) the client, reuses the conversation's
open ticket where the channel threads messages, and appends a CLIENT message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from helpdesk.core.errors import ValidationFailedError
from helpdesk.core.logging import mask_email
from helpdesk.directory.models import Client
from helpdesk.directory.service import ClientService
from helpdesk.integrations.base import DeliveryStatus

from .models import Ticket
from .repository import TicketRepository
from .service import TicketService
from .state import SenderType, TicketChannel, TicketPriority

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_REPLY_PREFIX = re.compile(r"^((re|fw|fwd|aw|sv|vs)\s*:\s*)+", re.IGNORECASE)

WHATSAPP_OBJECT = "whatsapp_business_account"
CHAT_EMAIL_DOMAIN = "visitor.local"
WHATSAPP_EMAIL_DOMAIN = "whatsapp.local"

_MEDIA_PLACEHOLDERS = {
    "image": "[Image received]",
    "video": "[Video received]",
}

_WHATSAPP_STATUS = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
}


@dataclass(slots=True)
class FormSubmission:
    name: str
    email: str
    message: str
    phone: str | None = None
    company: str | None = None
    service: str | None = None
    subject: str | None = None


@dataclass(slots=True)
class ChatMessage:
    session_id: str
    content: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(slots=True)
class InboundEmail:
    sender: str
    subject: str
    body: str
    sender_name: str | None = None
    message_id: str | None = None


@dataclass(slots=True)
class IntakeResult:
    ticket: Ticket
    client: Client
    created_ticket: bool
    created_client: bool


@dataclass(slots=True)
class WhatsAppBatchResult:
    messages: int = 0
    duplicates: int = 0
    statuses: int = 0
    tickets: list[str] = field(default_factory=list)


def clean_subject(subject: str | None) -> str:
    return _REPLY_PREFIX.sub("", subject or "").strip()


def format_form_message(submission: FormSubmission) -> str:
    lines = [
        f"Name: {submission.name}",
        f"Email: {submission.email}",
    ]
    if submission.phone:
        lines.append(f"Phone: {submission.phone}")
    if submission.company:
        lines.append(f"Company: {submission.company}")
    if submission.service:
        lines.append(f"Service: {submission.service}")
    lines.extend(["", submission.message.strip()])
    return "\n".join(lines)


def whatsapp_message_content(message: Mapping[str, Any]) -> str:
    """Render an inbound WhatsApp message of any type as thread text."""

    kind = message.get("type", "unknown")
    payload = message.get(kind) or {}
    if kind == "text":
        return payload.get("body", "")
    if kind in _MEDIA_PLACEHOLDERS:
        return payload.get("caption") or _MEDIA_PLACEHOLDERS[kind]
    if kind == "document":
        return payload.get("caption") or f"[Document: {payload.get('filename', 'file')}]"
    if kind == "audio":
        return "[Voice message received]"
    if kind == "location":
        return f"[Location: {payload.get('latitude')}, {payload.get('longitude')}]"
    if kind == "contacts":
        return "[Contact shared]"
    if kind == "button":
        return payload.get("text") or "[Button clicked]"
    if kind == "interactive":
        reply = payload.get("button_reply") or payload.get("list_reply") or {}
        return reply.get("title") or "[Interactive response]"
    return f"[{kind} message]"


@dataclass(slots=True)
class IntakeService:
    tickets: TicketService
    repository: TicketRepository
    clients: ClientService

    async def submit_form(self, submission: FormSubmission) -> IntakeResult:
        name = (submission.name or "").strip()
        email = (submission.email or "").strip().lower()
        if not name or not email or not (submission.message or "").strip():
            raise ValidationFailedError("Name, email and message are required")
        if not EMAIL_PATTERN.match(email):
            raise ValidationFailedError("Invalid email address")

        client, created_client = await self.clients.find_or_create(
            name=name,
            email=email,
            phone=submission.phone,
            company=submission.company,
        )
        if submission.subject:
            subject = submission.subject.strip()
        elif submission.service:
            subject = f"{submission.service} Enquiry from {name}"
        else:
            subject = f"Contact Form Enquiry from {name}"

        ticket = await self.tickets.create_ticket(
            subject=subject,
            client_id=client.id,
            channel=TicketChannel.FORM,
            priority=TicketPriority.MEDIUM,
            initial_message=format_form_message(submission),
        )
        return IntakeResult(ticket=ticket, client=client, created_ticket=True, created_client=created_client)

    async def receive_chat(self, chat: ChatMessage) -> IntakeResult:
        session_id = (chat.session_id or "").strip()
        content = (chat.content or "").strip()
        if not session_id or not content:
            raise ValidationFailedError("Session ID and message are required")
        if chat.email and not EMAIL_PATTERN.match(chat.email.strip()):
            raise ValidationFailedError("Invalid email address")

        ticket = await self.repository.find_open_ticket(channel=TicketChannel.CHAT, session_id=session_id)
        created_client = False
        if ticket is None:
            email = (chat.email or f"chat_{session_id}@{CHAT_EMAIL_DOMAIN}").strip().lower()
            client, created_client = await self.clients.find_or_create(
                name=chat.name or "Website Visitor",
                email=email,
                phone=chat.phone,
            )
            ticket = await self.tickets.create_ticket(
                subject=f"Live Chat [{session_id}]",
                client_id=client.id,
                channel=TicketChannel.CHAT,
                session_id=session_id,
                initial_message=content,
            )
            return IntakeResult(ticket=ticket, client=client, created_ticket=True, created_client=created_client)

        client = await self.clients.get_client(ticket.client_id)
        await self.tickets.post_message(
            ticket.id,
            content=content,
            sender_type=SenderType.CLIENT,
            sender_id=client.id,
        )
        return IntakeResult(ticket=ticket, client=client, created_ticket=False, created_client=False)

    async def receive_whatsapp(self, payload: Mapping[str, Any]) -> WhatsAppBatchResult:
        """Process a WhatsApp Business webhook payload.

        Message and status entries are handled independently; one bad entry is
        logged and skipped so the provider still receives a 200.
        """

        result = WhatsAppBatchResult()
        if payload.get("object") != WHATSAPP_OBJECT:
            logger.info("Ignoring webhook for object %r", payload.get("object"))
            return result

        for value in _whatsapp_values(payload):
            contacts = {contact.get("wa_id"): contact for contact in value.get("contacts") or []}
            for message in value.get("messages") or []:
                try:
                    ticket_id = await self._ingest_whatsapp_message(message, contacts.get(message.get("from")))
                except Exception:  # noqa: BLE001 - keep processing the batch
                    logger.exception("Failed to ingest WhatsApp message %s", message.get("id"))
                    continue
                if ticket_id is None:
                    result.duplicates += 1
                else:
                    result.messages += 1
                    result.tickets.append(ticket_id)
            for status in value.get("statuses") or []:
                mapped = _WHATSAPP_STATUS.get(status.get("status", ""))
                if mapped is not None and status.get("id"):
                    await self.tickets.record_delivery_status(status["id"], mapped)
                    result.statuses += 1
        return result

    async def receive_emails(self, emails: Iterable[InboundEmail]) -> list[IntakeResult]:
        """Ingest a notification batch; a failing entry is logged and skipped."""

        results = []
        for email in emails:
            try:
                result = await self.receive_email(email)
            except Exception:  # noqa: BLE001 - one bad notification must not drop the rest
                logger.exception("Failed to ingest email from %s", mask_email(email.sender))
                continue
            if result is not None:
                results.append(result)
        return results

    async def receive_email(self, email: InboundEmail) -> IntakeResult | None:
        sender = (email.sender or "").strip().lower()
        if not EMAIL_PATTERN.match(sender):
            raise ValidationFailedError("Invalid sender address")
        if email.message_id and await self.repository.has_external_message(email.message_id):
            logger.info("Skipping already processed email %s", email.message_id)
            return None

        client, created_client = await self.clients.find_or_create(name=email.sender_name or sender, email=sender)
        subject = clean_subject(email.subject) or "Email Inquiry"
        body = (email.body or "").strip() or "(no content)"

        ticket = await self.repository.find_open_ticket(
            channel=TicketChannel.EMAIL,
            client_id=client.id,
            subject=subject,
        )
        created_ticket = ticket is None
        if ticket is None:
            ticket = await self.tickets.create_ticket(
                subject=subject,
                client_id=client.id,
                channel=TicketChannel.EMAIL,
            )
        await self.tickets.post_message(
            ticket.id,
            content=body,
            sender_type=SenderType.CLIENT,
            sender_id=client.id,
            external_id=email.message_id,
        )
        return IntakeResult(ticket=ticket, client=client, created_ticket=created_ticket, created_client=created_client)

    async def _ingest_whatsapp_message(
        self,
        message: Mapping[str, Any],
        contact: Mapping[str, Any] | None,
    ) -> str | None:
        wa_id = message.get("from")
        if not wa_id:
            raise ValueError("WhatsApp message without sender")
        message_id = message.get("id")
        if message_id and await self.repository.has_external_message(message_id):
            return None

        client = await self.clients.repository.get_by_whatsapp_id(wa_id)
        if client is None:
            client = await self.clients.repository.get_by_phone(f"+{wa_id}")
            if client is not None and client.whatsapp_id is None:
                client = await self.clients.update_client(client.id, whatsapp_id=wa_id)
        if client is None:
            profile_name = ((contact or {}).get("profile") or {}).get("name")
            client, _ = await self.clients.find_or_create(
                name=profile_name or f"WhatsApp User {wa_id}",
                email=f"whatsapp_{wa_id}@{WHATSAPP_EMAIL_DOMAIN}",
                phone=f"+{wa_id}",
                whatsapp_id=wa_id,
            )

        content = whatsapp_message_content(message)
        ticket = await self.repository.find_open_ticket(channel=TicketChannel.WHATSAPP, client_id=client.id)
        if ticket is None:
            ticket = await self.tickets.create_ticket(
                subject=f"WhatsApp conversation with {client.name}",
                client_id=client.id,
                channel=TicketChannel.WHATSAPP,
            )
        await self.tickets.post_message(
            ticket.id,
            content=content,
            sender_type=SenderType.CLIENT,
            sender_id=client.id,
            external_id=message_id,
        )
        return ticket.id


def _whatsapp_values(payload: Mapping[str, Any]) -> Iterable[Mapping[str, Any]]:
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value")
            if isinstance(value, Mapping):
                yield value
