from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from helpdesk.core.errors import ValidationFailedError
from helpdesk.db.models import MessageTable
from helpdesk.integrations.base import DeliveryResult, DeliveryStatus
from helpdesk.tickets.models import TicketListFilters
from helpdesk.tickets.service import EmptyMessageError, MessageNotFoundError, TicketNotFoundError
from helpdesk.tickets.state import SenderType, TicketChannel, TicketPriority, TicketStatus


async def _ticket(stack, customer, channel=TicketChannel.FORM, **kwargs):
    return await stack.tickets.create_ticket(
        subject="Printer on fire",
        client_id=customer.id,
        channel=channel,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_ticket_with_initial_message_is_unread(stack, customer):
    ticket = await _ticket(stack, customer, initial_message="Please help")

    stored = await stack.tickets.get_ticket(ticket.id)
    assert stored.status == TicketStatus.OPEN
    assert stored.priority == TicketPriority.MEDIUM
    assert stored.unread is True
    assert [message.sender_type for message in stored.messages] == [SenderType.CLIENT]


@pytest.mark.asyncio
async def test_create_ticket_requires_subject(stack, customer):
    with pytest.raises(ValidationFailedError):
        await stack.tickets.create_ticket(subject="  ", client_id=customer.id, channel=TicketChannel.FORM)


@pytest.mark.asyncio
async def test_unread_tracks_client_messages(stack, customer):
    ticket = await _ticket(stack, customer)
    assert (await stack.tickets.get_ticket(ticket.id)).unread is False

    first = await stack.tickets.post_message(ticket.id, content="hello", sender_type=SenderType.CLIENT)
    second = await stack.tickets.post_message(ticket.id, content="anyone?", sender_type=SenderType.CLIENT)
    assert (await stack.tickets.get_ticket(ticket.id)).unread is True

    await stack.tickets.mark_message_read(ticket.id, first.id)
    assert (await stack.tickets.get_ticket(ticket.id)).unread is True

    read = await stack.tickets.mark_message_read(ticket.id, second.id)
    assert read.read is True
    assert (await stack.tickets.get_ticket(ticket.id)).unread is False


@pytest.mark.asyncio
async def test_agent_reply_does_not_flag_unread(stack, customer):
    ticket = await _ticket(stack, customer)

    reply = await stack.tickets.post_message(ticket.id, content="On it", sender_type=SenderType.AGENT)

    assert reply.read is True
    assert reply.delivery_status is None
    assert (await stack.tickets.get_ticket(ticket.id)).unread is False


@pytest.mark.asyncio
async def test_mark_all_read_counts_updated_messages(stack, customer):
    ticket = await _ticket(stack, customer, initial_message="one")
    await stack.tickets.post_message(ticket.id, content="two", sender_type=SenderType.CLIENT)
    await stack.tickets.post_message(ticket.id, content="reply", sender_type=SenderType.AGENT)

    assert await stack.tickets.mark_all_read(ticket.id) == 2
    assert await stack.tickets.mark_all_read(ticket.id) == 0
    assert (await stack.tickets.get_ticket(ticket.id)).unread is False


@pytest.mark.asyncio
async def test_message_validation(stack, customer):
    ticket = await _ticket(stack, customer)

    with pytest.raises(EmptyMessageError):
        await stack.tickets.post_message(ticket.id, content="   ")
    with pytest.raises(TicketNotFoundError):
        await stack.tickets.post_message("missing", content="hi")
    with pytest.raises(MessageNotFoundError):
        await stack.tickets.mark_message_read(ticket.id, "missing")


@pytest.mark.asyncio
async def test_whatsapp_reply_is_delivered(make_stack, stack):
    messaging = AsyncMock()
    messaging.send_text = AsyncMock(return_value=DeliveryResult(success=True, message_id="wamid.1"))
    delivering = make_stack(messaging=messaging)
    customer = await stack.clients.create_client(name="Wa", email="wa@example.test", whatsapp_id="15550002")
    ticket = await _ticket(delivering, customer, channel=TicketChannel.WHATSAPP)

    message = await delivering.tickets.post_message(ticket.id, content="Hi there")

    messaging.send_text.assert_awaited_once_with("15550002", "Hi there")
    assert message.delivery_status == DeliveryStatus.SENT
    stored = (await stack.tickets.list_messages(ticket.id))[-1]
    assert stored.external_id == "wamid.1"

    assert await stack.tickets.record_delivery_status("wamid.1", DeliveryStatus.READ)
    assert (await stack.tickets.list_messages(ticket.id))[-1].delivery_status == DeliveryStatus.READ


@pytest.mark.asyncio
async def test_failed_delivery_keeps_message(make_stack, customer):
    email = AsyncMock()
    email.send_email = AsyncMock(side_effect=RuntimeError("smtp down"))
    delivering = make_stack(email=email)
    ticket = await _ticket(delivering, customer, channel=TicketChannel.EMAIL)

    message = await delivering.tickets.post_message(ticket.id, content="Reply")

    email.send_email.assert_awaited_once_with("billing@acme.test", "Re: Printer on fire", "Reply")
    assert message.delivery_status == DeliveryStatus.FAILED
    stored = await delivering.tickets.list_messages(ticket.id)
    assert [m.content for m in stored] == ["Reply"]
    assert stored[0].delivery_status == DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_update_and_filter_tickets(stack, customer):
    ticket = await _ticket(stack, customer)
    await _ticket(stack, customer, channel=TicketChannel.CHAT)

    updated = await stack.tickets.update_ticket(ticket.id, status=TicketStatus.RESOLVED, priority=TicketPriority.HIGH)
    assert updated.status == TicketStatus.RESOLVED
    assert updated.priority == TicketPriority.HIGH

    page = await stack.tickets.list_tickets(TicketListFilters(channel=TicketChannel.FORM))
    assert [item.id for item in page.items] == [ticket.id]
    assert page.total == 1


@pytest.mark.asyncio
async def test_delete_ticket(stack, customer):
    ticket = await _ticket(stack, customer, initial_message="bye")

    await stack.tickets.delete_ticket(ticket.id)

    with pytest.raises(TicketNotFoundError):
        await stack.tickets.get_ticket(ticket.id)
    with pytest.raises(TicketNotFoundError):
        await stack.tickets.delete_ticket(ticket.id)


@pytest.mark.asyncio
async def test_messages_come_back_oldest_first(stack, customer):
    ticket = await _ticket(stack, customer)
    base = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    async with stack.session_factory() as session:
        async with session.begin():
            for minutes, content in ((30, "third"), (0, "first"), (10, "second")):
                session.add(
                    MessageTable(
                        ticket_id=ticket.id,
                        sender_type=SenderType.CLIENT.value,
                        content=content,
                        timestamp=base + timedelta(minutes=minutes),
                    )
                )

    messages = await stack.tickets.list_messages(ticket.id)
    assert [message.content for message in messages] == ["first", "second", "third"]
    assert [message.content for message in (await stack.tickets.get_ticket(ticket.id)).messages] == [
        "first",
        "second",
        "third",
    ]
