from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.db.models import MessageTable, TicketTable
from helpdesk.db.pagination import Page, paginate_query
from helpdesk.db.session import ensure_utc
from helpdesk.integrations.base import DeliveryStatus

from .models import Message, Ticket, TicketListFilters
from .state import OPEN_STATES, SenderType, TicketChannel, TicketPriority, TicketStatus

_EDITABLE_FIELDS = frozenset({"subject", "description", "status", "priority", "agent_id"})


class TicketRepository:
    """Persistence wrapping ``tickets`` and their ``messages``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_ticket(self, ticket: Ticket, message: Message | None = None) -> Ticket:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    TicketTable(
                        id=ticket.id,
                        subject=ticket.subject,
                        description=ticket.description,
                        client_id=ticket.client_id,
                        agent_id=ticket.agent_id,
                        channel=ticket.channel.value,
                        status=ticket.status.value,
                        priority=ticket.priority.value,
                        unread=ticket.unread,
                        session_id=ticket.session_id,
                        created_at=ticket.created_at,
                        updated_at=ticket.updated_at,
                    )
                )
                if message is not None:
                    await session.flush()
                    session.add(_message_to_table(message))
        return ticket

    async def get_ticket(self, ticket_id: str, *, with_messages: bool = True) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            ticket = self._table_to_ticket(row)
            if with_messages:
                ticket.messages = await self._load_messages(session, ticket_id)
            return ticket

    async def find_by_prefix(self, reference: str) -> list[Ticket]:
        async with self._session_factory() as session:
            result = await session.execute(select(TicketTable).where(TicketTable.id.startswith(reference)).limit(2))
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def list_tickets(self, filters: TicketListFilters) -> Page[Ticket]:
        query = select(TicketTable)
        if filters.channel is not None:
            query = query.where(TicketTable.channel == filters.channel.value)
        if filters.status is not None:
            query = query.where(TicketTable.status == filters.status.value)
        if filters.agent_id:
            query = query.where(TicketTable.agent_id == filters.agent_id)
        if filters.client_id:
            query = query.where(TicketTable.client_id == filters.client_id)
        if filters.unread is not None:
            query = query.where(TicketTable.unread == filters.unread)
        query = query.order_by(TicketTable.updated_at.desc())

        async with self._session_factory() as session:
            rows, total = await paginate_query(session, query, page=filters.page, limit=filters.limit)
        return Page(
            items=[self._table_to_ticket(row) for row in rows],
            total=total,
            page=filters.page,
            limit=filters.limit,
        )

    async def find_open_ticket(
        self,
        *,
        channel: TicketChannel,
        client_id: str | None = None,
        session_id: str | None = None,
        subject: str | None = None,
    ) -> Ticket | None:
        """Most recently active OPEN/PENDING ticket on a channel."""

        query = select(TicketTable).where(
            TicketTable.channel == channel.value,
            TicketTable.status.in_([status.value for status in OPEN_STATES]),
        )
        if client_id is not None:
            query = query.where(TicketTable.client_id == client_id)
        if session_id is not None:
            query = query.where(TicketTable.session_id == session_id)
        if subject is not None:
            query = query.where(func.lower(TicketTable.subject) == subject.lower())
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(TicketTable.updated_at.desc()).limit(1))
            row = result.scalars().first()
            return self._table_to_ticket(row) if row is not None else None

    async def update_ticket(self, ticket_id: str, *, changes: Mapping[str, Any], now: datetime) -> Ticket | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    return None
                for name, value in changes.items():
                    if name not in _EDITABLE_FIELDS:
                        continue
                    if isinstance(value, (TicketStatus, TicketPriority)):
                        value = value.value
                    setattr(row, name, value)
                row.updated_at = now
            return self._table_to_ticket(row)

    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    return False
                await session.execute(delete(MessageTable).where(MessageTable.ticket_id == ticket_id))
                await session.delete(row)
        return True

    async def list_messages(self, ticket_id: str) -> list[Message]:
        async with self._session_factory() as session:
            return await self._load_messages(session, ticket_id)

    async def add_message(self, message: Message, *, now: datetime) -> Message | None:
        """Append a message; a CLIENT message flags the ticket unread."""

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, message.ticket_id)
                if row is None:
                    return None
                session.add(_message_to_table(message))
                if message.sender_type == SenderType.CLIENT:
                    row.unread = True
                row.updated_at = now
        return message

    async def mark_message_read(self, ticket_id: str, message_id: str) -> Message | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(MessageTable, message_id)
                if row is None or row.ticket_id != ticket_id:
                    return None
                row.read = True
                await self._refresh_unread(session, ticket_id)
            return self._table_to_message(row)

    async def mark_all_read(self, ticket_id: str) -> int:
        """Mark every CLIENT message read and return how many changed."""

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(MessageTable)
                    .where(
                        MessageTable.ticket_id == ticket_id,
                        MessageTable.sender_type == SenderType.CLIENT.value,
                        MessageTable.read == False,  # noqa: E712
                    )
                    .values(read=True)
                )
                await self._refresh_unread(session, ticket_id)
        return int(result.rowcount or 0)

    async def set_delivery(
        self,
        message_id: str,
        *,
        status: DeliveryStatus,
        external_id: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(MessageTable, message_id)
                if row is None:
                    return
                row.delivery_status = status.value
                if external_id is not None:
                    row.external_id = external_id

    async def update_delivery_by_external_id(self, external_id: str, status: DeliveryStatus) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(MessageTable)
                    .where(
                        MessageTable.external_id == external_id,
                        MessageTable.sender_type == SenderType.AGENT.value,
                    )
                    .values(delivery_status=status.value)
                )
        return bool(result.rowcount)

    async def has_external_message(self, external_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(MessageTable).where(MessageTable.external_id == external_id)
            )
            return bool(result.scalar())

    async def _refresh_unread(self, session: AsyncSession, ticket_id: str) -> None:
        remaining = await session.execute(
            select(func.count())
            .select_from(MessageTable)
            .where(
                MessageTable.ticket_id == ticket_id,
                MessageTable.sender_type == SenderType.CLIENT.value,
                MessageTable.read == False,  # noqa: E712
            )
        )
        if not remaining.scalar():
            ticket = await session.get(TicketTable, ticket_id)
            if ticket is not None:
                ticket.unread = False

    async def _load_messages(self, session: AsyncSession, ticket_id: str) -> list[Message]:
        result = await session.execute(
            select(MessageTable)
            .where(MessageTable.ticket_id == ticket_id)
            .order_by(MessageTable.timestamp.asc())
        )
        return [self._table_to_message(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            subject=row.subject,
            description=row.description,
            client_id=row.client_id,
            agent_id=row.agent_id,
            channel=TicketChannel(row.channel),
            status=TicketStatus(row.status),
            priority=TicketPriority(row.priority),
            unread=bool(row.unread),
            session_id=row.session_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    @staticmethod
    def _table_to_message(row: MessageTable) -> Message:
        return Message(
            id=row.id,
            ticket_id=row.ticket_id,
            sender_type=SenderType(row.sender_type),
            sender_id=row.sender_id,
            content=row.content,
            read=bool(row.read),
            timestamp=ensure_utc(row.timestamp),
            external_id=row.external_id,
            delivery_status=DeliveryStatus(row.delivery_status) if row.delivery_status else None,
        )


def _message_to_table(message: Message) -> MessageTable:
    return MessageTable(
        id=message.id,
        ticket_id=message.ticket_id,
        sender_type=message.sender_type.value,
        sender_id=message.sender_id,
        content=message.content,
        read=message.read,
        external_id=message.external_id,
        delivery_status=message.delivery_status.value if message.delivery_status else None,
        timestamp=message.timestamp,
    )
