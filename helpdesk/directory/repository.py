from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.db.models import AgentTable, ClientTable, InvoiceTable, QuoteTable, TicketTable
from helpdesk.db.pagination import Page, paginate_query
from helpdesk.db.session import ensure_utc

from .models import Agent, AgentRole, AgentStatus, Client, RelatedCounts

_CLIENT_FIELDS = frozenset({"name", "email", "phone", "company", "whatsapp_id", "address", "notes"})
_AGENT_FIELDS = frozenset({"name", "email", "phone", "role", "commission_rate", "status"})


async def _count_related(session: AsyncSession, column_name: str, entity_id: str) -> RelatedCounts:
    counts = RelatedCounts()
    for attr, table in (("tickets", TicketTable), ("quotes", QuoteTable), ("invoices", InvoiceTable)):
        column = getattr(table, column_name)
        result = await session.execute(select(func.count()).select_from(table).where(column == entity_id))
        setattr(counts, attr, int(result.scalar() or 0))
    return counts


class ClientRepository:
    """Persistence for the client directory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_client(self, client: Client) -> Client:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ClientTable(
                        id=client.id,
                        name=client.name,
                        email=client.email,
                        phone=client.phone,
                        company=client.company,
                        whatsapp_id=client.whatsapp_id,
                        address=client.address,
                        notes=client.notes,
                        created_at=client.created_at,
                        updated_at=client.updated_at,
                    )
                )
        return client

    async def get_client(self, client_id: str) -> Client | None:
        async with self._session_factory() as session:
            row = await session.get(ClientTable, client_id)
            return self._table_to_client(row) if row is not None else None

    async def get_by_email(self, email: str) -> Client | None:
        return await self._get_by(ClientTable.email == email.lower())

    async def get_by_whatsapp_id(self, whatsapp_id: str) -> Client | None:
        return await self._get_by(ClientTable.whatsapp_id == whatsapp_id)

    async def get_by_phone(self, phone: str) -> Client | None:
        return await self._get_by(ClientTable.phone == phone)

    async def list_clients(
        self,
        *,
        search: str | None = None,
        company: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Client]:
        query = select(ClientTable)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    ClientTable.name.ilike(pattern),
                    ClientTable.email.ilike(pattern),
                    ClientTable.company.ilike(pattern),
                )
            )
        if company:
            query = query.where(ClientTable.company.ilike(f"%{company}%"))
        query = query.order_by(ClientTable.created_at.desc())

        async with self._session_factory() as session:
            rows, total = await paginate_query(session, query, page=page, limit=limit)
        return Page(items=[self._table_to_client(row) for row in rows], total=total, page=page, limit=limit)

    async def update_client(self, client_id: str, *, changes: Mapping[str, Any], now: datetime) -> Client | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ClientTable, client_id)
                if row is None:
                    return None
                for name, value in changes.items():
                    if name in _CLIENT_FIELDS:
                        setattr(row, name, value)
                row.updated_at = now
            return self._table_to_client(row)

    async def delete_client(self, client_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ClientTable, client_id)
                if row is None:
                    return False
                await session.delete(row)
        return True

    async def count_related(self, client_id: str) -> RelatedCounts:
        async with self._session_factory() as session:
            return await _count_related(session, "client_id", client_id)

    async def set_zoho_contact_id(self, client_id: str, contact_id: str, *, now: datetime) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ClientTable, client_id)
                if row is not None:
                    row.zoho_contact_id = contact_id
                    row.zoho_synced_at = now

    async def _get_by(self, clause) -> Client | None:
        async with self._session_factory() as session:
            result = await session.execute(select(ClientTable).where(clause))
            row = result.scalars().first()
            return self._table_to_client(row) if row is not None else None

    @staticmethod
    def _table_to_client(row: ClientTable) -> Client:
        return Client(
            id=row.id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            company=row.company,
            whatsapp_id=row.whatsapp_id,
            address=row.address,
            notes=row.notes,
            zoho_contact_id=row.zoho_contact_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )


class AgentRepository:
    """Persistence for agents."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_agent(self, agent: Agent) -> Agent:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AgentTable(
                        id=agent.id,
                        name=agent.name,
                        email=agent.email,
                        phone=agent.phone,
                        role=agent.role.value,
                        commission_rate=agent.commission_rate,
                        status=agent.status.value,
                        created_at=agent.created_at,
                        updated_at=agent.updated_at,
                    )
                )
        return agent

    async def get_agent(self, agent_id: str) -> Agent | None:
        async with self._session_factory() as session:
            row = await session.get(AgentTable, agent_id)
            return self._table_to_agent(row) if row is not None else None

    async def get_by_email(self, email: str) -> Agent | None:
        async with self._session_factory() as session:
            result = await session.execute(select(AgentTable).where(AgentTable.email == email.lower()))
            row = result.scalars().first()
            return self._table_to_agent(row) if row is not None else None

    async def list_agents(
        self,
        *,
        status: AgentStatus | None = None,
        role: AgentRole | None = None,
        search: str | None = None,
    ) -> list[Agent]:
        query = select(AgentTable)
        if status is not None:
            query = query.where(AgentTable.status == status.value)
        if role is not None:
            query = query.where(AgentTable.role == role.value)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(AgentTable.name.ilike(pattern), AgentTable.email.ilike(pattern)))
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(AgentTable.name.asc()))
            return [self._table_to_agent(row) for row in result.scalars().all()]

    async def update_agent(self, agent_id: str, *, changes: Mapping[str, Any], now: datetime) -> Agent | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(AgentTable, agent_id)
                if row is None:
                    return None
                for name, value in changes.items():
                    if name not in _AGENT_FIELDS:
                        continue
                    if isinstance(value, (AgentRole, AgentStatus)):
                        value = value.value
                    setattr(row, name, value)
                row.updated_at = now
            return self._table_to_agent(row)

    async def delete_agent(self, agent_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(AgentTable, agent_id)
                if row is None:
                    return False
                await session.delete(row)
        return True

    async def count_related(self, agent_id: str) -> RelatedCounts:
        async with self._session_factory() as session:
            return await _count_related(session, "agent_id", agent_id)

    @staticmethod
    def _table_to_agent(row: AgentTable) -> Agent:
        return Agent(
            id=row.id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            role=AgentRole(row.role),
            commission_rate=Decimal(row.commission_rate),
            status=AgentStatus(row.status),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )
