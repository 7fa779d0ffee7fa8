from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk.catalog.repository import ServiceRepository
from helpdesk.catalog.service import CatalogService
from helpdesk.db.session import ensure_schema
from helpdesk.directory.repository import AgentRepository, ClientRepository
from helpdesk.directory.service import AgentService, ClientService
from helpdesk.invoices.repository import InvoiceRepository
from helpdesk.invoices.service import InvoiceService
from helpdesk.quotes.repository import QuoteRepository
from helpdesk.quotes.service import QuoteService
from helpdesk.tickets.intake import IntakeService
from helpdesk.tickets.portal import PortalService
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.service import TicketService


@dataclass
class Stack:
    """Every service wired against one in-memory database."""

    session_factory: async_sessionmaker[AsyncSession]
    clients: ClientService
    agents: AgentService
    catalog: CatalogService
    quote_repository: QuoteRepository
    invoice_repository: InvoiceRepository
    ticket_repository: TicketRepository
    quotes: QuoteService
    invoices: InvoiceService
    tickets: TicketService
    intake: IntakeService
    portal: PortalService


def build_stack(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    messaging=None,
    email=None,
    status_sync=None,
) -> Stack:
    clients = ClientService(ClientRepository(session_factory))
    agents = AgentService(AgentRepository(session_factory))
    catalog = CatalogService(ServiceRepository(session_factory))
    quote_repository = QuoteRepository(session_factory)
    invoice_repository = InvoiceRepository(session_factory)
    ticket_repository = TicketRepository(session_factory)
    tickets = TicketService(
        repository=ticket_repository,
        clients=clients,
        agents=agents,
        messaging=messaging,
        email=email,
    )
    return Stack(
        session_factory=session_factory,
        clients=clients,
        agents=agents,
        catalog=catalog,
        quote_repository=quote_repository,
        invoice_repository=invoice_repository,
        ticket_repository=ticket_repository,
        quotes=QuoteService(
            repository=quote_repository,
            invoices=invoice_repository,
            clients=clients,
            agents=agents,
            catalog=catalog,
            default_tax_rate=Decimal("15"),
            status_sync=status_sync,
        ),
        invoices=InvoiceService(
            repository=invoice_repository,
            quotes=quote_repository,
            clients=clients,
            agents=agents,
            catalog=catalog,
            status_sync=status_sync,
        ),
        tickets=tickets,
        intake=IntakeService(tickets=tickets, repository=ticket_repository, clients=clients),
        portal=PortalService(tickets=tickets, repository=ticket_repository, clients=clients),
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await ensure_schema(engine)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def stack(session_factory) -> Stack:
    return build_stack(session_factory)


@pytest_asyncio.fixture
async def customer(stack):
    return await stack.clients.create_client(name="Acme Ltd", email="Billing@Acme.test", phone="+15550001")


@pytest_asyncio.fixture
async def agent(stack):
    return await stack.agents.create_agent(name="Dana Agent", email="dana@helpdesk.test", commission_rate=Decimal("10"))


@pytest_asyncio.fixture
async def consulting(stack):
    return await stack.catalog.create_service(
        name="Consulting",
        category="Advisory",
        rate=Decimal("1000"),
        unit="per hour",
        sku="ADV-CON-1",
    )


@pytest.fixture
def make_stack(session_factory):
    """Build a second stack on the same database with injected collaborators."""

    def factory(**kwargs) -> Stack:
        return build_stack(session_factory, **kwargs)

    return factory


@pytest_asyncio.fixture
async def concurrent_stack(tmp_path):
    """A stack on a file database: every session gets its own connection, so
    concurrent writers contend for locks the way they do on Postgres."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}",
        connect_args={"timeout": 30},
    )
    await ensure_schema(engine)
    try:
        yield build_stack(async_sessionmaker(engine, expire_on_commit=False))
    finally:
        await engine.dispose()
