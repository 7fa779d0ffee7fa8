from contextlib import asynccontextmanager
from decimal import Decimal

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from helpdesk.api.routes import (
    agents,
    clients,
    invoices,
    ping,
    portal,
    quotes,
    services,
    sync,
    tickets,
    trello,
    webhooks,
)
from helpdesk.catalog.repository import ServiceRepository
from helpdesk.catalog.service import CatalogService
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.errors import register_error_handlers
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.db.session import ensure_schema, to_asyncpg_dsn
from helpdesk.directory.repository import AgentRepository, ClientRepository
from helpdesk.directory.service import AgentService, ClientService
from helpdesk.integrations.email import GraphEmailClient
from helpdesk.integrations.trello import TrelloClient
from helpdesk.integrations.whatsapp import WhatsAppClient
from helpdesk.integrations.zoho import ZohoBooksClient
from helpdesk.invoices.repository import InvoiceRepository
from helpdesk.invoices.service import InvoiceService
from helpdesk.quotes.repository import QuoteRepository
from helpdesk.quotes.service import QuoteService
from helpdesk.sync.service import ZohoSyncService
from helpdesk.tickets.intake import IntakeService
from helpdesk.tickets.portal import PortalService
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.service import TicketService


def build_services(app: FastAPI, settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Wire repositories, provider clients and services onto ``app.state``."""

    client_repository = ClientRepository(session_factory)
    quote_repository = QuoteRepository(session_factory)
    invoice_repository = InvoiceRepository(session_factory)
    ticket_repository = TicketRepository(session_factory)

    client_service = ClientService(client_repository)
    agent_service = AgentService(AgentRepository(session_factory))
    catalog_service = CatalogService(ServiceRepository(session_factory))

    whatsapp = WhatsAppClient(
        access_token=settings.whatsapp_access_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        api_version=settings.whatsapp_api_version,
    )
    email = GraphEmailClient(
        tenant_id=settings.graph_tenant_id,
        client_id=settings.graph_client_id,
        client_secret=settings.graph_client_secret,
        sender_address=settings.graph_sender_address,
    )
    zoho = ZohoBooksClient(
        client_id=settings.zoho_client_id,
        client_secret=settings.zoho_client_secret,
        refresh_token=settings.zoho_refresh_token,
        organization_id=settings.zoho_organization_id,
        region=settings.zoho_region,
    )

    sync_service = ZohoSyncService(
        target=zoho,
        clients=client_service,
        quotes=quote_repository,
        invoices=invoice_repository,
        catalog=catalog_service,
    )
    ticket_service = TicketService(
        repository=ticket_repository,
        clients=client_service,
        agents=agent_service,
        messaging=whatsapp,
        email=email,
    )

    app.state.client_service = client_service
    app.state.agent_service = agent_service
    app.state.catalog_service = catalog_service
    app.state.sync_service = sync_service
    app.state.trello_client = TrelloClient(api_key=settings.trello_api_key, token=settings.trello_token)
    app.state.quote_service = QuoteService(
        repository=quote_repository,
        invoices=invoice_repository,
        clients=client_service,
        agents=agent_service,
        catalog=catalog_service,
        default_tax_rate=Decimal(str(settings.quote_default_tax_rate)),
        validity_days=settings.quote_validity_days,
        invoice_due_days=settings.invoice_due_days,
        status_sync=sync_service,
    )
    app.state.invoice_service = InvoiceService(
        repository=invoice_repository,
        quotes=quote_repository,
        clients=client_service,
        agents=agent_service,
        catalog=catalog_service,
        due_days=settings.invoice_due_days,
        status_sync=sync_service,
    )
    app.state.ticket_service = ticket_service
    app.state.intake_service = IntakeService(
        tickets=ticket_service,
        repository=ticket_repository,
        clients=client_service,
    )
    app.state.portal_service = PortalService(
        tickets=ticket_service,
        repository=ticket_repository,
        clients=client_service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    engine = create_async_engine(to_asyncpg_dsn(settings.postgres_dsn), pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    await ensure_schema(engine)
    build_services(app, settings, session_factory)
    logger.info("%s started (%s)", settings.app_name, settings.environment)
    try:
        yield
    finally:
        await engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(ping.router)
    app.include_router(clients.router)
    app.include_router(agents.router)
    app.include_router(services.router)
    app.include_router(quotes.router)
    app.include_router(invoices.router)
    app.include_router(tickets.router)
    app.include_router(webhooks.router)
    app.include_router(portal.router)
    app.include_router(sync.router)
    app.include_router(trello.router)
    return app


app = create_app()
