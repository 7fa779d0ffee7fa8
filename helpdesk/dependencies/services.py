from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from helpdesk.catalog.service import CatalogService
from helpdesk.directory.service import AgentService, ClientService
from helpdesk.integrations.trello import TrelloClient
from helpdesk.invoices.service import InvoiceService
from helpdesk.quotes.service import QuoteService
from helpdesk.sync.service import ZohoSyncService
from helpdesk.tickets.intake import IntakeService
from helpdesk.tickets.portal import PortalService
from helpdesk.tickets.service import TicketService


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return service


async def get_quote_service(request: Request) -> QuoteService:
    return _from_state(request, "quote_service", "Quote service")


async def get_invoice_service(request: Request) -> InvoiceService:
    return _from_state(request, "invoice_service", "Invoice service")


async def get_ticket_service(request: Request) -> TicketService:
    return _from_state(request, "ticket_service", "Ticket service")


async def get_intake_service(request: Request) -> IntakeService:
    return _from_state(request, "intake_service", "Intake service")


async def get_portal_service(request: Request) -> PortalService:
    return _from_state(request, "portal_service", "Portal service")


async def get_client_service(request: Request) -> ClientService:
    return _from_state(request, "client_service", "Client service")


async def get_agent_service(request: Request) -> AgentService:
    return _from_state(request, "agent_service", "Agent service")


async def get_catalog_service(request: Request) -> CatalogService:
    return _from_state(request, "catalog_service", "Catalog service")


async def get_sync_service(request: Request) -> ZohoSyncService:
    return _from_state(request, "sync_service", "Sync service")


async def get_trello_client(request: Request) -> TrelloClient:
    return _from_state(request, "trello_client", "Trello client")


QuoteServiceDep = Annotated[QuoteService, Depends(get_quote_service)]
InvoiceServiceDep = Annotated[InvoiceService, Depends(get_invoice_service)]
TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
IntakeServiceDep = Annotated[IntakeService, Depends(get_intake_service)]
PortalServiceDep = Annotated[PortalService, Depends(get_portal_service)]
ClientServiceDep = Annotated[ClientService, Depends(get_client_service)]
AgentServiceDep = Annotated[AgentService, Depends(get_agent_service)]
CatalogServiceDep = Annotated[CatalogService, Depends(get_catalog_service)]
SyncServiceDep = Annotated[ZohoSyncService, Depends(get_sync_service)]
TrelloClientDep = Annotated[TrelloClient, Depends(get_trello_client)]
