from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import SyncServiceDep
from helpdesk.sync.service import EntitySyncResult

router = APIRouter(prefix="/integrations/zoho", tags=["integrations"])


class EntitySyncResponse(BaseModel):
    success: bool
    external_id: str | None = None
    error: str | None = None


class SyncSummaryResponse(BaseModel):
    created: int
    updated: int
    errors: list[str] = Field(default_factory=list)


def _to_response(result: EntitySyncResult) -> EntitySyncResponse:
    return EntitySyncResponse(success=result.success, external_id=result.external_id, error=result.error)


@router.get("/status")
async def zoho_status(sync: SyncServiceDep, _: AgentUser) -> dict[str, Any]:
    return sync.status()


@router.post("/clients/{client_id}", response_model=EntitySyncResponse)
async def sync_client(client_id: str, sync: SyncServiceDep, _: AgentUser) -> EntitySyncResponse:
    return _to_response(await sync.sync_client(client_id))


@router.post("/quotes/{quote_id}", response_model=EntitySyncResponse)
async def sync_quote(quote_id: str, sync: SyncServiceDep, _: AgentUser) -> EntitySyncResponse:
    return _to_response(await sync.sync_quote(quote_id))


@router.post("/invoices/{invoice_id}", response_model=EntitySyncResponse)
async def sync_invoice(invoice_id: str, sync: SyncServiceDep, _: AgentUser) -> EntitySyncResponse:
    return _to_response(await sync.sync_invoice(invoice_id))


@router.post("/services/pull", response_model=SyncSummaryResponse)
async def pull_services(sync: SyncServiceDep, _: AgentUser) -> SyncSummaryResponse:
    result = await sync.pull_services()
    return SyncSummaryResponse(created=result.created, updated=result.updated, errors=result.errors)
