from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.api.pagination import MAX_PAGE_SIZE, PaginatedResponse, paginated
from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import ClientServiceDep
from helpdesk.directory.models import Client, RelatedCounts

router = APIRouter(prefix="/clients", tags=["clients"])


class ClientCreateRequest(BaseModel):
    name: str = Field(..., max_length=255)
    email: str = Field(..., max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=255)
    whatsapp_id: str | None = Field(default=None, max_length=50)
    address: str | None = None
    notes: str | None = None


class ClientUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=255)
    whatsapp_id: str | None = Field(default=None, max_length=50)
    address: str | None = None
    notes: str | None = None


class RelatedCountsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tickets: int
    quotes: int
    invoices: int
    total: int


class ClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: str | None
    company: str | None
    whatsapp_id: str | None
    address: str | None
    notes: str | None
    zoho_contact_id: str | None
    created_at: datetime
    updated_at: datetime


class ClientDetailResponse(ClientResponse):
    counts: RelatedCountsResponse


def _to_response(client: Client) -> ClientResponse:
    return ClientResponse.model_validate(client)


def _to_detail_response(client: Client, counts: RelatedCounts) -> ClientDetailResponse:
    return ClientDetailResponse(
        **_to_response(client).model_dump(),
        counts=RelatedCountsResponse.model_validate(counts),
    )


@router.get("", response_model=PaginatedResponse[ClientResponse])
async def list_clients(
    service: ClientServiceDep,
    _: AgentUser,
    search: str | None = Query(default=None),
    company: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
) -> PaginatedResponse[ClientResponse]:
    result = await service.list_clients(search=search, company=company, page=page, limit=limit)
    return paginated(result, _to_response)


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(payload: ClientCreateRequest, service: ClientServiceDep, _: AgentUser) -> ClientResponse:
    client = await service.create_client(**payload.model_dump())
    return _to_response(client)


@router.get("/{client_id}", response_model=ClientDetailResponse)
async def get_client(client_id: str, service: ClientServiceDep, _: AgentUser) -> ClientDetailResponse:
    client = await service.get_client(client_id)
    counts = await service.get_related_counts(client_id)
    return _to_detail_response(client, counts)


@router.put("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: str,
    payload: ClientUpdateRequest,
    service: ClientServiceDep,
    _: AgentUser,
) -> ClientResponse:
    client = await service.update_client(client_id, **payload.model_dump(exclude_unset=True))
    return _to_response(client)


@router.delete("/{client_id}")
async def delete_client(client_id: str, service: ClientServiceDep, _: AgentUser) -> dict[str, str]:
    await service.delete_client(client_id)
    return {"message": "Client deleted successfully"}
