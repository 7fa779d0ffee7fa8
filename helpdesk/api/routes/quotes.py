from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.api.pagination import MAX_PAGE_SIZE, PaginatedResponse, paginated
from helpdesk.api.routes.invoices import InvoiceResponse
from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import QuoteServiceDep
from helpdesk.quotes.models import Quote, QuoteItem, QuoteListFilters, QuoteStatusLog
from helpdesk.quotes.service import ItemRequest
from helpdesk.quotes.state import QuoteStatus

router = APIRouter(prefix="/quotes", tags=["quotes"])


class QuoteItemRequest(BaseModel):
    service_id: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    rate: Decimal | None = Field(default=None, ge=0)
    custom_description: str | None = Field(default=None, max_length=500)

    def to_item(self) -> ItemRequest:
        return ItemRequest(
            service_id=self.service_id,
            quantity=self.quantity,
            rate=self.rate,
            custom_description=self.custom_description,
        )


class QuoteCreateRequest(BaseModel):
    client_id: str | None = None
    agent_id: str | None = None
    items: list[QuoteItemRequest] = Field(default_factory=list)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    discount_rate: Decimal | None = Field(default=None, ge=0, le=100)
    notes: str | None = None
    terms: str | None = None
    valid_until: datetime | None = None


class QuoteUpdateRequest(BaseModel):
    agent_id: str | None = None
    items: list[QuoteItemRequest] | None = None
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    discount_rate: Decimal | None = Field(default=None, ge=0, le=100)
    notes: str | None = None
    terms: str | None = None
    valid_until: datetime | None = None


class QuoteItemUpdateRequest(BaseModel):
    quantity: Decimal | None = Field(default=None, gt=0)
    rate: Decimal | None = Field(default=None, ge=0)
    custom_description: str | None = Field(default=None, max_length=500)


class QuoteStatusChangeRequest(BaseModel):
    status: QuoteStatus
    agent_id: str | None = None
    notes: str | None = Field(default=None, max_length=500)


class QuoteConvertRequest(BaseModel):
    due_date: datetime | None = None
    agent_id: str | None = None
    notes: str | None = None


class QuoteItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    quote_id: str
    service_id: str
    quantity: Decimal
    rate: Decimal
    line_total: Decimal
    custom_description: str | None
    created_at: datetime


class QuoteStatusLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    quote_id: str
    status: QuoteStatus
    changed_by: str | None
    notes: str
    created_at: datetime


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    number: str
    client_id: str
    agent_id: str | None
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    status: QuoteStatus
    valid_until: datetime | None
    notes: str | None
    terms: str | None
    sent_at: datetime | None
    accepted_at: datetime | None
    expired_at: datetime | None
    zoho_estimate_id: str | None
    invoice_id: str | None
    created_at: datetime
    updated_at: datetime
    items: list[QuoteItemResponse] = Field(default_factory=list)
    status_logs: list[QuoteStatusLogResponse] = Field(default_factory=list)


def _to_response(quote: Quote) -> QuoteResponse:
    return QuoteResponse.model_validate(quote)


def _to_item_response(item: QuoteItem) -> QuoteItemResponse:
    return QuoteItemResponse.model_validate(item)


def _to_log_response(log: QuoteStatusLog) -> QuoteStatusLogResponse:
    return QuoteStatusLogResponse.model_validate(log)


@router.post("", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
async def create_quote(payload: QuoteCreateRequest, service: QuoteServiceDep, _: AgentUser) -> QuoteResponse:
    quote = await service.create_quote(
        client_id=payload.client_id,
        agent_id=payload.agent_id,
        items=[item.to_item() for item in payload.items],
        tax_rate=payload.tax_rate,
        discount_rate=payload.discount_rate,
        notes=payload.notes,
        terms=payload.terms,
        valid_until=payload.valid_until,
    )
    return _to_response(quote)


@router.get("", response_model=PaginatedResponse[QuoteResponse])
async def list_quotes(
    service: QuoteServiceDep,
    _: AgentUser,
    search: str | None = Query(default=None),
    status_filter: QuoteStatus | None = Query(default=None, alias="status"),
    agent_id: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    sort_by: Literal["created_at", "updated_at", "total_amount", "number", "valid_until"] = Query(
        default="created_at"
    ),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
) -> PaginatedResponse[QuoteResponse]:
    result = await service.list_quotes(
        QuoteListFilters(
            search=search,
            status=status_filter,
            agent_id=agent_id,
            client_id=client_id,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    )
    return paginated(result, _to_response)


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(quote_id: str, service: QuoteServiceDep, _: AgentUser) -> QuoteResponse:
    return _to_response(await service.get_quote(quote_id))


@router.put("/{quote_id}", response_model=QuoteResponse)
async def update_quote(
    quote_id: str,
    payload: QuoteUpdateRequest,
    service: QuoteServiceDep,
    _: AgentUser,
) -> QuoteResponse:
    changes = payload.model_dump(exclude_unset=True, exclude={"items"})
    items = [item.to_item() for item in payload.items] if payload.items is not None else None
    quote = await service.update_quote(quote_id, items=items, **changes)
    return _to_response(quote)


@router.delete("/{quote_id}")
async def delete_quote(quote_id: str, service: QuoteServiceDep, _: AgentUser) -> dict[str, str]:
    await service.delete_quote(quote_id)
    return {"message": "Quote deleted successfully"}


@router.get("/{quote_id}/items", response_model=list[QuoteItemResponse])
async def list_quote_items(quote_id: str, service: QuoteServiceDep, _: AgentUser) -> list[QuoteItemResponse]:
    return [_to_item_response(item) for item in await service.list_items(quote_id)]


@router.post("/{quote_id}/items", response_model=QuoteItemResponse, status_code=status.HTTP_201_CREATED)
async def add_quote_item(
    quote_id: str,
    payload: QuoteItemRequest,
    service: QuoteServiceDep,
    _: AgentUser,
) -> QuoteItemResponse:
    return _to_item_response(await service.add_item(quote_id, payload.to_item()))


@router.put("/{quote_id}/items/{item_id}", response_model=QuoteItemResponse)
async def update_quote_item(
    quote_id: str,
    item_id: str,
    payload: QuoteItemUpdateRequest,
    service: QuoteServiceDep,
    _: AgentUser,
) -> QuoteItemResponse:
    item = await service.update_item(
        quote_id,
        item_id,
        quantity=payload.quantity,
        rate=payload.rate,
        custom_description=payload.custom_description,
    )
    return _to_item_response(item)


@router.delete("/{quote_id}/items/{item_id}")
async def remove_quote_item(quote_id: str, item_id: str, service: QuoteServiceDep, _: AgentUser) -> dict[str, str]:
    await service.remove_item(quote_id, item_id)
    return {"message": "Item removed successfully"}


@router.put("/{quote_id}/status", response_model=QuoteResponse)
async def change_quote_status(
    quote_id: str,
    payload: QuoteStatusChangeRequest,
    service: QuoteServiceDep,
    _: AgentUser,
) -> QuoteResponse:
    quote = await service.change_status(
        quote_id,
        new_status=payload.status,
        agent_id=payload.agent_id,
        notes=payload.notes,
    )
    return _to_response(quote)


@router.get("/{quote_id}/logs", response_model=list[QuoteStatusLogResponse])
async def get_quote_logs(quote_id: str, service: QuoteServiceDep, _: AgentUser) -> list[QuoteStatusLogResponse]:
    return [_to_log_response(log) for log in await service.get_status_logs(quote_id)]


@router.post("/{quote_id}/convert", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def convert_quote(
    quote_id: str,
    service: QuoteServiceDep,
    _: AgentUser,
    payload: QuoteConvertRequest | None = None,
) -> InvoiceResponse:
    payload = payload or QuoteConvertRequest()
    invoice = await service.convert_to_invoice(
        quote_id,
        due_date=payload.due_date,
        agent_id=payload.agent_id,
        notes=payload.notes,
    )
    return InvoiceResponse.model_validate(invoice)
