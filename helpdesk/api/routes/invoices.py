from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.api.pagination import MAX_PAGE_SIZE, PaginatedResponse, paginated
from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import InvoiceServiceDep
from helpdesk.invoices.models import Bill, Invoice, InvoiceListFilters
from helpdesk.invoices.service import InvoiceLine
from helpdesk.invoices.state import BillStatus, InvoiceStatus

router = APIRouter(prefix="/invoices", tags=["invoices"])


class InvoiceLineRequest(BaseModel):
    service_id: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    rate: Decimal | None = Field(default=None, ge=0)
    description: str | None = Field(default=None, max_length=500)


class InvoiceCreateRequest(BaseModel):
    client_id: str | None = None
    agent_id: str | None = None
    quote_id: str | None = None
    items: list[InvoiceLineRequest] = Field(default_factory=list)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    discount_rate: Decimal | None = Field(default=None, ge=0, le=100)
    due_date: datetime | None = None
    notes: str | None = None


class InvoiceUpdateRequest(BaseModel):
    agent_id: str | None = None
    due_date: datetime | None = None
    notes: str | None = None


class InvoiceStatusChangeRequest(BaseModel):
    status: InvoiceStatus
    paid_date: datetime | None = None
    notes: str | None = None


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_id: str
    service_id: str
    quantity: Decimal
    rate: Decimal
    line_total: Decimal
    description: str | None
    created_at: datetime


class BillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_id: str
    agent_id: str
    total_amount: Decimal
    status: BillStatus
    created_at: datetime


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    number: str
    quote_id: str | None
    client_id: str
    agent_id: str | None
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    status: InvoiceStatus
    due_date: datetime | None
    paid_date: datetime | None
    notes: str | None
    zoho_invoice_id: str | None
    created_at: datetime
    updated_at: datetime
    items: list[InvoiceItemResponse] = Field(default_factory=list)
    bill: BillResponse | None = None


def _to_response(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse.model_validate(invoice)


def _to_bill_response(bill: Bill) -> BillResponse:
    return BillResponse.model_validate(bill)


@router.get("", response_model=PaginatedResponse[InvoiceResponse])
async def list_invoices(
    service: InvoiceServiceDep,
    _: AgentUser,
    search: str | None = Query(default=None),
    status_filter: InvoiceStatus | None = Query(default=None, alias="status"),
    agent_id: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    sort_by: Literal["created_at", "updated_at", "total_amount", "number", "due_date"] = Query(
        default="created_at"
    ),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
) -> PaginatedResponse[InvoiceResponse]:
    result = await service.list_invoices(
        InvoiceListFilters(
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


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(payload: InvoiceCreateRequest, service: InvoiceServiceDep, _: AgentUser) -> InvoiceResponse:
    invoice = await service.create_invoice(
        client_id=payload.client_id,
        agent_id=payload.agent_id,
        quote_id=payload.quote_id,
        items=[
            InvoiceLine(
                service_id=line.service_id,
                quantity=line.quantity,
                rate=line.rate,
                description=line.description,
            )
            for line in payload.items
        ],
        tax_rate=payload.tax_rate,
        discount_rate=payload.discount_rate,
        due_date=payload.due_date,
        notes=payload.notes,
    )
    return _to_response(invoice)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: str, service: InvoiceServiceDep, _: AgentUser) -> InvoiceResponse:
    return _to_response(await service.get_invoice(invoice_id))


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdateRequest,
    service: InvoiceServiceDep,
    _: AgentUser,
) -> InvoiceResponse:
    invoice = await service.update_invoice(invoice_id, **payload.model_dump(exclude_unset=True))
    return _to_response(invoice)


@router.put("/{invoice_id}/status", response_model=InvoiceResponse)
async def change_invoice_status(
    invoice_id: str,
    payload: InvoiceStatusChangeRequest,
    service: InvoiceServiceDep,
    _: AgentUser,
) -> InvoiceResponse:
    invoice = await service.change_status(
        invoice_id,
        new_status=payload.status,
        paid_date=payload.paid_date,
        notes=payload.notes,
    )
    return _to_response(invoice)


@router.delete("/{invoice_id}")
async def delete_invoice(invoice_id: str, service: InvoiceServiceDep, user: AgentUser) -> dict[str, str]:
    await service.delete_invoice(invoice_id, actor_id=user.username)
    return {"message": "Invoice deleted successfully"}


@router.post("/{invoice_id}/bill", response_model=BillResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice_bill(invoice_id: str, service: InvoiceServiceDep, _: AgentUser) -> BillResponse:
    return _to_bill_response(await service.create_bill(invoice_id))
