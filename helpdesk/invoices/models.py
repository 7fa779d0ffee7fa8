from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from .state import BillStatus, InvoiceStatus


@dataclass(slots=True)
class InvoiceItem:
    id: str
    invoice_id: str
    service_id: str
    quantity: Decimal
    rate: Decimal
    line_total: Decimal
    description: str | None
    created_at: datetime


@dataclass(slots=True)
class Bill:
    """Commission owed to the invoice's agent."""

    id: str
    invoice_id: str
    agent_id: str
    total_amount: Decimal
    status: BillStatus
    created_at: datetime


@dataclass(slots=True)
class Invoice:
    """Aggregate representing an invoice and its lines."""

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
    items: list[InvoiceItem] = field(default_factory=list)
    bill: Bill | None = None


@dataclass(slots=True)
class InvoiceListFilters:
    search: str | None = None
    status: InvoiceStatus | None = None
    agent_id: str | None = None
    client_id: str | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20
