from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from .state import QuoteStatus


@dataclass(slots=True)
class QuoteItem:
    """Priced service line on a quote."""

    id: str
    quote_id: str
    service_id: str
    quantity: Decimal
    rate: Decimal
    line_total: Decimal
    custom_description: str | None
    created_at: datetime


@dataclass(slots=True)
class QuoteStatusLog:
    """History entry written for every quote status change."""

    id: str
    quote_id: str
    status: QuoteStatus
    changed_by: str | None
    notes: str
    created_at: datetime


@dataclass(slots=True)
class Quote:
    """Aggregate representing a quote with its lines and status history."""

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
    created_at: datetime
    updated_at: datetime
    invoice_id: str | None = None
    items: list[QuoteItem] = field(default_factory=list)
    status_logs: list[QuoteStatusLog] = field(default_factory=list)


@dataclass(slots=True)
class QuoteItemDraft:
    """Validated line ready to be written; rate is already resolved."""

    service_id: str
    quantity: Decimal
    rate: Decimal
    custom_description: str | None = None


@dataclass(slots=True)
class QuoteListFilters:
    search: str | None = None
    status: QuoteStatus | None = None
    agent_id: str | None = None
    client_id: str | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20
