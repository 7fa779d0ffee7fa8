from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy.exc import IntegrityError

from helpdesk.catalog.service import CatalogService
from helpdesk.core.errors import BusinessRuleError, ConflictError, NotFoundError, ValidationFailedError
from helpdesk.core.numbering import generate_document_number
from helpdesk.db.pagination import Page
from helpdesk.db.session import utcnow
from helpdesk.directory.service import AgentService, ClientService
from helpdesk.integrations.base import StatusSyncHook
from helpdesk.quotes.models import QuoteStatusLog
from helpdesk.quotes.repository import QuoteRepository
from helpdesk.quotes.service import QuoteNotFoundError
from helpdesk.quotes.state import QuoteStatus
from helpdesk.quotes.totals import HUNDRED, compute_totals, line_total, round2, to_decimal

from .models import Bill, Invoice, InvoiceItem, InvoiceListFilters
from .repository import InvoiceRepository
from .state import BillStatus, InvoiceStatus

logger = logging.getLogger(__name__)

_NUMBER_ATTEMPTS = 3


class InvoiceNotFoundError(NotFoundError):
    """Raised when an invoice could not be located."""


class DuplicateInvoiceError(ConflictError):
    """Raised when the referenced quote already has an invoice."""


class InvoiceDeletionError(BusinessRuleError):
    """Raised when deleting a paid or billed invoice."""


class DuplicateBillError(ConflictError):
    """Raised when the invoice already carries a commission bill."""


@dataclass(slots=True)
class InvoiceLine:
    service_id: str
    quantity: Decimal
    rate: Decimal | None = None
    description: str | None = None


@dataclass(slots=True)
class InvoiceService:
    """Invoice lifecycle: direct creation, payment tracking and deletion rules."""

    repository: InvoiceRepository
    quotes: QuoteRepository
    clients: ClientService
    agents: AgentService
    catalog: CatalogService
    due_days: int = 30
    status_sync: StatusSyncHook | None = None

    async def create_invoice(
        self,
        *,
        client_id: str | None,
        items: Sequence[InvoiceLine],
        agent_id: str | None = None,
        quote_id: str | None = None,
        tax_rate: Decimal | None = None,
        discount_rate: Decimal | None = None,
        due_date: datetime | None = None,
        notes: str | None = None,
    ) -> Invoice:
        if not client_id:
            raise ValidationFailedError("Client ID is required")
        if not items:
            raise ValidationFailedError("At least one item is required")
        await self.clients.get_client(client_id)
        if agent_id:
            await self.agents.get_agent(agent_id)
        if quote_id:
            if await self.quotes.get_quote(quote_id) is None:
                raise QuoteNotFoundError(f"Quote {quote_id} not found")
            if await self.repository.find_invoice_id_for_quote(quote_id) is not None:
                raise DuplicateInvoiceError("An invoice already exists for this quote")

        now = utcnow()
        invoice_id = str(uuid.uuid4())
        invoice_items: list[InvoiceItem] = []
        for line in items:
            quantity = to_decimal(line.quantity)
            if quantity <= 0:
                raise ValidationFailedError("Quantity must be greater than zero")
            service = await self.catalog.get_service(line.service_id)
            rate = round2(line.rate) if line.rate is not None else service.rate
            invoice_items.append(
                InvoiceItem(
                    id=str(uuid.uuid4()),
                    invoice_id=invoice_id,
                    service_id=service.id,
                    quantity=quantity,
                    rate=rate,
                    line_total=line_total(quantity, rate),
                    description=line.description,
                    created_at=now,
                )
            )

        tax = to_decimal(tax_rate) if tax_rate is not None else Decimal("0")
        discount = to_decimal(discount_rate) if discount_rate is not None else Decimal("0")
        totals = compute_totals(invoice_items, tax, discount)
        invoice = Invoice(
            id=invoice_id,
            number=generate_document_number("INV"),
            quote_id=quote_id,
            client_id=client_id,
            agent_id=agent_id,
            subtotal=totals.subtotal,
            tax_rate=tax,
            tax_amount=totals.tax_amount,
            discount_rate=discount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            status=InvoiceStatus.PENDING,
            due_date=due_date or now + timedelta(days=self.due_days),
            paid_date=None,
            notes=notes,
            zoho_invoice_id=None,
            created_at=now,
            updated_at=now,
            items=invoice_items,
        )
        for attempt in range(1, _NUMBER_ATTEMPTS + 1):
            try:
                return await self.repository.create_invoice(invoice)
            except IntegrityError as exc:
                if quote_id and await self.repository.find_invoice_id_for_quote(quote_id) is not None:
                    raise DuplicateInvoiceError("An invoice already exists for this quote") from exc
                logger.warning("Invoice number %s collided (%d/%d)", invoice.number, attempt, _NUMBER_ATTEMPTS)
                invoice.number = generate_document_number("INV")
        raise ConflictError("Could not allocate a unique invoice number, retry the request")

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def list_invoices(self, filters: InvoiceListFilters) -> Page[Invoice]:
        return await self.repository.list_invoices(filters)

    async def update_invoice(self, invoice_id: str, **changes: Any) -> Invoice:
        await self.get_invoice(invoice_id)
        if changes.get("agent_id"):
            await self.agents.get_agent(changes["agent_id"])
        updated = await self.repository.update_invoice(invoice_id, changes=changes, now=utcnow())
        if updated is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return updated

    async def change_status(
        self,
        invoice_id: str,
        *,
        new_status: InvoiceStatus,
        paid_date: datetime | None = None,
        notes: str | None = None,
    ) -> Invoice:
        current = await self.get_invoice(invoice_id)
        updated = await self.repository.change_status(
            invoice_id,
            status=new_status,
            paid_date=paid_date,
            notes=notes,
            now=utcnow(),
        )
        if updated is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        logger.info("Invoice %s moved %s -> %s", updated.number, current.status.value, new_status.value)

        if self.status_sync is not None and new_status != current.status:
            await self.status_sync.invoice_status_changed(updated)
        return updated

    async def delete_invoice(self, invoice_id: str, *, actor_id: str | None = None) -> None:
        invoice = await self.get_invoice(invoice_id)
        self._assert_deletable(invoice)

        log = None
        if invoice.quote_id is not None:
            log = QuoteStatusLog(
                id=str(uuid.uuid4()),
                quote_id=invoice.quote_id,
                status=QuoteStatus.ACCEPTED,
                changed_by=actor_id,
                notes=f"Invoice {invoice.number} deleted",
                created_at=utcnow(),
            )
        if not await self.repository.delete_invoice(invoice_id, quote_log=log):
            # paid, billed or removed since the read above
            self._assert_deletable(await self.get_invoice(invoice_id))
            raise ConflictError(f"Invoice {invoice_id} changed while it was being deleted")
        logger.info("Deleted invoice %s", invoice.number)

    async def create_bill(self, invoice_id: str) -> Bill:
        invoice = await self.get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.PAID:
            raise BusinessRuleError("Only paid invoices can be billed")
        if invoice.agent_id is None:
            raise BusinessRuleError("Invoice has no agent to bill")
        if invoice.bill is not None:
            raise DuplicateBillError("Invoice has already been billed")

        agent = await self.agents.get_agent(invoice.agent_id)
        bill = Bill(
            id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            agent_id=agent.id,
            total_amount=round2(invoice.total_amount * agent.commission_rate / HUNDRED),
            status=BillStatus.PENDING,
            created_at=utcnow(),
        )
        try:
            return await self.repository.create_bill(bill)
        except IntegrityError as exc:
            raise DuplicateBillError("Invoice has already been billed") from exc

    @staticmethod
    def _assert_deletable(invoice: Invoice) -> None:
        if invoice.status == InvoiceStatus.PAID:
            raise InvoiceDeletionError("Cannot delete a paid invoice")
        if invoice.bill is not None:
            raise InvoiceDeletionError("Cannot delete an invoice that has been billed")
