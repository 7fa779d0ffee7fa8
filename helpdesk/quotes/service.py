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
from helpdesk.db.session import ensure_utc, utcnow
from helpdesk.directory.service import AgentService, ClientService
from helpdesk.integrations.base import StatusSyncHook
from helpdesk.invoices.models import Invoice, InvoiceItem
from helpdesk.invoices.repository import InvoiceRepository
from helpdesk.invoices.state import InvoiceStatus

from .models import Quote, QuoteItem, QuoteItemDraft, QuoteListFilters, QuoteStatusLog
from .repository import QuoteRepository
from .state import QuoteStateMachine, QuoteStatus
from .totals import compute_totals, line_total, round2, to_decimal

logger = logging.getLogger(__name__)

_NUMBER_ATTEMPTS = 3
_STATUS_ATTEMPTS = 3


class QuoteNotFoundError(NotFoundError):
    """Raised when a quote could not be located."""


class QuoteItemNotFoundError(NotFoundError):
    """Raised when a line item does not belong to the quote."""


class InvalidTransitionError(BusinessRuleError):
    """Raised when a status change is not allowed from the current status."""


class QuoteLockedError(BusinessRuleError):
    """Raised when editing a quote that is ACCEPTED or EXPIRED."""


class NotAcceptedError(BusinessRuleError):
    """Raised when converting a quote that has not been accepted."""


class AlreadyConvertedError(BusinessRuleError):
    """Raised when the quote already has an invoice."""


class NoItemsError(BusinessRuleError):
    """Raised when converting a quote without line items."""


@dataclass(slots=True)
class ItemRequest:
    """Line item as submitted by a caller; ``rate`` falls back to the service rate."""

    service_id: str
    quantity: Decimal
    rate: Decimal | None = None
    custom_description: str | None = None


@dataclass(slots=True)
class QuoteService:
    """Quote lifecycle: pricing, status transitions and conversion to invoice."""

    repository: QuoteRepository
    invoices: InvoiceRepository
    clients: ClientService
    agents: AgentService
    catalog: CatalogService
    default_tax_rate: Decimal = Decimal("15")
    validity_days: int = 30
    invoice_due_days: int = 30
    status_sync: StatusSyncHook | None = None

    async def create_quote(
        self,
        *,
        client_id: str | None,
        items: Sequence[ItemRequest] = (),
        agent_id: str | None = None,
        tax_rate: Decimal | None = None,
        discount_rate: Decimal | None = None,
        notes: str | None = None,
        terms: str | None = None,
        valid_until: datetime | None = None,
    ) -> Quote:
        if not client_id:
            raise ValidationFailedError("Client ID is required")
        await self.clients.get_client(client_id)
        if agent_id:
            await self.agents.get_agent(agent_id)
        drafts = await self._resolve_items(items)

        now = utcnow()
        quote_id = str(uuid.uuid4())
        quote_items = [self._build_item(quote_id, draft, now) for draft in drafts]
        tax = to_decimal(tax_rate) if tax_rate is not None else to_decimal(self.default_tax_rate)
        discount = to_decimal(discount_rate) if discount_rate is not None else Decimal("0")
        totals = compute_totals(quote_items, tax, discount)
        status = QuoteStateMachine.initial_state()

        for attempt in range(1, _NUMBER_ATTEMPTS + 1):
            quote = Quote(
                id=quote_id,
                number=generate_document_number("QT"),
                client_id=client_id,
                agent_id=agent_id,
                subtotal=totals.subtotal,
                tax_rate=tax,
                tax_amount=totals.tax_amount,
                discount_rate=discount,
                discount_amount=totals.discount_amount,
                total_amount=totals.total_amount,
                status=status,
                valid_until=valid_until or now + timedelta(days=self.validity_days),
                notes=notes,
                terms=terms,
                sent_at=None,
                accepted_at=None,
                expired_at=None,
                zoho_estimate_id=None,
                created_at=now,
                updated_at=now,
                items=quote_items,
                status_logs=[
                    QuoteStatusLog(
                        id=str(uuid.uuid4()),
                        quote_id=quote_id,
                        status=status,
                        changed_by=agent_id,
                        notes="Quote created",
                        created_at=now,
                    )
                ],
            )
            try:
                return await self.repository.create_quote(quote)
            except IntegrityError:
                logger.warning("Quote number %s collided (%d/%d)", quote.number, attempt, _NUMBER_ATTEMPTS)
        raise ConflictError("Could not allocate a unique quote number, retry the request")

    async def get_quote(self, quote_id: str) -> Quote:
        quote = await self.repository.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(f"Quote {quote_id} not found")
        return quote

    async def list_quotes(self, filters: QuoteListFilters) -> Page[Quote]:
        return await self.repository.list_quotes(filters)

    async def update_quote(
        self,
        quote_id: str,
        *,
        items: Sequence[ItemRequest] | None = None,
        **changes: Any,
    ) -> Quote:
        quote = await self.get_quote(quote_id)
        if QuoteStateMachine.is_locked(quote.status):
            raise QuoteLockedError(f"Cannot edit a quote with status {quote.status.value}")
        if changes.get("agent_id"):
            await self.agents.get_agent(changes["agent_id"])
        for rate_field in ("tax_rate", "discount_rate"):
            if changes.get(rate_field) is not None:
                changes[rate_field] = to_decimal(changes[rate_field])
            else:
                changes.pop(rate_field, None)

        new_items: list[QuoteItem] | None = None
        if items is not None:
            now = utcnow()
            new_items = [self._build_item(quote_id, draft, now) for draft in await self._resolve_items(items)]

        updated = await self.repository.update_quote(quote_id, changes=changes, items=new_items)
        if updated is None:
            await self._get_editable(quote_id)
            raise ConflictError(f"Quote {quote_id} changed while it was being edited")
        return updated

    async def delete_quote(self, quote_id: str) -> None:
        quote = await self.get_quote(quote_id)
        if quote.invoice_id is not None:
            raise BusinessRuleError("Cannot delete a quote that has been converted to an invoice")
        if quote.status == QuoteStatus.ACCEPTED:
            raise BusinessRuleError("Cannot delete an accepted quote")
        await self.repository.delete_quote(quote_id)

    async def list_items(self, quote_id: str) -> list[QuoteItem]:
        await self.get_quote(quote_id)
        return await self.repository.list_items(quote_id)

    async def add_item(self, quote_id: str, item: ItemRequest) -> QuoteItem:
        await self._get_editable(quote_id)
        (draft,) = await self._resolve_items([item])
        created = await self.repository.add_item(quote_id, draft, item_id=str(uuid.uuid4()))
        if created is None:
            await self._get_editable(quote_id)
            raise ConflictError(f"Quote {quote_id} changed while it was being edited")
        return created

    async def update_item(
        self,
        quote_id: str,
        item_id: str,
        *,
        quantity: Decimal | None = None,
        rate: Decimal | None = None,
        custom_description: str | None = None,
    ) -> QuoteItem:
        await self._get_editable(quote_id)
        if quantity is not None and to_decimal(quantity) <= 0:
            raise ValidationFailedError("Quantity must be greater than zero")
        if rate is not None and to_decimal(rate) < 0:
            raise ValidationFailedError("Rate must be zero or greater")
        updated = await self.repository.update_item(
            quote_id,
            item_id,
            quantity=to_decimal(quantity) if quantity is not None else None,
            rate=round2(rate) if rate is not None else None,
            custom_description=custom_description,
        )
        if updated is None:
            await self._get_editable(quote_id)
            raise QuoteItemNotFoundError(f"Item {item_id} not found on quote {quote_id}")
        return updated

    async def remove_item(self, quote_id: str, item_id: str) -> None:
        await self._get_editable(quote_id)
        if not await self.repository.remove_item(quote_id, item_id):
            await self._get_editable(quote_id)
            raise QuoteItemNotFoundError(f"Item {item_id} not found on quote {quote_id}")

    async def change_status(
        self,
        quote_id: str,
        *,
        new_status: QuoteStatus,
        agent_id: str | None = None,
        notes: str | None = None,
    ) -> Quote:
        """Move the quote to ``new_status`` and append a log row.

        The transition is validated against the status read here and written
        only if the row still holds that status. When another request changed
        it first, the check is repeated against the fresh status.
        """

        for _ in range(_STATUS_ATTEMPTS):
            quote = await self.get_quote(quote_id)
            try:
                QuoteStateMachine.assert_transition(quote.status, new_status)
            except ValueError as exc:
                raise InvalidTransitionError(str(exc)) from exc

            now = utcnow()
            log = QuoteStatusLog(
                id=str(uuid.uuid4()),
                quote_id=quote_id,
                status=new_status,
                changed_by=agent_id,
                notes=notes or f"Status changed to {new_status.value}",
                created_at=now,
            )
            updated = await self.repository.change_status(
                quote_id,
                expected_status=quote.status,
                new_status=new_status,
                log=log,
                now=now,
            )
            if updated is not None:
                break
            logger.info("Quote %s changed status concurrently, re-checking", quote_id)
        else:
            raise ConflictError(f"Quote {quote_id} is being changed by another request")
        logger.info("Quote %s moved %s -> %s", updated.number, quote.status.value, new_status.value)

        if self.status_sync is not None and new_status != quote.status:
            await self.status_sync.quote_status_changed(updated)
        return updated

    async def get_status_logs(self, quote_id: str) -> list[QuoteStatusLog]:
        await self.get_quote(quote_id)
        return await self.repository.get_status_logs(quote_id)

    async def convert_to_invoice(
        self,
        quote_id: str,
        *,
        due_date: datetime | None = None,
        agent_id: str | None = None,
        notes: str | None = None,
    ) -> Invoice:
        quote = await self.get_quote(quote_id)
        if quote.status != QuoteStatus.ACCEPTED:
            raise NotAcceptedError("Only accepted quotes can be converted to invoices")
        if quote.invoice_id is not None:
            raise AlreadyConvertedError("Quote has already been converted to an invoice")
        if not quote.items:
            raise NoItemsError("Cannot convert a quote without items")

        now = utcnow()
        due_date = ensure_utc(due_date)
        if due_date is not None and due_date <= now:
            raise ValidationFailedError("Due date must be in the future")
        if agent_id:
            await self.agents.get_agent(agent_id)

        invoice_id = str(uuid.uuid4())
        invoice = Invoice(
            id=invoice_id,
            number=generate_document_number("INV"),
            quote_id=quote.id,
            client_id=quote.client_id,
            agent_id=agent_id or quote.agent_id,
            subtotal=quote.subtotal,
            tax_rate=quote.tax_rate,
            tax_amount=quote.tax_amount,
            discount_rate=quote.discount_rate,
            discount_amount=quote.discount_amount,
            total_amount=quote.total_amount,
            status=InvoiceStatus.PENDING,
            due_date=due_date or now + timedelta(days=self.invoice_due_days),
            paid_date=None,
            notes=notes if notes is not None else quote.notes,
            zoho_invoice_id=None,
            created_at=now,
            updated_at=now,
            items=[
                InvoiceItem(
                    id=str(uuid.uuid4()),
                    invoice_id=invoice_id,
                    service_id=item.service_id,
                    quantity=item.quantity,
                    rate=item.rate,
                    line_total=item.line_total,
                    description=item.custom_description,
                    created_at=now,
                )
                for item in quote.items
            ],
        )
        log = QuoteStatusLog(
            id=str(uuid.uuid4()),
            quote_id=quote.id,
            status=quote.status,
            changed_by=agent_id or quote.agent_id,
            notes=f"Converted to invoice {invoice.number}",
            created_at=now,
        )
        for attempt in range(1, _NUMBER_ATTEMPTS + 1):
            try:
                created = await self.invoices.create_invoice(invoice, quote_log=log)
            except IntegrityError as exc:
                if await self.invoices.find_invoice_id_for_quote(quote.id) is not None:
                    raise AlreadyConvertedError("Quote has already been converted to an invoice") from exc
                logger.warning("Invoice number %s collided (%d/%d)", invoice.number, attempt, _NUMBER_ATTEMPTS)
                invoice.number = generate_document_number("INV")
                log.notes = f"Converted to invoice {invoice.number}"
                continue
            logger.info("Converted quote %s to invoice %s", quote.number, created.number)
            return created
        raise ConflictError("Could not allocate a unique invoice number, retry the request")

    async def _get_editable(self, quote_id: str) -> Quote:
        quote = await self.get_quote(quote_id)
        if QuoteStateMachine.is_locked(quote.status):
            raise QuoteLockedError(f"Cannot modify items on a quote with status {quote.status.value}")
        return quote

    async def _resolve_items(self, items: Sequence[ItemRequest]) -> list[QuoteItemDraft]:
        drafts: list[QuoteItemDraft] = []
        for item in items:
            if not item.service_id or item.quantity is None:
                raise ValidationFailedError("Service ID and quantity are required")
            quantity = to_decimal(item.quantity)
            if quantity <= 0:
                raise ValidationFailedError("Quantity must be greater than zero")
            service = await self.catalog.get_active_service(item.service_id)
            rate = round2(item.rate) if item.rate is not None else service.rate
            if rate < 0:
                raise ValidationFailedError("Rate must be zero or greater")
            drafts.append(
                QuoteItemDraft(
                    service_id=service.id,
                    quantity=quantity,
                    rate=rate,
                    custom_description=item.custom_description,
                )
            )
        return drafts

    @staticmethod
    def _build_item(quote_id: str, draft: QuoteItemDraft, now: datetime) -> QuoteItem:
        return QuoteItem(
            id=str(uuid.uuid4()),
            quote_id=quote_id,
            service_id=draft.service_id,
            quantity=draft.quantity,
            rate=draft.rate,
            line_total=line_total(draft.quantity, draft.rate),
            custom_description=draft.custom_description,
            created_at=now,
        )
