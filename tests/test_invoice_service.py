from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from helpdesk.core.errors import BusinessRuleError, ConflictError, ValidationFailedError
from helpdesk.invoices.repository import InvoiceRepository
from helpdesk.invoices.service import (
    DuplicateBillError,
    DuplicateInvoiceError,
    InvoiceDeletionError,
    InvoiceLine,
    InvoiceNotFoundError,
    InvoiceService,
)
from helpdesk.invoices.state import BillStatus, InvoiceStatus
from helpdesk.quotes.service import ItemRequest
from helpdesk.quotes.state import QuoteStatus


async def _converted(stack, customer, service, agent=None):
    quote = await stack.quotes.create_quote(
        client_id=customer.id,
        agent_id=agent.id if agent else None,
        items=[ItemRequest(service_id=service.id, quantity=Decimal("1"))],
        discount_rate=Decimal("10"),
    )
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED)
    return quote, await stack.quotes.convert_to_invoice(quote.id)


@pytest.mark.asyncio
async def test_direct_invoice_uses_zero_tax_by_default(stack, customer, consulting):
    invoice = await stack.invoices.create_invoice(
        client_id=customer.id,
        items=[InvoiceLine(service_id=consulting.id, quantity=Decimal("2"), rate=Decimal("125.50"))],
    )

    assert invoice.subtotal == Decimal("251.00")
    assert invoice.tax_amount == Decimal("0.00")
    assert invoice.total_amount == Decimal("251.00")
    assert invoice.due_date is not None


@pytest.mark.asyncio
async def test_direct_invoice_requires_items(stack, customer):
    with pytest.raises(ValidationFailedError):
        await stack.invoices.create_invoice(client_id=customer.id, items=[])


@pytest.mark.asyncio
async def test_second_invoice_for_quote_is_rejected(stack, customer, consulting):
    quote, _ = await _converted(stack, customer, consulting)

    with pytest.raises(DuplicateInvoiceError):
        await stack.invoices.create_invoice(
            client_id=customer.id,
            quote_id=quote.id,
            items=[InvoiceLine(service_id=consulting.id, quantity=Decimal("1"))],
        )


@pytest.mark.asyncio
async def test_paid_date_follows_status(stack, customer, consulting):
    _, invoice = await _converted(stack, customer, consulting)

    paid = await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID)
    assert paid.paid_date is not None

    explicit = datetime(2026, 1, 15, tzinfo=timezone.utc)
    paid = await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID, paid_date=explicit)
    assert paid.paid_date == explicit

    reopened = await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.OVERDUE)
    assert reopened.paid_date is None


@pytest.mark.asyncio
async def test_status_sync_runs_only_on_change(make_stack, customer, consulting):
    hook = AsyncMock()
    stack = make_stack(status_sync=hook)
    _, invoice = await _converted(stack, customer, consulting)

    await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.SENT)
    await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.SENT)

    hook.invoice_status_changed.assert_awaited_once()


@pytest.mark.asyncio
async def test_deleting_invoice_reopens_quote(stack, customer, consulting):
    quote, invoice = await _converted(stack, customer, consulting)

    await stack.invoices.delete_invoice(invoice.id, actor_id="admin")

    with pytest.raises(InvoiceNotFoundError):
        await stack.invoices.get_invoice(invoice.id)
    reopened = await stack.quotes.get_quote(quote.id)
    assert reopened.status == QuoteStatus.ACCEPTED
    assert reopened.invoice_id is None
    assert reopened.status_logs[-1].notes == f"Invoice {invoice.number} deleted"
    assert reopened.status_logs[-1].changed_by == "admin"

    again = await stack.quotes.convert_to_invoice(quote.id)
    assert again.quote_id == quote.id


@pytest.mark.asyncio
async def test_paid_invoice_cannot_be_deleted(stack, customer, consulting):
    _, invoice = await _converted(stack, customer, consulting)
    await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID)

    with pytest.raises(InvoiceDeletionError):
        await stack.invoices.delete_invoice(invoice.id)


@pytest.mark.asyncio
async def test_commission_bill_for_paid_invoice(stack, customer, consulting, agent):
    _, invoice = await _converted(stack, customer, consulting, agent)

    with pytest.raises(BusinessRuleError):
        await stack.invoices.create_bill(invoice.id)

    await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID)
    bill = await stack.invoices.create_bill(invoice.id)

    assert bill.agent_id == agent.id
    assert bill.total_amount == Decimal("103.50")
    assert bill.status == BillStatus.PENDING
    assert (await stack.invoices.get_invoice(invoice.id)).bill.id == bill.id

    with pytest.raises(DuplicateBillError):
        await stack.invoices.create_bill(invoice.id)
    with pytest.raises(InvoiceDeletionError):
        await stack.invoices.delete_invoice(invoice.id)


class _StaleInvoiceReads(InvoiceRepository):
    """Returns a snapshot taken before a concurrent commit on the first read."""

    def __init__(self, session_factory, snapshot):
        super().__init__(session_factory)
        self._snapshot = snapshot

    async def get_invoice(self, invoice_id):
        snapshot, self._snapshot = self._snapshot, None
        if snapshot is not None:
            return snapshot
        return await super().get_invoice(invoice_id)


@pytest.mark.asyncio
async def test_delete_rechecks_paid_status_inside_the_write(stack, customer, consulting):
    quote, invoice = await _converted(stack, customer, consulting)
    await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID)
    racing = InvoiceService(
        repository=_StaleInvoiceReads(stack.session_factory, invoice),
        quotes=stack.quote_repository,
        clients=stack.clients,
        agents=stack.agents,
        catalog=stack.catalog,
    )

    with pytest.raises(InvoiceDeletionError):
        await racing.delete_invoice(invoice.id)

    stored = await stack.invoices.get_invoice(invoice.id)
    assert stored.status == InvoiceStatus.PAID
    assert len(stored.items) == 1
    assert (await stack.quotes.get_quote(quote.id)).invoice_id == invoice.id


@pytest.mark.asyncio
async def test_concurrent_payment_and_delete_never_lose_a_paid_invoice(concurrent_stack):
    stack = concurrent_stack
    client = await stack.clients.create_client(name="Race Co", email="race@co.test")
    service = await stack.catalog.create_service(
        name="Audit", category="Advisory", rate=Decimal("300"), unit="per day"
    )
    invoice = await stack.invoices.create_invoice(
        client_id=client.id,
        items=[InvoiceLine(service_id=service.id, quantity=Decimal("1"))],
    )

    paid, deleted = await asyncio.gather(
        stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID),
        stack.invoices.delete_invoice(invoice.id),
        return_exceptions=True,
    )

    stored = await stack.invoice_repository.get_invoice(invoice.id)
    if isinstance(deleted, Exception):
        assert isinstance(deleted, InvoiceDeletionError)
        assert paid.status == InvoiceStatus.PAID
        assert stored is not None
        assert stored.status == InvoiceStatus.PAID
    else:
        assert isinstance(paid, InvoiceNotFoundError)
        assert stored is None


@pytest.mark.asyncio
async def test_status_change_can_replace_notes(stack, customer, consulting):
    _, invoice = await _converted(stack, customer, consulting)

    sent = await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.SENT, notes="Emailed to AP")
    assert sent.notes == "Emailed to AP"

    paid = await stack.invoices.change_status(invoice.id, new_status=InvoiceStatus.PAID)
    assert paid.notes == "Emailed to AP"


@pytest.mark.asyncio
async def test_direct_invoice_number_collisions(stack, customer, consulting, monkeypatch):
    monkeypatch.setattr("helpdesk.invoices.service.generate_document_number", lambda prefix: "INV-000000000AAA")
    lines = [InvoiceLine(service_id=consulting.id, quantity=Decimal("1"))]
    await stack.invoices.create_invoice(client_id=customer.id, items=lines)

    with pytest.raises(ConflictError) as excinfo:
        await stack.invoices.create_invoice(client_id=customer.id, items=lines)
    assert not isinstance(excinfo.value, DuplicateInvoiceError)
