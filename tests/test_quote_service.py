from __future__ import annotations

import asyncio
import itertools
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from helpdesk.catalog.service import InactiveServiceError
from helpdesk.core.errors import BusinessRuleError, ConflictError, ValidationFailedError
from helpdesk.core.numbering import generate_document_number
from helpdesk.directory.service import ClientNotFoundError
from helpdesk.invoices.service import InvoiceLine
from helpdesk.invoices.state import InvoiceStatus
from helpdesk.quotes.models import QuoteListFilters
from helpdesk.quotes.repository import QuoteRepository
from helpdesk.quotes.service import (
    AlreadyConvertedError,
    InvalidTransitionError,
    ItemRequest,
    NoItemsError,
    NotAcceptedError,
    QuoteLockedError,
    QuoteService,
)
from helpdesk.quotes.state import QuoteStateMachine, QuoteStatus


async def _quote(stack, customer, service, **kwargs):
    kwargs.setdefault("discount_rate", Decimal("10"))
    return await stack.quotes.create_quote(
        client_id=customer.id,
        items=[ItemRequest(service_id=service.id, quantity=Decimal("1"))],
        **kwargs,
    )


async def _accepted(stack, customer, service):
    quote = await _quote(stack, customer, service)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)
    return await stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED)


@pytest.mark.asyncio
async def test_create_quote_prices_items_and_logs_creation(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)

    assert re.match(r"^QT-\d{8}[0-9A-F]{4}$", quote.number)
    assert quote.status == QuoteStatus.DRAFT
    assert quote.subtotal == Decimal("1000.00")
    assert quote.discount_amount == Decimal("100.00")
    assert quote.tax_amount == Decimal("135.00")
    assert quote.total_amount == Decimal("1035.00")
    assert quote.valid_until is not None
    assert [log.status for log in quote.status_logs] == [QuoteStatus.DRAFT]

    stored = await stack.quotes.get_quote(quote.id)
    assert stored.total_amount == Decimal("1035.00")
    assert stored.items[0].rate == Decimal("1000.00")


@pytest.mark.asyncio
async def test_create_quote_requires_existing_client(stack, consulting):
    with pytest.raises(ValidationFailedError):
        await stack.quotes.create_quote(client_id=None)
    with pytest.raises(ClientNotFoundError):
        await stack.quotes.create_quote(client_id="missing")


@pytest.mark.asyncio
async def test_archived_service_cannot_be_quoted(stack, customer, consulting):
    await stack.catalog.update_service(consulting.id, active=False)

    with pytest.raises(InactiveServiceError):
        await _quote(stack, customer, consulting)


@pytest.mark.asyncio
async def test_status_changes_append_logs_and_stamp_timestamps(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)

    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT, notes="emailed")
    accepted = await stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED)

    logs = await stack.quotes.get_status_logs(quote.id)
    assert [log.status for log in logs] == [QuoteStatus.DRAFT, QuoteStatus.SENT, QuoteStatus.ACCEPTED]
    assert logs[1].notes == "emailed"
    assert logs[2].notes == "Status changed to ACCEPTED"
    assert accepted.sent_at is not None
    assert accepted.accepted_at is not None


@pytest.mark.asyncio
async def test_invalid_transition_leaves_quote_untouched(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)

    with pytest.raises(InvalidTransitionError):
        await stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED)

    stored = await stack.quotes.get_quote(quote.id)
    assert stored.status == QuoteStatus.DRAFT
    assert stored.accepted_at is None
    assert len(stored.status_logs) == 1


@pytest.mark.asyncio
async def test_same_state_change_logs_without_sync(make_stack, customer, consulting):
    hook = AsyncMock()
    stack = make_stack(status_sync=hook)
    quote = await _quote(stack, customer, consulting)

    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)

    assert len(await stack.quotes.get_status_logs(quote.id)) == 3
    hook.quote_status_changed.assert_awaited_once()


@pytest.mark.asyncio
async def test_item_edits_recompute_totals(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting, discount_rate=Decimal("0"))

    added = await stack.quotes.add_item(
        quote.id,
        ItemRequest(service_id=consulting.id, quantity=Decimal("2"), rate=Decimal("50")),
    )
    assert added.line_total == Decimal("100.00")
    assert (await stack.quotes.get_quote(quote.id)).subtotal == Decimal("1100.00")

    await stack.quotes.update_item(quote.id, added.id, quantity=Decimal("3"))
    refreshed = await stack.quotes.get_quote(quote.id)
    assert refreshed.subtotal == Decimal("1150.00")
    assert refreshed.tax_amount == Decimal("172.50")
    assert refreshed.total_amount == Decimal("1322.50")

    await stack.quotes.remove_item(quote.id, added.id)
    assert (await stack.quotes.get_quote(quote.id)).subtotal == Decimal("1000.00")


@pytest.mark.asyncio
async def test_rate_change_recomputes_totals(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)

    updated = await stack.quotes.update_quote(quote.id, tax_rate=Decimal("0"), discount_rate=Decimal("0"))

    assert updated.total_amount == Decimal("1000.00")


@pytest.mark.asyncio
async def test_accepted_quote_is_locked(stack, customer, consulting):
    quote = await _accepted(stack, customer, consulting)

    with pytest.raises(QuoteLockedError):
        await stack.quotes.add_item(quote.id, ItemRequest(service_id=consulting.id, quantity=Decimal("1")))
    with pytest.raises(QuoteLockedError):
        await stack.quotes.update_quote(quote.id, notes="late edit")
    with pytest.raises(QuoteLockedError):
        await stack.quotes.remove_item(quote.id, quote.items[0].id)


@pytest.mark.asyncio
async def test_convert_copies_totals_and_items(stack, customer, consulting):
    quote = await _accepted(stack, customer, consulting)

    invoice = await stack.quotes.convert_to_invoice(quote.id)

    assert invoice.number.startswith("INV-")
    assert invoice.status == InvoiceStatus.PENDING
    assert invoice.quote_id == quote.id
    assert invoice.total_amount == quote.total_amount == Decimal("1035.00")
    assert [item.line_total for item in invoice.items] == [item.line_total for item in quote.items]

    converted = await stack.quotes.get_quote(quote.id)
    assert converted.invoice_id == invoice.id
    assert converted.status_logs[-1].notes == f"Converted to invoice {invoice.number}"


@pytest.mark.asyncio
async def test_convert_requires_accepted_quote_with_items(stack, customer, consulting):
    draft = await _quote(stack, customer, consulting)
    with pytest.raises(NotAcceptedError):
        await stack.quotes.convert_to_invoice(draft.id)

    empty = await stack.quotes.create_quote(client_id=customer.id)
    await stack.quotes.change_status(empty.id, new_status=QuoteStatus.SENT)
    await stack.quotes.change_status(empty.id, new_status=QuoteStatus.ACCEPTED)
    with pytest.raises(NoItemsError):
        await stack.quotes.convert_to_invoice(empty.id)


@pytest.mark.asyncio
async def test_convert_rejects_past_due_date(stack, customer, consulting):
    quote = await _accepted(stack, customer, consulting)

    with pytest.raises(ValidationFailedError):
        await stack.quotes.convert_to_invoice(quote.id, due_date=datetime.now(timezone.utc) - timedelta(days=1))


@pytest.mark.asyncio
async def test_quote_converts_exactly_once(stack, customer, consulting):
    quote = await _accepted(stack, customer, consulting)
    stale = await stack.quotes.get_quote(quote.id)

    await stack.quotes.convert_to_invoice(quote.id)
    with pytest.raises(AlreadyConvertedError):
        await stack.quotes.convert_to_invoice(quote.id)

    # a request that read the quote before the first conversion committed
    racing = QuoteService(
        repository=AsyncMock(get_quote=AsyncMock(return_value=stale)),
        invoices=stack.invoice_repository,
        clients=stack.clients,
        agents=stack.agents,
        catalog=stack.catalog,
    )
    with pytest.raises(AlreadyConvertedError):
        await racing.convert_to_invoice(quote.id)

    assert await stack.invoice_repository.find_invoice_id_for_quote(quote.id) is not None


@pytest.mark.asyncio
async def test_list_quotes_filters_and_paginates(stack, customer, consulting):
    for _ in range(3):
        await _quote(stack, customer, consulting)
    sent = await _quote(stack, customer, consulting)
    await stack.quotes.change_status(sent.id, new_status=QuoteStatus.SENT)

    page = await stack.quotes.list_quotes(QuoteListFilters(page=1, limit=2))
    assert page.total == 4
    assert page.pages == 2
    assert len(page.items) == 2

    only_sent = await stack.quotes.list_quotes(QuoteListFilters(status=QuoteStatus.SENT))
    assert [quote.id for quote in only_sent.items] == [sent.id]


@pytest.mark.asyncio
async def test_delete_rules(stack, customer, consulting):
    draft = await _quote(stack, customer, consulting)
    await stack.quotes.delete_quote(draft.id)
    assert await stack.quote_repository.get_quote(draft.id) is None

    accepted = await _accepted(stack, customer, consulting)
    with pytest.raises(BusinessRuleError):
        await stack.quotes.delete_quote(accepted.id)


class _StaleReads(QuoteRepository):
    """Serves the given snapshots before reading the database, like a request
    that loaded the quote just before another request committed."""

    def __init__(self, session_factory, *snapshots):
        super().__init__(session_factory)
        self._snapshots = list(snapshots)

    async def get_quote(self, quote_id):
        if self._snapshots:
            return self._snapshots.pop(0)
        return await super().get_quote(quote_id)


def _quote_service(stack, repository):
    return QuoteService(
        repository=repository,
        invoices=stack.invoice_repository,
        clients=stack.clients,
        agents=stack.agents,
        catalog=stack.catalog,
    )


@pytest.mark.asyncio
async def test_accepted_is_terminal_end_to_end(stack, customer, consulting):
    quote = await _accepted(stack, customer, consulting)

    with pytest.raises(InvalidTransitionError):
        await stack.quotes.change_status(quote.id, new_status=QuoteStatus.REJECTED)

    stored = await stack.quotes.get_quote(quote.id)
    assert stored.status == QuoteStatus.ACCEPTED
    assert [log.status for log in stored.status_logs] == [
        QuoteStatus.DRAFT,
        QuoteStatus.SENT,
        QuoteStatus.ACCEPTED,
    ]


@pytest.mark.asyncio
async def test_transition_is_rechecked_against_committed_status(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)
    sent = await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED)

    racing = _quote_service(stack, _StaleReads(stack.session_factory, sent))
    with pytest.raises(InvalidTransitionError):
        await racing.change_status(quote.id, new_status=QuoteStatus.REJECTED)

    stored = await stack.quotes.get_quote(quote.id)
    assert stored.status == QuoteStatus.ACCEPTED
    assert len(stored.status_logs) == 3


@pytest.mark.asyncio
async def test_concurrent_transitions_from_sent_have_one_winner(concurrent_stack):
    stack = concurrent_stack
    client = await stack.clients.create_client(name="Race Co", email="race@co.test")
    service = await stack.catalog.create_service(
        name="Audit", category="Advisory", rate=Decimal("300"), unit="per day"
    )
    quote = await _quote(stack, client, service)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)

    results = await asyncio.gather(
        stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED),
        stack.quotes.change_status(quote.id, new_status=QuoteStatus.REJECTED),
        return_exceptions=True,
    )

    winners = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(winners) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidTransitionError)

    stored = await stack.quotes.get_quote(quote.id)
    assert stored.status == winners[0].status
    assert [log.status for log in stored.status_logs] == [
        QuoteStatus.DRAFT,
        QuoteStatus.SENT,
        winners[0].status,
    ]
    if stored.status == QuoteStatus.REJECTED:
        assert stored.accepted_at is None


@pytest.mark.asyncio
async def test_item_edits_recheck_lock_inside_the_write(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)
    draft = await stack.quotes.get_quote(quote.id)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.SENT)
    await stack.quotes.change_status(quote.id, new_status=QuoteStatus.ACCEPTED)

    with pytest.raises(QuoteLockedError):
        await _quote_service(stack, _StaleReads(stack.session_factory, draft)).add_item(
            quote.id, ItemRequest(service_id=consulting.id, quantity=Decimal("5"))
        )
    with pytest.raises(QuoteLockedError):
        await _quote_service(stack, _StaleReads(stack.session_factory, draft)).update_item(
            quote.id, draft.items[0].id, quantity=Decimal("9")
        )
    with pytest.raises(QuoteLockedError):
        await _quote_service(stack, _StaleReads(stack.session_factory, draft)).remove_item(
            quote.id, draft.items[0].id
        )
    with pytest.raises(QuoteLockedError):
        await _quote_service(stack, _StaleReads(stack.session_factory, draft)).update_quote(
            quote.id, discount_rate=Decimal("50")
        )

    stored = await stack.quotes.get_quote(quote.id)
    assert [item.quantity for item in stored.items] == [Decimal("1")]
    assert stored.discount_rate == Decimal("10")
    assert stored.total_amount == Decimal("1035.00")


@pytest.mark.asyncio
async def test_recomputing_unchanged_items_is_stable(stack, customer, consulting):
    quote = await _quote(stack, customer, consulting)
    await stack.quotes.add_item(
        quote.id, ItemRequest(service_id=consulting.id, quantity=Decimal("0.5"), rate=Decimal("33.33"))
    )
    first = await stack.quotes.update_quote(quote.id)
    second = await stack.quotes.update_quote(quote.id)

    assert (first.subtotal, first.discount_amount, first.tax_amount, first.total_amount) == (
        second.subtotal,
        second.discount_amount,
        second.tax_amount,
        second.total_amount,
    )
    assert first.subtotal == Decimal("1016.67")


@pytest.mark.asyncio
async def test_quote_number_collisions_end_in_conflict(stack, customer, consulting, monkeypatch):
    monkeypatch.setattr("helpdesk.quotes.service.generate_document_number", lambda prefix: "QT-000000000AAA")
    await _quote(stack, customer, consulting)

    with pytest.raises(ConflictError):
        await _quote(stack, customer, consulting)


@pytest.mark.asyncio
async def test_invoice_number_collision_is_retried_on_convert(stack, customer, consulting, monkeypatch):
    invoice_numbers = iter(["INV-000000000AAA", "INV-000000000AAA", "INV-000000000BBB"])

    def numbering(prefix):
        return next(invoice_numbers) if prefix == "INV" else generate_document_number(prefix)

    monkeypatch.setattr("helpdesk.invoices.service.generate_document_number", numbering)
    monkeypatch.setattr("helpdesk.quotes.service.generate_document_number", numbering)
    await stack.invoices.create_invoice(
        client_id=customer.id,
        items=[InvoiceLine(service_id=consulting.id, quantity=Decimal("1"))],
    )
    quote = await _accepted(stack, customer, consulting)

    invoice = await stack.quotes.convert_to_invoice(quote.id)

    assert invoice.number == "INV-000000000BBB"
    assert (await stack.quotes.get_quote(quote.id)).status_logs[-1].notes == "Converted to invoice INV-000000000BBB"


_PATHS = {
    QuoteStatus.DRAFT: [],
    QuoteStatus.SENT: [QuoteStatus.SENT],
    QuoteStatus.PENDING: [QuoteStatus.SENT, QuoteStatus.PENDING],
    QuoteStatus.ACCEPTED: [QuoteStatus.SENT, QuoteStatus.ACCEPTED],
    QuoteStatus.REJECTED: [QuoteStatus.SENT, QuoteStatus.REJECTED],
    QuoteStatus.EXPIRED: [QuoteStatus.EXPIRED],
}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("current", "new"),
    [
        (current, new)
        for current, new in itertools.product(QuoteStatus, QuoteStatus)
        if current != new and not QuoteStateMachine.can_transition(current, new)
    ],
)
async def test_forbidden_transition_writes_nothing(stack, customer, consulting, current, new):
    quote = await _quote(stack, customer, consulting)
    for step in _PATHS[current]:
        await stack.quotes.change_status(quote.id, new_status=step)
    before = await stack.quotes.get_quote(quote.id)

    with pytest.raises(InvalidTransitionError):
        await stack.quotes.change_status(quote.id, new_status=new)

    after = await stack.quotes.get_quote(quote.id)
    assert after.status == current
    assert len(after.status_logs) == len(before.status_logs) == len(_PATHS[current]) + 1
    assert after.updated_at == before.updated_at
