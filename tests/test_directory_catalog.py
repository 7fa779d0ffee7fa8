from __future__ import annotations

import re
from decimal import Decimal

import pytest

from helpdesk.catalog.service import DuplicateSkuError, generate_sku
from helpdesk.core.errors import ValidationFailedError
from helpdesk.directory.models import AgentRole, AgentStatus
from helpdesk.directory.service import DuplicateEmailError, ReferencedEntityError
from helpdesk.quotes.service import ItemRequest
from helpdesk.tickets.state import TicketChannel


@pytest.mark.asyncio
async def test_client_email_is_normalised_and_unique(stack, customer):
    assert customer.email == "billing@acme.test"

    with pytest.raises(DuplicateEmailError):
        await stack.clients.create_client(name="Other", email=" BILLING@acme.test ")


@pytest.mark.asyncio
async def test_find_or_create_reuses_existing_client(stack, customer):
    found, created = await stack.clients.find_or_create(name="Ignored", email="Billing@Acme.test")
    assert created is False
    assert found.id == customer.id

    fresh, created = await stack.clients.find_or_create(name="New", email="new@acme.test")
    assert created is True
    assert fresh.name == "New"


@pytest.mark.asyncio
async def test_client_list_search_and_pagination(stack, customer):
    await stack.clients.create_client(name="Globex", email="ops@globex.test", company="Globex")

    page = await stack.clients.list_clients(search="globex")
    assert [client.name for client in page.items] == ["Globex"]

    first = await stack.clients.list_clients(page=1, limit=1)
    assert first.total == 2
    assert first.pages == 2


@pytest.mark.asyncio
async def test_client_with_related_data_cannot_be_deleted(stack, customer):
    await stack.tickets.create_ticket(subject="Hi", client_id=customer.id, channel=TicketChannel.FORM)

    counts = await stack.clients.get_related_counts(customer.id)
    assert (counts.tickets, counts.quotes, counts.invoices) == (1, 0, 0)
    with pytest.raises(ReferencedEntityError):
        await stack.clients.delete_client(customer.id)


@pytest.mark.asyncio
async def test_agent_defaults_and_commission_bounds(stack):
    agent = await stack.agents.create_agent(name="Sam", email="Sam@Helpdesk.test")
    assert agent.role == AgentRole.AGENT
    assert agent.status == AgentStatus.ACTIVE
    assert agent.commission_rate == Decimal("50")

    with pytest.raises(ValidationFailedError):
        await stack.agents.create_agent(name="Max", email="max@helpdesk.test", commission_rate=Decimal("120"))
    with pytest.raises(ValidationFailedError):
        await stack.agents.update_agent(agent.id, commission_rate=Decimal("-1"))

    updated = await stack.agents.update_agent(agent.id, status=AgentStatus.INACTIVE, role=AgentRole.SENIOR_AGENT)
    assert updated.status == AgentStatus.INACTIVE
    assert updated.role == AgentRole.SENIOR_AGENT
    assert [a.id for a in await stack.agents.list_agents(status=AgentStatus.INACTIVE)] == [agent.id]


@pytest.mark.asyncio
async def test_agent_with_tickets_cannot_be_deleted(stack, customer, agent):
    await stack.tickets.create_ticket(
        subject="Assigned", client_id=customer.id, channel=TicketChannel.FORM, agent_id=agent.id
    )

    with pytest.raises(ReferencedEntityError):
        await stack.agents.delete_agent(agent.id)


def test_generated_sku_shape():
    assert re.match(r"^WEB-LAN-\d{6}$", generate_sku("Web design", "Landing page"))
    assert re.match(r"^SRV-ABX-\d{6}$", generate_sku("!!", "ab"))


@pytest.mark.asyncio
async def test_service_sku_is_unique(stack, consulting):
    with pytest.raises(DuplicateSkuError):
        await stack.catalog.create_service(
            name="Other", category="Advisory", rate=Decimal("1"), unit="each", sku="adv-con-1"
        )


@pytest.mark.asyncio
async def test_referenced_service_is_archived_instead_of_deleted(stack, customer, consulting):
    spare = await stack.catalog.create_service(name="Audit", category="Advisory", rate=Decimal("300"), unit="each")
    await stack.quotes.create_quote(
        client_id=customer.id,
        items=[ItemRequest(service_id=consulting.id, quantity=Decimal("1"))],
    )

    assert await stack.catalog.delete_service(consulting.id) is True
    assert (await stack.catalog.get_service(consulting.id)).active is False
    assert await stack.catalog.delete_service(spare.id) is False


@pytest.mark.asyncio
async def test_category_summaries(stack, consulting):
    await stack.catalog.create_service(name="Audit", category="Advisory", rate=Decimal("500"), unit="each")
    await stack.catalog.create_service(
        name="Hosting", category="Web", rate=Decimal("20"), unit="per month", active=False
    )

    active_only = await stack.catalog.list_categories()
    assert [summary.category for summary in active_only] == ["Advisory"]
    advisory = active_only[0]
    assert advisory.count == 2
    assert advisory.average_rate == Decimal("750.00")
    assert (advisory.min_rate, advisory.max_rate) == (Decimal("500.00"), Decimal("1000.00"))

    everything = await stack.catalog.list_categories(include_inactive=True)
    web = next(summary for summary in everything if summary.category == "Web")
    assert (web.count, web.active_count) == (1, 0)
