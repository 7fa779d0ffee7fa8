from __future__ import annotations

import json

import httpx
import pytest

from helpdesk.core.errors import IntegrationError, IntegrationNotConfiguredError
from helpdesk.integrations.base import DeliveryStatus
from helpdesk.integrations.email import GraphEmailClient
from helpdesk.integrations.trello import TrelloClient
from helpdesk.integrations.whatsapp import WhatsAppClient, format_phone
from helpdesk.integrations.zoho import ZohoBooksClient, zoho_base_urls


def _http(handler, calls):
    def record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(record))


def test_format_phone_keeps_digits():
    assert format_phone("+44 (7700) 900-123") == "447700900123"


@pytest.mark.asyncio
async def test_whatsapp_dev_mode_simulates_send():
    calls = []
    client = WhatsAppClient(access_token=None, phone_number_id=None, http_client=_http(None, calls))

    result = await client.send_text("+1 555", "hi")

    assert result.success is True
    assert result.status == DeliveryStatus.SIMULATED
    assert result.message_id.startswith("dev_")
    assert calls == []


@pytest.mark.asyncio
async def test_whatsapp_send_text():
    calls = []
    client = WhatsAppClient(
        access_token="tok",
        phone_number_id="123",
        http_client=_http(lambda request: httpx.Response(200, json={"messages": [{"id": "wamid.9"}]}), calls),
    )

    result = await client.send_text("+1 (555) 000", "Hello")

    assert result.status == DeliveryStatus.SENT
    assert result.message_id == "wamid.9"
    request = calls[0]
    assert request.url.path == "/v18.0/123/messages"
    assert request.headers["Authorization"] == "Bearer tok"
    body = json.loads(request.content)
    assert body["to"] == "1555000"
    assert body["text"] == {"preview_url": False, "body": "Hello"}


@pytest.mark.asyncio
async def test_whatsapp_api_error_is_a_failed_delivery():
    calls = []
    client = WhatsAppClient(
        access_token="tok",
        phone_number_id="123",
        http_client=_http(
            lambda request: httpx.Response(400, json={"error": {"message": "Recipient not allowed"}}), calls
        ),
    )

    result = await client.send_template("15550001", "order_update", ["A-1"])

    assert result.success is False
    assert result.status == DeliveryStatus.FAILED
    assert result.error == "Recipient not allowed"
    template = json.loads(calls[0].content)["template"]
    assert template["components"][0]["parameters"] == [{"type": "text", "text": "A-1"}]


@pytest.mark.asyncio
async def test_graph_email_fetches_token_once():
    calls = []

    def handler(request):
        if request.url.path.endswith("/oauth2/v2.0/token"):
            return httpx.Response(200, json={"access_token": "graph-token", "expires_in": 3600})
        return httpx.Response(202)

    client = GraphEmailClient(
        tenant_id="tenant",
        client_id="id",
        client_secret="secret",
        sender_address="support@helpdesk.test",
        http_client=_http(handler, calls),
    )

    first = await client.send_email("kim@mail.test", "Re: Login", "Fixed")
    second = await client.send_email("kim@mail.test", "Re: Login", "Again")

    assert first.success and second.success
    assert [request.url.path for request in calls] == [
        "/tenant/oauth2/v2.0/token",
        "/v1.0/users/support@helpdesk.test/sendMail",
        "/v1.0/users/support@helpdesk.test/sendMail",
    ]
    assert calls[1].headers["Authorization"] == "Bearer graph-token"
    message = json.loads(calls[1].content)["message"]
    assert message["toRecipients"] == [{"emailAddress": {"address": "kim@mail.test"}}]


@pytest.mark.asyncio
async def test_graph_token_failure_is_a_failed_delivery():
    calls = []
    client = GraphEmailClient(
        tenant_id="tenant",
        client_id="id",
        client_secret="bad",
        sender_address="support@helpdesk.test",
        http_client=_http(
            lambda request: httpx.Response(401, json={"error": "invalid_client", "error_description": "Bad secret"}),
            calls,
        ),
    )

    result = await client.send_email("kim@mail.test", "Hi", "Body")

    assert result.success is False
    assert "Bad secret" in result.error
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_trello_requires_credentials():
    client = TrelloClient(api_key=None, token=None)

    assert await client.status() == {"configured": False, "connected": False, "username": None}
    with pytest.raises(IntegrationNotConfiguredError):
        await client.get_boards()


@pytest.mark.asyncio
async def test_trello_card_calls_and_errors():
    calls = []

    def handler(request):
        if request.method == "DELETE":
            return httpx.Response(404, text="card not found")
        return httpx.Response(200, json={"id": "card-1", "idList": request.url.params.get("idList")})

    client = TrelloClient(api_key="key", token="tok", http_client=_http(handler, calls))

    moved = await client.update_card("card-1", idList="list-2", name=None, bogus="x")
    assert moved["idList"] == "list-2"
    params = calls[0].url.params
    assert (params["key"], params["token"]) == ("key", "tok")
    assert "bogus" not in params
    assert "name" not in params

    with pytest.raises(IntegrationError) as excinfo:
        await client.delete_card("card-1")
    assert "404" in str(excinfo.value)


def test_zoho_region_urls():
    assert zoho_base_urls("eu") == {
        "accounts": "https://accounts.zoho.eu",
        "books": "https://www.zohoapis.eu/books/v3",
    }


def _zoho(handler, calls):
    return ZohoBooksClient(
        client_id="cid",
        client_secret="secret",
        refresh_token="refresh",
        organization_id="org-1",
        http_client=_http(handler, calls),
    )


@pytest.mark.asyncio
async def test_zoho_unconfigured_raises():
    client = ZohoBooksClient(client_id=None, client_secret=None, refresh_token=None, organization_id=None)

    assert client.is_configured is False
    with pytest.raises(IntegrationNotConfiguredError):
        await client.pull_items()


@pytest.mark.asyncio
async def test_zoho_contact_matched_by_email():
    calls = []

    def handler(request):
        if request.url.path == "/oauth/v2/token":
            return httpx.Response(200, json={"access_token": "zoho-token", "expires_in": 3600})
        return httpx.Response(200, json={"contacts": [{"contact_id": 4411}]})

    client = _zoho(handler, calls)

    contact_id = await client.push_contact({"contact_name": "Acme", "email": "billing@acme.test"})

    assert contact_id == "4411"
    lookup = calls[1]
    assert lookup.headers["Authorization"] == "Zoho-oauthtoken zoho-token"
    assert lookup.url.params["organization_id"] == "org-1"
    assert lookup.url.params["email"] == "billing@acme.test"


@pytest.mark.asyncio
async def test_zoho_estimate_status_mapping():
    calls = []

    def handler(request):
        if request.url.path == "/oauth/v2/token":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        return httpx.Response(200, json={"code": 0})

    client = _zoho(handler, calls)

    await client.push_estimate_status("est-1", "REJECTED")
    await client.push_estimate_status("est-1", "DRAFT")

    assert [request.url.path for request in calls] == [
        "/oauth/v2/token",
        "/books/v3/estimates/est-1/status/declined",
    ]


@pytest.mark.asyncio
async def test_zoho_pull_items_follows_pages():
    calls = []

    def handler(request):
        if request.url.path == "/oauth/v2/token":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        page = int(request.url.params["page"])
        return httpx.Response(
            200,
            json={"items": [{"item_id": str(page)}], "page_context": {"has_more_page": page < 2}},
        )

    items = await _zoho(handler, calls).pull_items()

    assert [item["item_id"] for item in items] == ["1", "2"]


@pytest.mark.asyncio
async def test_zoho_api_error_raises_integration_error():
    calls = []

    def handler(request):
        if request.url.path == "/oauth/v2/token":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        return httpx.Response(400, json={"code": 1002, "message": "Invoice does not exist"})

    with pytest.raises(IntegrationError) as excinfo:
        await _zoho(handler, calls).push_invoice_status("zi-1", "SENT")
    assert "Invoice does not exist" in str(excinfo.value)


@pytest.mark.asyncio
async def test_zoho_malformed_success_bodies_raise_integration_error():
    calls = []

    def handler(request):
        if request.url.path == "/oauth/v2/token":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        if request.url.path.endswith("/status/sent"):
            return httpx.Response(200, text="<html>gateway</html>")
        return httpx.Response(201, json={"code": 0, "message": "created"})

    client = _zoho(handler, calls)

    with pytest.raises(IntegrationError, match="non-JSON"):
        await client.push_estimate_status("est-1", "SENT")
    with pytest.raises(IntegrationError, match="estimate_id"):
        await client.push_estimate({"customer_id": "zc-1"})
