"""Best-effort push/pull between the local books and Zoho."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

from helpdesk.catalog.models import Service
from helpdesk.catalog.service import CatalogService
from helpdesk.core.errors import ServiceError
from helpdesk.db.session import utcnow
from helpdesk.directory.models import Client
from helpdesk.directory.service import ClientService
from helpdesk.integrations.base import ExternalSyncTarget, SyncResult
from helpdesk.invoices.models import Invoice
from helpdesk.invoices.repository import InvoiceRepository
from helpdesk.invoices.service import InvoiceNotFoundError
from helpdesk.invoices.state import InvoiceStatus
from helpdesk.quotes.models import Quote
from helpdesk.quotes.repository import QuoteRepository
from helpdesk.quotes.service import QuoteNotFoundError
from helpdesk.quotes.state import QuoteStatus

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Zoho not configured"

_PUSHED_QUOTE_STATUSES = frozenset({QuoteStatus.SENT, QuoteStatus.ACCEPTED, QuoteStatus.REJECTED})
_PUSHED_INVOICE_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID})


@dataclass(slots=True)
class EntitySyncResult:
    external_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ZohoSyncService:
    """Pushes clients, quotes and invoices and pulls catalog items.

    Also serves as the ``StatusSyncHook`` of the quote and invoice services:
    status pushes are logged on failure and never raised.
    """

    target: ExternalSyncTarget
    clients: ClientService
    quotes: QuoteRepository
    invoices: InvoiceRepository
    catalog: CatalogService

    def status(self) -> dict[str, Any]:
        return {"configured": self.target.is_configured}

    async def sync_client(self, client_id: str) -> EntitySyncResult:
        client = await self.clients.get_client(client_id)
        if not self.target.is_configured:
            return EntitySyncResult(error=NOT_CONFIGURED)
        try:
            contact_id = await self.target.push_contact(_contact_payload(client), client.zoho_contact_id)
        except ServiceError as exc:
            logger.warning("Zoho contact sync failed for client %s: %s", client_id, exc)
            return EntitySyncResult(error=f"Zoho Books sync failed: {exc}")
        await self.clients.repository.set_zoho_contact_id(client_id, contact_id, now=utcnow())
        return EntitySyncResult(external_id=contact_id)

    async def sync_quote(self, quote_id: str) -> EntitySyncResult:
        quote = await self.quotes.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(f"Quote {quote_id} not found")
        if not self.target.is_configured:
            return EntitySyncResult(error=NOT_CONFIGURED)
        customer_id = await self._ensure_contact(quote.client_id)
        if customer_id is None:
            return EntitySyncResult(error="Failed to sync client to Zoho Books first")

        services = await self.catalog.repository.get_services({item.service_id for item in quote.items})
        payload: dict[str, Any] = {
            "customer_id": customer_id,
            "reference_number": quote.number,
            "line_items": _line_items(quote.items, services, description_attr="custom_description"),
            "notes": quote.notes,
            "terms": quote.terms,
            "discount": float(quote.discount_amount),
            "discount_type": "entity_level",
        }
        if quote.valid_until is not None:
            payload["expiry_date"] = quote.valid_until.date().isoformat()
        try:
            estimate_id = await self.target.push_estimate(_compact(payload), quote.zoho_estimate_id)
        except ServiceError as exc:
            logger.warning("Zoho estimate sync failed for quote %s: %s", quote.number, exc)
            return EntitySyncResult(error=f"Failed to sync quote to Zoho: {exc}")
        await self.quotes.set_zoho_estimate_id(quote_id, estimate_id)
        return EntitySyncResult(external_id=estimate_id)

    async def sync_invoice(self, invoice_id: str) -> EntitySyncResult:
        invoice = await self.invoices.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        if not self.target.is_configured:
            return EntitySyncResult(error=NOT_CONFIGURED)
        customer_id = await self._ensure_contact(invoice.client_id)
        if customer_id is None:
            return EntitySyncResult(error="Failed to sync client to Zoho Books first")

        services = await self.catalog.repository.get_services({item.service_id for item in invoice.items})
        payload: dict[str, Any] = {
            "customer_id": customer_id,
            "reference_number": invoice.number,
            "line_items": _line_items(invoice.items, services, description_attr="description"),
            "notes": invoice.notes,
        }
        if invoice.due_date is not None:
            payload["due_date"] = invoice.due_date.date().isoformat()
        if invoice.zoho_invoice_id is None and invoice.quote_id is not None:
            quote = await self.quotes.get_quote(invoice.quote_id)
            if quote is not None and quote.zoho_estimate_id:
                payload["estimate_id"] = quote.zoho_estimate_id
        try:
            external_id = await self.target.push_invoice(_compact(payload), invoice.zoho_invoice_id)
        except ServiceError as exc:
            logger.warning("Zoho invoice sync failed for invoice %s: %s", invoice.number, exc)
            return EntitySyncResult(error=f"Failed to sync invoice to Zoho: {exc}")
        await self.invoices.set_zoho_invoice_id(invoice_id, external_id)
        return EntitySyncResult(external_id=external_id)

    async def pull_services(self) -> SyncResult:
        """Upsert catalog services from Zoho items, matched by item id then SKU."""

        result = SyncResult()
        if not self.target.is_configured:
            result.errors.append(NOT_CONFIGURED)
            return result
        try:
            items = await self.target.pull_items()
        except ServiceError as exc:
            result.errors.append(f"Failed to fetch Zoho items: {exc}")
            return result

        for item in items:
            name = item.get("name") or item.get("item_id")
            try:
                existing = await self._match_service(item)
                fields = _service_fields(item)
                if existing is None:
                    await self.catalog.create_service(**fields)
                    result.created += 1
                else:
                    await self.catalog.update_service(existing.id, **fields)
                    result.updated += 1
            except ServiceError as exc:
                result.errors.append(f"Failed to sync item {name}: {exc}")
        logger.info(
            "Pulled Zoho items: %s created, %s updated, %s errors",
            result.created,
            result.updated,
            len(result.errors),
        )
        return result

    async def quote_status_changed(self, quote: Quote) -> None:
        if quote.status not in _PUSHED_QUOTE_STATUSES or not quote.zoho_estimate_id:
            return
        if not self.target.is_configured:
            return
        try:
            await self.target.push_estimate_status(quote.zoho_estimate_id, quote.status.value)
        except Exception as exc:
            # the local status change is already committed
            logger.warning(
                "Failed to update Zoho estimate status for %s: %s",
                quote.number,
                exc,
                extra={"quote_id": quote.id, "provider": "zoho"},
                exc_info=not isinstance(exc, ServiceError),
            )

    async def invoice_status_changed(self, invoice: Invoice) -> None:
        if invoice.status not in _PUSHED_INVOICE_STATUSES or not invoice.zoho_invoice_id:
            return
        if not self.target.is_configured:
            return
        try:
            await self.target.push_invoice_status(
                invoice.zoho_invoice_id,
                invoice.status.value,
                amount=invoice.total_amount,
                paid_date=invoice.paid_date,
            )
        except Exception as exc:
            logger.warning(
                "Failed to update Zoho invoice status for %s: %s",
                invoice.number,
                exc,
                extra={"invoice_id": invoice.id, "provider": "zoho"},
                exc_info=not isinstance(exc, ServiceError),
            )

    async def _ensure_contact(self, client_id: str) -> str | None:
        client = await self.clients.get_client(client_id)
        if client.zoho_contact_id:
            return client.zoho_contact_id
        return (await self.sync_client(client_id)).external_id

    async def _match_service(self, item: Mapping[str, Any]) -> Service | None:
        repository = self.catalog.repository
        if item.get("item_id"):
            found = await repository.get_by_zoho_item_id(str(item["item_id"]))
            if found is not None:
                return found
        sku = str(item.get("sku") or item.get("item_id") or "").strip().upper()
        return await repository.get_by_sku(sku) if sku else None


def _contact_payload(client: Client) -> dict[str, Any]:
    return _compact(
        {
            "contact_name": client.name,
            "email": client.email,
            "phone": client.phone,
            "company_name": client.company,
        }
    )


def _line_items(items: Sequence[Any], services: Mapping[str, Service], *, description_attr: str) -> list[dict[str, Any]]:
    lines = []
    for item in items:
        service = services.get(item.service_id)
        custom = getattr(item, description_attr)
        lines.append(
            _compact(
                {
                    "item_id": service.zoho_item_id if service else None,
                    "name": custom or (service.name if service else "Service"),
                    "description": service.description if service else None,
                    "rate": float(item.rate),
                    "quantity": float(item.quantity),
                }
            )
        )
    return lines


def _service_fields(item: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": item.get("name") or str(item.get("item_id")),
        "description": item.get("description") or None,
        "rate": Decimal(str(item.get("rate") or 0)),
        "unit": item.get("unit") or "per item",
        "sku": str(item.get("sku") or item.get("item_id")),
        "category": item.get("group_name") or "General",
        "active": item.get("status", "active") == "active",
        "zoho_item_id": str(item["item_id"]) if item.get("item_id") else None,
    }


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}
