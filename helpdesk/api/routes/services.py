from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.catalog.models import CategorySummary, Service
from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import CatalogServiceDep

router = APIRouter(prefix="/services", tags=["services"])


class ServiceCreateRequest(BaseModel):
    name: str = Field(..., max_length=255)
    category: str = Field(..., max_length=100)
    rate: Decimal = Field(..., ge=0)
    unit: str = Field(..., max_length=50)
    description: str | None = None
    sku: str | None = Field(default=None, max_length=50)
    active: bool = True


class ServiceUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    category: str | None = Field(default=None, max_length=100)
    rate: Decimal | None = Field(default=None, ge=0)
    unit: str | None = Field(default=None, max_length=50)
    description: str | None = None
    sku: str | None = Field(default=None, max_length=50)
    active: bool | None = None


class ServiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    category: str
    rate: Decimal
    unit: str
    sku: str
    active: bool
    zoho_item_id: str | None
    created_at: datetime
    updated_at: datetime


class CategorySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    count: int
    active_count: int
    average_rate: Decimal
    min_rate: Decimal
    max_rate: Decimal


class ServiceDeleteResponse(BaseModel):
    message: str
    archived: bool


def _to_response(service: Service) -> ServiceResponse:
    return ServiceResponse.model_validate(service)


def _to_category_response(summary: CategorySummary) -> CategorySummaryResponse:
    return CategorySummaryResponse.model_validate(summary)


@router.get("", response_model=list[ServiceResponse])
async def list_services(
    catalog: CatalogServiceDep,
    _: AgentUser,
    category: str | None = Query(default=None),
    active: bool | None = Query(default=None),
    search: str | None = Query(default=None),
) -> list[ServiceResponse]:
    services = await catalog.list_services(category=category, active=active, search=search)
    return [_to_response(service) for service in services]


@router.get("/categories", response_model=list[CategorySummaryResponse])
async def list_categories(
    catalog: CatalogServiceDep,
    _: AgentUser,
    include_inactive: bool = Query(default=False),
) -> list[CategorySummaryResponse]:
    summaries = await catalog.list_categories(include_inactive=include_inactive)
    return [_to_category_response(summary) for summary in summaries]


@router.post("", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_service(payload: ServiceCreateRequest, catalog: CatalogServiceDep, _: AgentUser) -> ServiceResponse:
    return _to_response(await catalog.create_service(**payload.model_dump()))


@router.get("/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: str, catalog: CatalogServiceDep, _: AgentUser) -> ServiceResponse:
    return _to_response(await catalog.get_service(service_id))


@router.put("/{service_id}", response_model=ServiceResponse)
async def update_service(
    service_id: str,
    payload: ServiceUpdateRequest,
    catalog: CatalogServiceDep,
    _: AgentUser,
) -> ServiceResponse:
    service = await catalog.update_service(service_id, **payload.model_dump(exclude_unset=True))
    return _to_response(service)


@router.delete("/{service_id}", response_model=ServiceDeleteResponse)
async def delete_service(service_id: str, catalog: CatalogServiceDep, _: AgentUser) -> ServiceDeleteResponse:
    archived = await catalog.delete_service(service_id)
    if archived:
        return ServiceDeleteResponse(message="Service is in use and was archived", archived=True)
    return ServiceDeleteResponse(message="Service deleted successfully", archived=False)
