from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.dependencies.auth import AdminUser, AgentUser
from helpdesk.dependencies.services import AgentServiceDep
from helpdesk.directory.models import Agent, AgentRole, AgentStatus

router = APIRouter(prefix="/agents", tags=["agents"])


class AgentCreateRequest(BaseModel):
    name: str = Field(..., max_length=255)
    email: str = Field(..., max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    role: AgentRole = AgentRole.AGENT
    commission_rate: Decimal | None = None
    status: AgentStatus = AgentStatus.ACTIVE


class AgentUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    role: AgentRole | None = None
    commission_rate: Decimal | None = None
    status: AgentStatus | None = None


class AgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: str | None
    role: AgentRole
    commission_rate: Decimal
    status: AgentStatus
    created_at: datetime
    updated_at: datetime


def _to_response(agent: Agent) -> AgentResponse:
    return AgentResponse.model_validate(agent)


@router.get("", response_model=list[AgentResponse])
async def list_agents(
    service: AgentServiceDep,
    _: AgentUser,
    status_filter: AgentStatus | None = Query(default=None, alias="status"),
    role: AgentRole | None = Query(default=None),
    search: str | None = Query(default=None),
) -> list[AgentResponse]:
    agents = await service.list_agents(status=status_filter, role=role, search=search)
    return [_to_response(agent) for agent in agents]


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(payload: AgentCreateRequest, service: AgentServiceDep, _: AgentUser) -> AgentResponse:
    agent = await service.create_agent(**payload.model_dump())
    return _to_response(agent)


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, service: AgentServiceDep, _: AgentUser) -> AgentResponse:
    return _to_response(await service.get_agent(agent_id))


@router.put("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: str,
    payload: AgentUpdateRequest,
    service: AgentServiceDep,
    _: AgentUser,
) -> AgentResponse:
    agent = await service.update_agent(agent_id, **payload.model_dump(exclude_unset=True))
    return _to_response(agent)


@router.delete("/{agent_id}")
async def delete_agent(agent_id: str, service: AgentServiceDep, _: AdminUser) -> dict[str, str]:
    await service.delete_agent(agent_id)
    return {"message": "Agent deleted successfully"}
