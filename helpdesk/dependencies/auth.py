from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import APIKeyCookie

from helpdesk.core.config import Settings, get_settings
from helpdesk.directory.models import AgentRole

# Each role also carries every role listed after it.
_ROLE_HIERARCHY: dict[AgentRole, tuple[AgentRole, ...]] = {
    AgentRole.ADMIN: (AgentRole.ADMIN, AgentRole.SENIOR_AGENT, AgentRole.AGENT),
    AgentRole.SENIOR_AGENT: (AgentRole.SENIOR_AGENT, AgentRole.AGENT),
    AgentRole.AGENT: (AgentRole.AGENT,),
}


class User:
    """Authenticated staff member resolved from the session cookie."""

    def __init__(self, username: str, roles: tuple[AgentRole, ...]):
        self.username = username
        self.roles = roles

    def has_role(self, role: AgentRole) -> bool:
        return role in self.roles


def expand_roles(granted: tuple[AgentRole, ...]) -> tuple[AgentRole, ...]:
    roles: list[AgentRole] = []
    for role in granted:
        for implied in _ROLE_HIERARCHY[role]:
            if implied not in roles:
                roles.append(implied)
    return tuple(roles)


def parse_session_entry(entry: str) -> User:
    """Parse a ``"username:ROLE[,ROLE]"`` session table entry."""

    username, _, raw_roles = entry.partition(":")
    granted = tuple(AgentRole(value.strip().upper()) for value in raw_roles.split(",") if value.strip())
    return User(username=username.strip(), roles=expand_roles(granted or (AgentRole.AGENT,)))


session_cookie = APIKeyCookie(name=get_settings().session_cookie_name, auto_error=False)


async def get_current_user(
    session: Annotated[str | None, Security(session_cookie)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User:
    """Session stub: the cookie value is looked up in ``settings.session_tokens``."""

    entry = settings.session_tokens.get(session) if session else None
    if entry is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return parse_session_entry(entry)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Not authenticated") from exc


def role_required(role: AgentRole) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


async def verify_webhook_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check ``X-API-Key`` when a key is configured and the caller sent one."""

    if settings.webhook_api_key and x_api_key is not None and x_api_key != settings.webhook_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


AgentUser = Annotated[User, Depends(role_required(AgentRole.AGENT))]
AdminUser = Annotated[User, Depends(role_required(AgentRole.ADMIN))]
