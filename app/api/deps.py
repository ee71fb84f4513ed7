from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import db
from app.core.context import TenantContext
from app.core.security import Actor, Role, decode_actor_token

security = HTTPBearer(auto_error=False)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return db.async_session_maker


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    actor = decode_actor_token(credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


async def get_context(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> AsyncIterator[TenantContext]:
    """One unit of work per request, bound to the caller's organization."""
    ip_address = request.client.host if request.client else None
    async with db.unit_of_work(
        actor.organization_id, actor, ip_address=ip_address, session_maker=session_maker
    ) as ctx:
        yield ctx


def require_roles(*roles: Role):
    allowed = frozenset(roles)

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed for this role")
        return actor

    return _check


require_staff = require_roles(Role.ADMIN, Role.OWNER, Role.EMPLOYEE)
require_automation = require_roles(Role.BOT, Role.ADMIN, Role.OWNER)
