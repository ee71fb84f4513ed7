from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from jose import JWTError, jwt

from app.core.config import settings


class Role(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    EMPLOYEE = "employee"
    CLIENT = "client"
    BOT = "bot"


STAFF_ROLES = frozenset({Role.ADMIN, Role.OWNER, Role.EMPLOYEE})


@dataclass(frozen=True)
class Actor:
    """Who is acting, as resolved by the identity service."""

    user_id: int | None
    organization_id: int
    role: Role
    professional_id: int | None = None
    client_id: int | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_line_staff(self) -> bool:
        return self.role == Role.EMPLOYEE


def create_access_token(actor: Actor) -> str:
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "org": actor.organization_id,
        "role": actor.role.value,
        "pro": actor.professional_id,
        "cli": actor.client_id,
        "exp": expire,
        "type": "access",
    }
    # jose rejects a non-string subject on decode
    if actor.user_id is not None:
        to_encode["sub"] = str(actor.user_id)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_actor_token(token: str) -> Actor | None:
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
    except JWTError:
        return None
    if payload.get("type") != "access":
        return None
    try:
        sub = payload.get("sub")
        return Actor(
            user_id=int(sub) if sub else None,
            organization_id=int(payload["org"]),
            role=Role(payload["role"]),
            professional_id=payload.get("pro"),
            client_id=payload.get("cli"),
        )
    except (KeyError, TypeError, ValueError):
        return None
