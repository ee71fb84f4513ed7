from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import TenantIsolationError
from app.core.security import Actor
from app.core.timeutils import local_now


@dataclass
class TenantContext:
    """The active unit of work. Passed explicitly to every core call."""

    session: AsyncSession
    organization_id: int
    actor: Actor | None = None
    now: datetime = field(default_factory=local_now)
    ip_address: str | None = None

    def __post_init__(self) -> None:
        if self.actor is not None and self.actor.organization_id != self.organization_id:
            raise TenantIsolationError(
                f"Actor belongs to organization {self.actor.organization_id}, "
                f"unit of work is bound to {self.organization_id}"
            )

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def actor_id(self) -> int | None:
        return self.actor.user_id if self.actor else None

    def ensure_tenant(self, entity: Any) -> None:
        org_id = getattr(entity, "organization_id", None)
        if org_id != self.organization_id:
            raise TenantIsolationError(
                f"{type(entity).__name__} from organization {org_id} "
                f"used inside unit of work for {self.organization_id}"
            )
