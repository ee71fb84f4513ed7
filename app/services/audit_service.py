import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.context import TenantContext
from app.models.audit import AuditEvent, AuditKind

logger = logging.getLogger(__name__)


def _jsonable(details: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in details.items():
        if value is None or isinstance(value, (bool, int, float, str)):
            out[key] = value
        elif hasattr(value, "value"):
            out[key] = value.value
        else:
            out[key] = str(value)
    return out


async def record(
    ctx: TenantContext,
    kind: AuditKind | str,
    appointment_id: int | None = None,
    description: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent | None:
    """Write one audit row in a savepoint. A failed write never undoes the mutation it describes."""
    event = AuditEvent(
        organization_id=ctx.organization_id,
        kind=kind.value if isinstance(kind, AuditKind) else kind,
        description=description,
        appointment_id=appointment_id,
        actor_id=ctx.actor_id,
        details=_jsonable(details or {}),
    )
    try:
        async with ctx.session.begin_nested():
            ctx.session.add(event)
    except SQLAlchemyError:
        logger.warning("Audit write failed: kind=%s appointment=%s", event.kind, appointment_id, exc_info=True)
        return None
    return event


async def list_events(ctx: TenantContext, appointment_id: int | None = None) -> list[AuditEvent]:
    q = select(AuditEvent).where(AuditEvent.organization_id == ctx.organization_id)
    if appointment_id is not None:
        q = q.where(AuditEvent.appointment_id == appointment_id)
    result = await ctx.session.execute(q.order_by(AuditEvent.created_at, AuditEvent.id))
    return list(result.scalars().all())
