import logging
from datetime import date, time, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import DBAPIError

from app.core.context import TenantContext
from app.core.errors import Conflict, NotFound
from app.models.common import _utc_naive_now
from app.models.audit import AuditKind
from app.models.slot import BINDABLE_SLOT_STATES, Slot, SlotState
from app.services import audit_service

logger = logging.getLogger(__name__)

# lock_not_available, serialization_failure
_CONTENTION_SQLSTATES = frozenset({"55P03", "40001"})


def _is_lock_contention(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in _CONTENTION_SQLSTATES or "database is locked" in str(orig)


async def get_slot(ctx: TenantContext, slot_id: int) -> Slot:
    result = await ctx.session.execute(
        select(Slot).where(Slot.id == slot_id, Slot.organization_id == ctx.organization_id)
    )
    slot = result.scalar_one_or_none()
    if not slot:
        raise NotFound("Slot", slot_id)
    return slot


async def bind(
    ctx: TenantContext, slot_id: int, appointment_id: int, expected_version: int | None = None
) -> Slot:
    """Occupy a slot for an appointment. Exactly one of two racing binds wins."""
    stmt = (
        update(Slot)
        .where(
            Slot.id == slot_id,
            Slot.organization_id == ctx.organization_id,
            Slot.state.in_(BINDABLE_SLOT_STATES),
            Slot.appointment_id.is_(None),
        )
        .values(
            state=SlotState.OCCUPIED,
            appointment_id=appointment_id,
            held_until=None,
            held_by=None,
            version=Slot.version + 1,
            updated_at=_utc_naive_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if expected_version is not None:
        stmt = stmt.where(Slot.version == expected_version)
    try:
        result = await ctx.session.execute(stmt)
    except DBAPIError as exc:
        if not _is_lock_contention(exc):
            raise
        logger.warning("Slot bind lost to a concurrent writer: slot=%s appointment=%s", slot_id, appointment_id)
        raise Conflict() from exc
    if result.rowcount != 1:
        logger.warning(
            "Slot bind lost: slot=%s appointment=%s expected_version=%s", slot_id, appointment_id, expected_version
        )
        raise Conflict()
    slot = await get_slot(ctx, slot_id)
    await ctx.session.refresh(slot)
    return slot


async def release(ctx: TenantContext, slot_id: int) -> Slot:
    """Make a slot available again. Releasing an already available slot is a no-op."""
    slot = await get_slot(ctx, slot_id)
    if slot.state == SlotState.AVAILABLE and slot.appointment_id is None and slot.held_until is None:
        return slot
    slot.state = SlotState.AVAILABLE
    slot.appointment_id = None
    slot.held_until = None
    slot.held_by = None
    slot.version += 1
    slot.updated_at = _utc_naive_now()
    ctx.session.add(slot)
    await ctx.session.flush()
    return slot


async def hold(ctx: TenantContext, slot_id: int, holder: str, minutes: int) -> Slot:
    """Temporarily reserve an available slot; an expired hold can be taken over."""
    held_until = ctx.now + timedelta(minutes=minutes)
    result = await ctx.session.execute(
        update(Slot)
        .where(
            Slot.id == slot_id,
            Slot.organization_id == ctx.organization_id,
            Slot.appointment_id.is_(None),
            or_(
                Slot.state == SlotState.AVAILABLE,
                (Slot.state == SlotState.HELD) & (Slot.held_until < ctx.now),
            ),
        )
        .values(
            state=SlotState.HELD,
            held_until=held_until,
            held_by=holder,
            version=Slot.version + 1,
            updated_at=_utc_naive_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict()
    slot = await get_slot(ctx, slot_id)
    await ctx.session.refresh(slot)
    await audit_service.record(
        ctx,
        AuditKind.SLOT_HELD,
        None,
        f"Slot {slot_id} held",
        {"slot_id": slot_id, "held_by": holder, "held_until": held_until},
    )
    return slot


async def find_bound_slot(ctx: TenantContext, appointment_id: int) -> Slot | None:
    result = await ctx.session.execute(
        select(Slot).where(Slot.organization_id == ctx.organization_id, Slot.appointment_id == appointment_id)
    )
    return result.scalar_one_or_none()


async def find_covering_slot(
    ctx: TenantContext, professional_id: int, day: date, start: time, end: time
) -> Slot | None:
    """Earliest bindable slot of the professional that contains [start, end)."""
    result = await ctx.session.execute(
        select(Slot)
        .where(
            Slot.organization_id == ctx.organization_id,
            Slot.professional_id == professional_id,
            Slot.slot_date == day,
            Slot.start_time <= start,
            Slot.end_time >= end,
            Slot.state.in_(BINDABLE_SLOT_STATES),
            Slot.appointment_id.is_(None),
        )
        .order_by(Slot.start_time, Slot.id)
    )
    return result.scalars().first()


async def list_slots(
    ctx: TenantContext, day: date, professional_id: int | None = None, only_available: bool = False
) -> list[Slot]:
    q = (
        select(Slot)
        .where(Slot.organization_id == ctx.organization_id, Slot.slot_date == day)
        .order_by(Slot.start_time, Slot.id)
    )
    if professional_id is not None:
        q = q.where(Slot.professional_id == professional_id)
    if only_available:
        q = q.where(Slot.state == SlotState.AVAILABLE)
    result = await ctx.session.execute(q)
    return list(result.scalars().all())
