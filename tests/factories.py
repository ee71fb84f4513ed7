"""Shared constants and row builders for the tests."""

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import func, select

from app.models import Appointment, AppointmentOrigin, AppointmentState, AuditEvent, Slot
from app.services.appointment_service import generate_code

NOW = datetime(2026, 3, 2, 10, 5)
TODAY = NOW.date()
TOMORROW = date(2026, 3, 3)


@dataclass
class Seed:
    org_id: int
    other_org_id: int
    ana_id: int
    luis_id: int
    haircut_id: int
    beard_id: int
    client_id: int
    client_phone: str
    other_client_id: int
    other_org_professional_id: int


async def add_slot(ctx, professional_id: int, day: date, start: time, end: time, **kwargs) -> Slot:
    slot = Slot(
        organization_id=ctx.organization_id,
        professional_id=professional_id,
        slot_date=day,
        start_time=start,
        end_time=end,
        **kwargs,
    )
    ctx.session.add(slot)
    await ctx.session.flush()
    return slot


async def add_appointment(
    ctx,
    seed: Seed,
    day: date,
    start: time,
    end: time,
    state: AppointmentState = AppointmentState.PENDING,
    professional_id: int | None = None,
    service_id: int | None = None,
    client_id: int | None = None,
    **kwargs,
) -> Appointment:
    appointment = Appointment(
        organization_id=ctx.organization_id,
        code=await generate_code(ctx, day),
        client_id=client_id or seed.client_id,
        professional_id=professional_id or seed.ana_id,
        service_id=service_id or seed.haircut_id,
        appointment_date=day,
        start_time=start,
        end_time=end,
        state=state,
        price=Decimal("150.00"),
        final_price=Decimal("150.00"),
        origin=kwargs.pop("origin", AppointmentOrigin.STANDARD),
        **kwargs,
    )
    ctx.session.add(appointment)
    await ctx.session.flush()
    return appointment


async def count_rows(session_maker, model) -> int:
    async with session_maker() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


async def audit_kinds(session_maker, appointment_id: int | None = None) -> list[str]:
    async with session_maker() as session:
        q = select(AuditEvent.kind).order_by(AuditEvent.id)
        if appointment_id is not None:
            q = q.where(AuditEvent.appointment_id == appointment_id)
        result = await session.execute(q)
        return list(result.scalars().all())
