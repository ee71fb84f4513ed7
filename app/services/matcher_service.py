"""Automated booking channel: turns a coarse request ("tomorrow afternoon") into a bound slot."""
import logging
from dataclasses import dataclass
from datetime import date, time, timedelta

from sqlalchemy import and_, or_, select

from app.core.context import TenantContext
from app.core.errors import StateTransitionInvalid, Unavailable, ValidationFailed
from app.core.timeutils import fmt_time, minutes_between
from app.models.appointment import (
    Appointment,
    AppointmentOrigin,
    AppointmentState,
    AutomatedBookingCreate,
    AutomatedModification,
    Shift,
)
from app.models.audit import AuditKind
from app.models.client import Client
from app.models.common import _utc_naive_now
from app.models.professional import Professional
from app.models.service import Service
from app.models.slot import Slot, SlotState
from app.services import audit_service, catalog_service, client_service, slot_service
from app.services.appointment_service import (
    UPCOMING_STATES,
    apply_cancellation,
    end_after,
    final_price_for,
    generate_code,
    get_by_code,
    within_lead_time,
)
from app.services.schedule_validator import validate_interval
from app.services.state_machine import ensure_transition

logger = logging.getLogger(__name__)

SHIFT_WINDOWS: dict[Shift, tuple[time, time]] = {
    Shift.MORNING: (time(8, 0), time(12, 0)),
    Shift.AFTERNOON: (time(14, 0), time(18, 0)),
    Shift.EVENING: (time(18, 0), time(21, 0)),
    Shift.ANY: (time(8, 0), time(21, 0)),
}

TODAY_KEYWORDS = frozenset({"today", "hoy"})
TOMORROW_KEYWORDS = frozenset({"tomorrow", "mañana", "manana"})


@dataclass
class SlotMatch:
    slot: Slot
    professional: Professional
    start_time: time
    end_time: time


@dataclass
class AutomatedBooking:
    appointment: Appointment
    client: Client
    client_created: bool
    professional: Professional
    service: Service

    @property
    def confirmation_message(self) -> str:
        return (
            f"Appointment {self.appointment.code} booked for {self.appointment.appointment_date.isoformat()} "
            f"at {fmt_time(self.appointment.start_time)} with {self.professional.full_name}"
        )


def resolve_date(keyword: str, today: date) -> date:
    value = keyword.strip().lower()
    if value in TODAY_KEYWORDS:
        return today
    if value in TOMORROW_KEYWORDS:
        return today + timedelta(days=1)
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationFailed(f"Unrecognized date '{keyword}'") from None


async def find_compatible_slot(
    ctx: TenantContext,
    service: Service,
    day: date,
    shift: Shift = Shift.ANY,
    preferred_professional_id: int | None = None,
    exclude_appointment_id: int | None = None,
) -> SlotMatch | None:
    """Earliest free slot in the shift window that fits the service and passes validation."""
    window_start, window_end = SHIFT_WINDOWS[shift]
    professionals = await catalog_service.certified_professionals(ctx, service.id)
    preferred = [p for p in professionals if p.id == preferred_professional_id]
    if preferred:
        professionals = preferred
    if not professionals:
        return None
    by_id = {p.id: p for p in professionals}

    q = (
        select(Slot)
        .where(
            Slot.organization_id == ctx.organization_id,
            Slot.professional_id.in_(list(by_id)),
            Slot.slot_date == day,
            Slot.appointment_id.is_(None),
            Slot.start_time >= window_start,
            Slot.end_time <= window_end,
            or_(
                Slot.state == SlotState.AVAILABLE,
                and_(Slot.state == SlotState.HELD, Slot.held_until < ctx.now),
            ),
        )
        .order_by(Slot.start_time, Slot.id)
    )
    if day == ctx.today:
        q = q.where(Slot.start_time > ctx.now.time())
    result = await ctx.session.execute(q)

    for slot in result.scalars().all():
        if minutes_between(slot.start_time, slot.end_time) < service.duration_minutes:
            continue
        end_time = end_after(day, slot.start_time, service.duration_minutes)
        validation = await validate_interval(
            ctx, slot.professional_id, day, slot.start_time, end_time, exclude_appointment_id=exclude_appointment_id
        )
        if validation.valid:
            return SlotMatch(slot, by_id[slot.professional_id], slot.start_time, end_time)
    return None


async def create_automatic_booking(ctx: TenantContext, data: AutomatedBookingCreate) -> AutomatedBooking:
    service = await catalog_service.get_active_service(ctx, data.service_id)
    day = resolve_date(data.requested_date, ctx.today)
    if day < ctx.today:
        raise ValidationFailed("The requested date is in the past")

    match = await find_compatible_slot(ctx, service, day, data.shift, data.preferred_professional_id)
    if match is None:
        logger.info(
            "No slot for automated booking: org=%s service=%s day=%s shift=%s",
            ctx.organization_id,
            service.id,
            day,
            data.shift.value,
        )
        raise Unavailable(f"No availability for {service.name} on {day.isoformat()} ({data.shift.value})")

    client, created = await client_service.get_or_create_by_phone(
        ctx,
        data.client_phone,
        name=data.client_name,
        email=data.client_email,
        source="automated",
        create_if_missing=data.create_client_if_missing,
    )
    for entity in (service, match.professional, match.slot, client):
        ctx.ensure_tenant(entity)
    appointment = Appointment(
        organization_id=ctx.organization_id,
        code=await generate_code(ctx, day),
        client_id=client.id,
        professional_id=match.professional.id,
        service_id=service.id,
        appointment_date=day,
        start_time=match.start_time,
        end_time=match.end_time,
        state=AppointmentState.PENDING,
        price=service.price,
        discount=data.discount,
        final_price=final_price_for(service.price, data.discount),
        confirmation_required=True,
        internal_notes=data.internal_notes,
        created_by=ctx.actor_id,
        ip_address=ctx.ip_address,
        origin=AppointmentOrigin.AUTOMATED,
    )
    ctx.session.add(appointment)
    await ctx.session.flush()
    await slot_service.bind(ctx, match.slot.id, appointment.id, match.slot.version)

    await audit_service.record(
        ctx,
        AuditKind.AUTOMATED_CREATED,
        appointment.id,
        "Appointment created by the automated channel",
        {
            "requested_date": data.requested_date,
            "shift": data.shift,
            "slot_id": match.slot.id,
            "client_created": created,
        },
    )
    logger.info(
        "Automated booking created: org=%s id=%s slot=%s client_created=%s",
        ctx.organization_id,
        appointment.id,
        match.slot.id,
        created,
    )
    return AutomatedBooking(appointment, client, created, match.professional, service)


async def _get_open_by_code(ctx: TenantContext, code: str) -> Appointment:
    appointment = await get_by_code(ctx, code, lock=True)
    if appointment.state not in UPCOMING_STATES:
        raise StateTransitionInvalid(appointment.state, "modified")
    return appointment


async def modify_automatic_booking(ctx: TenantContext, code: str, changes: AutomatedModification) -> Appointment:
    appointment = await _get_open_by_code(ctx, code)
    if not within_lead_time(ctx, appointment):
        raise ValidationFailed("The appointment is too close to be modified automatically")

    service = await catalog_service.get_active_service(ctx, changes.new_service_id or appointment.service_id)
    previous = {"date": appointment.appointment_date, "start_time": appointment.start_time}

    if changes.new_date or changes.new_shift or changes.new_service_id:
        ensure_transition(appointment.state, AppointmentState.PENDING)
        day = resolve_date(changes.new_date, ctx.today) if changes.new_date else appointment.appointment_date
        if day < ctx.today:
            raise ValidationFailed("The requested date is in the past")
        match = await find_compatible_slot(
            ctx, service, day, changes.new_shift or Shift.ANY, exclude_appointment_id=appointment.id
        )
        if match is None:
            raise Unavailable("No availability for the requested date and shift")
        old_slot = await slot_service.find_bound_slot(ctx, appointment.id)
        if old_slot is not None:
            await slot_service.release(ctx, old_slot.id)
        await slot_service.bind(ctx, match.slot.id, appointment.id, match.slot.version)
        appointment.professional_id = match.professional.id
        appointment.appointment_date = day
        appointment.start_time = match.start_time
        appointment.end_time = match.end_time
        appointment.state = AppointmentState.PENDING
        appointment.confirmed_by_client = False
        appointment.confirmed_at = None
        appointment.reminder_sent = False

    if changes.new_service_id:
        appointment.service_id = service.id
        appointment.price = service.price
        appointment.final_price = final_price_for(service.price, appointment.discount)
    if changes.reason:
        appointment.internal_notes = f"Modified by automated channel: {changes.reason}"
    appointment.updated_at = _utc_naive_now()
    ctx.session.add(appointment)
    await ctx.session.flush()

    await audit_service.record(
        ctx,
        AuditKind.AUTOMATED_MODIFIED,
        appointment.id,
        "Appointment modified by the automated channel",
        {
            "code": code,
            "previous_date": previous["date"],
            "previous_start_time": previous["start_time"],
            "new_date": appointment.appointment_date,
            "new_start_time": appointment.start_time,
            "reason": changes.reason,
        },
    )
    return appointment


async def cancel_automatic_booking(ctx: TenantContext, code: str, reason: str | None = None) -> Appointment:
    appointment = await get_by_code(ctx, code, lock=True)
    previous_state = appointment.state
    released = await apply_cancellation(ctx, appointment, reason or "Cancelled by client")

    await audit_service.record(
        ctx,
        AuditKind.AUTOMATED_CANCELLED,
        appointment.id,
        "Appointment cancelled by the automated channel",
        {
            "code": code,
            "reason": appointment.cancellation_reason,
            "previous_state": previous_state,
            "released_slot_id": released,
        },
    )
    return appointment
