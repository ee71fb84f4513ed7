import logging
import secrets
import string
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import select

from app.core.config import settings
from app.core.context import TenantContext
from app.core.errors import Conflict, NotFound, StateTransitionInvalid, Unauthorized, ValidationFailed
from app.core.security import Role
from app.core.timeutils import add_minutes, combine, minutes_between
from app.models.appointment import (
    INACTIVE_STATES,
    Appointment,
    AppointmentCreate,
    AppointmentOrigin,
    AppointmentPatch,
    AppointmentPublic,
    AppointmentState,
    CompletionRequest,
    RescheduleRequest,
)
from app.models.audit import AuditKind
from app.models.common import _utc_naive_now
from app.models.slot import Slot
from app.services import audit_service, catalog_service, client_service, slot_service
from app.services.schedule_validator import validate_interval
from app.services.state_machine import ensure_transition

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
UPCOMING_STATES = (AppointmentState.PENDING, AppointmentState.CONFIRMED)
FEEDBACK_FIELDS = frozenset(
    {"rating", "rating_comment", "client_notes", "professional_notes", "internal_notes", "paid", "payment_method"}
)
CLIENT_PATCHABLE_FIELDS = frozenset({"client_notes", "rating", "rating_comment"})

CompletionHook = Callable[[TenantContext, Appointment], Awaitable[None]]
_completion_hooks: list[CompletionHook] = []


def register_completion_hook(hook: CompletionHook) -> None:
    """Called inside the completing unit of work; a failing hook aborts the completion."""
    _completion_hooks.append(hook)


def clear_completion_hooks() -> None:
    _completion_hooks.clear()


def appointment_to_public(appointment: Appointment) -> AppointmentPublic:
    return AppointmentPublic.model_validate(appointment)


def end_after(day: date, start: time, minutes: int) -> time:
    """Clock time ``minutes`` after start. A result past midnight wraps and fails validation."""
    return add_minutes(combine(day, start), minutes).time()


def final_price_for(price: Decimal, discount: Decimal) -> Decimal:
    return max(price - discount, Decimal("0"))


def _touch(appointment: Appointment) -> None:
    appointment.updated_at = _utc_naive_now()


# Guards
# An absent actor is the system itself (reminder jobs, imports) and passes role guards.


def ensure_client_owns(ctx: TenantContext, appointment: Appointment) -> None:
    actor = ctx.actor
    if actor is not None and actor.role == Role.CLIENT and actor.client_id != appointment.client_id:
        raise Unauthorized("Clients can only manage their own appointments")


def _ensure_staff(ctx: TenantContext, appointment: Appointment) -> None:
    actor = ctx.actor
    if actor is None:
        return
    if not actor.is_staff:
        raise Unauthorized("Only staff can operate appointments")
    if actor.is_line_staff and actor.professional_id != appointment.professional_id:
        raise Unauthorized("Employees can only operate their own appointments")


def within_lead_time(ctx: TenantContext, appointment: Appointment) -> bool:
    return appointment.starts_at - ctx.now >= timedelta(hours=settings.lead_time_hours)


def _ensure_lead_time(ctx: TenantContext, appointment: Appointment, action: str) -> None:
    if ctx.actor is None or ctx.actor.is_staff:
        return
    if not within_lead_time(ctx, appointment):
        raise ValidationFailed(
            f"Appointments can only be {action} at least {settings.lead_time_hours} hours in advance"
        )


# Reads


async def get_appointment(ctx: TenantContext, appointment_id: int, *, lock: bool = False) -> Appointment:
    q = select(Appointment).where(
        Appointment.id == appointment_id,
        Appointment.organization_id == ctx.organization_id,
    )
    if lock:
        q = q.with_for_update()
    result = await ctx.session.execute(q)
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFound("Appointment", appointment_id)
    return appointment


async def get_by_code(ctx: TenantContext, code: str, *, lock: bool = False) -> Appointment:
    q = select(Appointment).where(
        Appointment.code == code,
        Appointment.organization_id == ctx.organization_id,
    )
    if lock:
        q = q.with_for_update()
    result = await ctx.session.execute(q)
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFound("Appointment", code)
    return appointment


async def list_appointments(
    ctx: TenantContext,
    date_from: date | None = None,
    date_to: date | None = None,
    professional_id: int | None = None,
    client_id: int | None = None,
    states: list[AppointmentState] | None = None,
    origin: AppointmentOrigin | None = None,
) -> list[Appointment]:
    q = select(Appointment).where(Appointment.organization_id == ctx.organization_id)
    if date_from:
        q = q.where(Appointment.appointment_date >= date_from)
    if date_to:
        q = q.where(Appointment.appointment_date <= date_to)
    if professional_id is not None:
        q = q.where(Appointment.professional_id == professional_id)
    if client_id is not None:
        q = q.where(Appointment.client_id == client_id)
    if states:
        q = q.where(Appointment.state.in_(states))
    if origin is not None:
        q = q.where(Appointment.origin == origin)
    if ctx.actor is not None and ctx.actor.role == Role.CLIENT:
        q = q.where(Appointment.client_id == ctx.actor.client_id)
    q = q.order_by(Appointment.appointment_date, Appointment.start_time, Appointment.id)
    result = await ctx.session.execute(q)
    return list(result.scalars().all())


async def find_by_phone(
    ctx: TenantContext,
    phone: str,
    states: list[AppointmentState] | None = None,
    include_history: bool = False,
) -> list[Appointment]:
    """Appointments of the client owning ``phone``; upcoming pending/confirmed ones by default."""
    client = await client_service.find_by_phone(ctx, phone)
    if client is None:
        return []
    q = select(Appointment).where(
        Appointment.organization_id == ctx.organization_id,
        Appointment.client_id == client.id,
    )
    if states:
        q = q.where(Appointment.state.in_(states))
    elif not include_history:
        q = q.where(Appointment.state.in_(UPCOMING_STATES))
    if not include_history:
        q = q.where(Appointment.appointment_date >= ctx.today)
    result = await ctx.session.execute(q.order_by(Appointment.appointment_date, Appointment.start_time))
    return list(result.scalars().all())


async def due_for_reminder(ctx: TenantContext, within_hours: int | None = None) -> list[Appointment]:
    """Confirmed appointments without a reminder, starting in [now, now + within_hours]."""
    hours = within_hours if within_hours is not None else settings.reminder_window_hours
    horizon = ctx.now + timedelta(hours=hours)
    result = await ctx.session.execute(
        select(Appointment)
        .where(
            Appointment.organization_id == ctx.organization_id,
            Appointment.state == AppointmentState.CONFIRMED,
            Appointment.reminder_sent.is_(False),
            Appointment.appointment_date >= ctx.today,
            Appointment.appointment_date <= horizon.date(),
        )
        .order_by(Appointment.appointment_date, Appointment.start_time)
    )
    return [a for a in result.scalars().all() if ctx.now <= a.starts_at <= horizon]


async def mark_reminder_sent(ctx: TenantContext, appointment_id: int) -> Appointment:
    appointment = await get_appointment(ctx, appointment_id)
    appointment.reminder_sent = True
    appointment.reminder_sent_at = ctx.now
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    await audit_service.record(ctx, AuditKind.REMINDER_SENT, appointment.id, "Reminder sent")
    return appointment


# Writes


async def generate_code(ctx: TenantContext, day: date) -> str:
    """YYMMDD plus four random characters, unique within the organization."""
    prefix = day.strftime("%y%m%d")
    for _ in range(10):
        code = prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
        result = await ctx.session.execute(
            select(Appointment.id).where(
                Appointment.organization_id == ctx.organization_id,
                Appointment.code == code,
            )
        )
        if result.first() is None:
            return code
    raise Conflict("Could not allocate an appointment code")


async def bind_interval(
    ctx: TenantContext,
    appointment: Appointment,
    slot_id: int | None = None,
    slot_version: int | None = None,
) -> Slot | None:
    """Bind the given slot, or any registry slot covering the appointment's interval.

    Intervals without a registry slot stay unbound: the validator already
    guards the professional's timeline.
    """
    if slot_id is not None:
        slot = await slot_service.get_slot(ctx, slot_id)
        covers = (
            slot.professional_id == appointment.professional_id
            and slot.slot_date == appointment.appointment_date
            and slot.start_time <= appointment.start_time
            and appointment.end_time <= slot.end_time
        )
        if not covers:
            raise ValidationFailed("The slot does not cover the requested interval")
        return await slot_service.bind(ctx, slot_id, appointment.id, slot_version)
    slot = await slot_service.find_covering_slot(
        ctx, appointment.professional_id, appointment.appointment_date, appointment.start_time, appointment.end_time
    )
    if slot is None:
        return None
    return await slot_service.bind(ctx, slot.id, appointment.id, slot.version)


async def _release_bound_slot(ctx: TenantContext, appointment: Appointment) -> int | None:
    slot = await slot_service.find_bound_slot(ctx, appointment.id)
    if slot is None:
        return None
    await slot_service.release(ctx, slot.id)
    return slot.id


async def apply_cancellation(ctx: TenantContext, appointment: Appointment, reason: str) -> int | None:
    """Cancel a locked appointment and free its slot. Returns the released slot id."""
    ensure_transition(appointment.state, AppointmentState.CANCELLED)
    appointment.state = AppointmentState.CANCELLED
    appointment.cancellation_reason = reason
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    return await _release_bound_slot(ctx, appointment)


async def create_appointment(ctx: TenantContext, data: AppointmentCreate) -> Appointment:
    actor = ctx.actor
    if actor is not None and actor.role == Role.CLIENT and actor.client_id != data.client_id:
        raise Unauthorized("Clients can only book for themselves")

    client = await client_service.get_active_client(ctx, data.client_id)
    professional = await catalog_service.get_active_professional(ctx, data.professional_id)
    service = await catalog_service.get_active_service(ctx, data.service_id)
    for entity in (client, professional, service):
        ctx.ensure_tenant(entity)
    await catalog_service.ensure_certified(ctx, professional, service)

    end_time = data.end_time or end_after(data.appointment_date, data.start_time, service.duration_minutes)
    validation = await validate_interval(
        ctx, professional.id, data.appointment_date, data.start_time, end_time
    )
    validation.raise_if_invalid()

    appointment = Appointment(
        organization_id=ctx.organization_id,
        code=await generate_code(ctx, data.appointment_date),
        client_id=client.id,
        professional_id=professional.id,
        service_id=service.id,
        appointment_date=data.appointment_date,
        start_time=data.start_time,
        end_time=end_time,
        state=AppointmentState.PENDING,
        price=service.price,
        discount=data.discount,
        final_price=final_price_for(service.price, data.discount),
        confirmation_required=data.confirmation_required,
        client_notes=data.client_notes,
        internal_notes=data.internal_notes,
        created_by=ctx.actor_id,
        ip_address=ctx.ip_address,
        origin=AppointmentOrigin.STANDARD,
    )
    ctx.session.add(appointment)
    await ctx.session.flush()
    slot = await bind_interval(ctx, appointment, data.slot_id, data.slot_version)

    await audit_service.record(
        ctx,
        AuditKind.APPOINTMENT_CREATED,
        appointment.id,
        f"Appointment {appointment.code} created",
        {
            "professional_id": professional.id,
            "service_id": service.id,
            "date": appointment.appointment_date,
            "start_time": appointment.start_time,
            "end_time": appointment.end_time,
            "slot_id": slot.id if slot else None,
            "warnings": [w.message for w in validation.warnings] or None,
        },
    )
    logger.info(
        "Appointment created: org=%s id=%s code=%s slot=%s",
        ctx.organization_id,
        appointment.id,
        appointment.code,
        slot.id if slot else None,
    )
    return appointment


async def confirm_appointment(ctx: TenantContext, appointment_id: int) -> Appointment:
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    ensure_client_owns(ctx, appointment)
    ensure_transition(appointment.state, AppointmentState.CONFIRMED)
    _ensure_lead_time(ctx, appointment, "confirmed")
    appointment.state = AppointmentState.CONFIRMED
    appointment.confirmed_by_client = True
    appointment.confirmed_at = ctx.now
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    await audit_service.record(ctx, AuditKind.APPOINTMENT_CONFIRMED, appointment.id, "Appointment confirmed")
    return appointment


async def check_in(ctx: TenantContext, appointment_id: int) -> Appointment:
    """Record the client's arrival. The state does not change."""
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    _ensure_staff(ctx, appointment)
    if appointment.state not in UPCOMING_STATES:
        raise StateTransitionInvalid(appointment.state, "checked_in")
    if appointment.arrived_at is None:
        appointment.arrived_at = ctx.now
        _touch(appointment)
        ctx.session.add(appointment)
        await ctx.session.flush()
    await audit_service.record(
        ctx, AuditKind.CHECKED_IN, appointment.id, "Client arrived", {"arrived_at": appointment.arrived_at}
    )
    return appointment


async def start_service(ctx: TenantContext, appointment_id: int) -> Appointment:
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    _ensure_staff(ctx, appointment)
    ensure_transition(appointment.state, AppointmentState.IN_PROGRESS)
    appointment.state = AppointmentState.IN_PROGRESS
    appointment.actual_start_at = ctx.now
    if appointment.arrived_at is None:
        appointment.arrived_at = ctx.now
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    await audit_service.record(
        ctx, AuditKind.SERVICE_STARTED, appointment.id, "Service started", {"started_at": ctx.now}
    )
    return appointment


async def complete_appointment(
    ctx: TenantContext, appointment_id: int, data: CompletionRequest | None = None
) -> Appointment:
    data = data or CompletionRequest()
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    _ensure_staff(ctx, appointment)
    ensure_transition(appointment.state, AppointmentState.COMPLETED)

    appointment.state = AppointmentState.COMPLETED
    appointment.actual_end_at = ctx.now
    if data.final_price is not None:
        appointment.final_price = data.final_price
    if data.payment_method is not None:
        appointment.payment_method = data.payment_method
    if data.notes:
        appointment.professional_notes = data.notes
    if data.paid is not None:
        appointment.paid = data.paid
    elif appointment.final_price > 0:
        appointment.paid = True
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()

    for hook in _completion_hooks:
        await hook(ctx, appointment)

    await audit_service.record(
        ctx,
        AuditKind.COMPLETED,
        appointment.id,
        "Appointment completed",
        {"final_price": appointment.final_price, "paid": appointment.paid, "payment_method": appointment.payment_method},
    )
    logger.info("Appointment completed: org=%s id=%s paid=%s", ctx.organization_id, appointment.id, appointment.paid)
    return appointment


async def cancel_appointment(ctx: TenantContext, appointment_id: int, reason: str | None = None) -> Appointment:
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    ensure_client_owns(ctx, appointment)
    ensure_transition(appointment.state, AppointmentState.CANCELLED)
    _ensure_lead_time(ctx, appointment, "cancelled")
    released = await apply_cancellation(ctx, appointment, reason or "Cancelled")

    await audit_service.record(
        ctx,
        AuditKind.CANCELLED,
        appointment.id,
        "Appointment cancelled",
        {"reason": appointment.cancellation_reason, "released_slot_id": released},
    )
    logger.info("Appointment cancelled: org=%s id=%s slot=%s", ctx.organization_id, appointment.id, released)
    return appointment


async def mark_no_show(ctx: TenantContext, appointment_id: int, reason: str | None = None) -> Appointment:
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    _ensure_staff(ctx, appointment)
    ensure_transition(appointment.state, AppointmentState.NO_SHOW)
    appointment.state = AppointmentState.NO_SHOW
    if reason:
        appointment.internal_notes = reason
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    released = await _release_bound_slot(ctx, appointment)
    await audit_service.record(
        ctx, AuditKind.NO_SHOW, appointment.id, "Client did not show up", {"released_slot_id": released}
    )
    return appointment


async def reschedule_appointment(
    ctx: TenantContext, appointment_id: int, data: RescheduleRequest
) -> Appointment:
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    ensure_client_owns(ctx, appointment)
    ensure_transition(appointment.state, AppointmentState.PENDING)
    _ensure_lead_time(ctx, appointment, "rescheduled")

    duration = minutes_between(appointment.start_time, appointment.end_time)
    new_end = data.new_end_time or end_after(data.new_date, data.new_start_time, duration)
    validation = await validate_interval(
        ctx,
        appointment.professional_id,
        data.new_date,
        data.new_start_time,
        new_end,
        exclude_appointment_id=appointment.id,
    )
    validation.raise_if_invalid()

    previous = {
        "date": appointment.appointment_date,
        "start_time": appointment.start_time,
        "end_time": appointment.end_time,
        "state": appointment.state,
    }
    released = await _release_bound_slot(ctx, appointment)

    appointment.appointment_date = data.new_date
    appointment.start_time = data.new_start_time
    appointment.end_time = new_end
    appointment.state = AppointmentState.PENDING
    appointment.confirmed_by_client = False
    appointment.confirmed_at = None
    appointment.reminder_sent = False
    appointment.reminder_sent_at = None
    appointment.arrived_at = None
    appointment.actual_start_at = None
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    slot = await bind_interval(ctx, appointment)

    await audit_service.record(
        ctx,
        AuditKind.RESCHEDULED,
        appointment.id,
        "Appointment rescheduled",
        {
            "previous_date": previous["date"],
            "previous_start_time": previous["start_time"],
            "previous_end_time": previous["end_time"],
            "previous_state": previous["state"],
            "new_date": data.new_date,
            "new_start_time": data.new_start_time,
            "new_end_time": new_end,
            "released_slot_id": released,
            "bound_slot_id": slot.id if slot else None,
            "reason": data.reason,
        },
    )
    return appointment


async def update_appointment(ctx: TenantContext, appointment_id: int, patch: AppointmentPatch) -> Appointment:
    changes = patch.changes()
    if not changes:
        raise ValidationFailed("No fields to update")
    appointment = await get_appointment(ctx, appointment_id, lock=True)
    ensure_client_owns(ctx, appointment)
    actor = ctx.actor
    if actor is not None and actor.role in (Role.CLIENT, Role.BOT) and not set(changes) <= CLIENT_PATCHABLE_FIELDS:
        raise Unauthorized("Clients can only update their notes and rating")
    if appointment.state in INACTIVE_STATES:
        raise StateTransitionInvalid(appointment.state, "updated")
    if appointment.state == AppointmentState.COMPLETED and not set(changes) <= FEEDBACK_FIELDS:
        raise StateTransitionInvalid(appointment.state, "rescheduled or repriced")

    previous_state = appointment.state
    rebind = False
    if patch.touches_schedule:
        professional_id = changes.get("professional_id") or appointment.professional_id
        service_id = changes.get("service_id") or appointment.service_id
        professional = await catalog_service.get_active_professional(ctx, professional_id)
        service = await catalog_service.get_active_service(ctx, service_id)
        await catalog_service.ensure_certified(ctx, professional, service)
        day = changes.get("appointment_date") or appointment.appointment_date
        start = changes.get("start_time") or appointment.start_time
        if changes.get("end_time"):
            end = changes["end_time"]
        elif "service_id" in changes or "start_time" in changes:
            end = end_after(day, start, service.duration_minutes)
        else:
            end = appointment.end_time
        validation = await validate_interval(
            ctx, professional.id, day, start, end, exclude_appointment_id=appointment.id
        )
        validation.raise_if_invalid()
        rebind = (
            professional.id != appointment.professional_id
            or day != appointment.appointment_date
            or start != appointment.start_time
            or end != appointment.end_time
        )
        if rebind:
            await _release_bound_slot(ctx, appointment)
        if "service_id" in changes and "price" not in changes:
            appointment.price = service.price
        appointment.professional_id = professional.id
        appointment.service_id = service.id
        appointment.appointment_date = day
        appointment.start_time = start
        appointment.end_time = end

    for name in ("price", "discount", "payment_method", "paid", "client_notes", "professional_notes",
                 "internal_notes", "rating", "rating_comment"):
        if name not in changes:
            continue
        if changes[name] is None and name in ("price", "discount", "paid"):
            raise ValidationFailed(f"{name} cannot be empty")
        setattr(appointment, name, changes[name])
    if {"price", "discount", "service_id"} & set(changes):
        appointment.final_price = final_price_for(appointment.price, appointment.discount)
    _touch(appointment)
    ctx.session.add(appointment)
    await ctx.session.flush()
    if rebind:
        await bind_interval(ctx, appointment)

    await audit_service.record(
        ctx,
        AuditKind.APPOINTMENT_UPDATED,
        appointment.id,
        "Appointment updated",
        {"fields": ",".join(sorted(changes)), "state": previous_state},
    )
    return appointment
