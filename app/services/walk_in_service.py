"""Fits clients who show up without a booking into a professional's live timeline.

The professional is either idle (the walk-in starts now) or in service (the
walk-in is queued at the estimated end of the current service). Concurrent
walk-ins for one professional serialize on the professional row lock.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select

from app.core.config import settings
from app.core.context import TenantContext
from app.core.errors import Unavailable, ValidationFailed
from app.core.timeutils import DAY_END
from app.models.appointment import Appointment, AppointmentOrigin, AppointmentState, WalkInCreate
from app.models.audit import AuditKind
from app.models.client import Client
from app.models.operations import ProfessionalAvailability, QueueEntry, WaitingQueue
from app.models.professional import Professional
from app.models.service import Service
from app.services import audit_service, catalog_service, client_service
from app.services.appointment_service import generate_code
from app.services.schedule_validator import validate_interval, working_windows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class InService:
    appointment: Appointment
    started_at: datetime | None


ProfessionalStatus = Idle | InService


@dataclass
class WalkInOutcome:
    appointment: Appointment
    queued: bool
    estimated_wait_minutes: int
    warnings: list[str] = field(default_factory=list)


async def professional_status(ctx: TenantContext, professional_id: int) -> ProfessionalStatus:
    result = await ctx.session.execute(
        select(Appointment)
        .where(
            Appointment.organization_id == ctx.organization_id,
            Appointment.professional_id == professional_id,
            Appointment.appointment_date == ctx.today,
            Appointment.state == AppointmentState.IN_PROGRESS,
            Appointment.actual_end_at.is_(None),
        )
        .order_by(Appointment.start_time.desc(), Appointment.id.desc())
    )
    current = result.scalars().first()
    if current is None:
        return Idle()
    return InService(appointment=current, started_at=current.actual_start_at)


async def _service_duration(ctx: TenantContext, service_id: int) -> int:
    result = await ctx.session.execute(
        select(Service.duration_minutes).where(
            Service.id == service_id, Service.organization_id == ctx.organization_id
        )
    )
    duration = result.scalar_one_or_none()
    return duration or settings.default_service_duration_minutes


async def estimated_free_at(ctx: TenantContext, status: InService, now: datetime | None = None) -> datetime:
    """When the current service should end; never earlier than now."""
    now = now or ctx.now
    duration = timedelta(minutes=await _service_duration(ctx, status.appointment.service_id))
    if status.started_at is not None:
        estimate = status.started_at + duration
    else:
        estimate = now + duration
    return max(estimate, now)


async def is_working_now(ctx: TenantContext, professional_id: int) -> bool:
    now = ctx.now.time()
    windows = await working_windows(ctx, professional_id, ctx.today)
    return any(w.start_time <= now < w.end_time for w in windows)


async def _appointments_today(ctx: TenantContext, professional_id: int) -> int:
    result = await ctx.session.execute(
        select(func.count(Appointment.id)).where(
            Appointment.organization_id == ctx.organization_id,
            Appointment.professional_id == professional_id,
            Appointment.appointment_date == ctx.today,
            Appointment.state.in_((AppointmentState.CONFIRMED, AppointmentState.IN_PROGRESS)),
        )
    )
    return result.scalar_one()


def _tier(availability: ProfessionalAvailability) -> int:
    if availability.available_now:
        return 0
    return 1 if availability.in_service else 2


async def rank_professionals(
    ctx: TenantContext, service_id: int, professional_id: int | None = None
) -> list[ProfessionalAvailability]:
    """Certified professionals: free right now, then busy, then off duty; ties by today's load."""
    professionals = await catalog_service.certified_professionals(ctx, service_id)
    if professional_id is not None:
        professionals = [p for p in professionals if p.id == professional_id]
    ranking: list[ProfessionalAvailability] = []
    for professional in professionals:
        status = await professional_status(ctx, professional.id)
        in_service = isinstance(status, InService)
        working = await is_working_now(ctx, professional.id)
        ranking.append(
            ProfessionalAvailability(
                professional_id=professional.id,
                full_name=professional.full_name,
                available_now=not in_service and working,
                in_service=in_service,
                on_duty=in_service or working,
                appointments_today=await _appointments_today(ctx, professional.id),
            )
        )
    ranking.sort(key=lambda r: (_tier(r), r.appointments_today, r.professional_id))
    return ranking


async def _resolve_professional(ctx: TenantContext, data: WalkInCreate, service: Service) -> Professional:
    if data.professional_id is not None:
        professional = await catalog_service.get_active_professional(ctx, data.professional_id, lock=True)
        await catalog_service.ensure_certified(ctx, professional, service)
        return professional
    ranking = await rank_professionals(ctx, service.id)
    if not ranking:
        raise Unavailable(f"No active professional performs {service.name}")
    ranking = [r for r in ranking if r.on_duty]
    if not ranking:
        raise Unavailable(f"Nobody who performs {service.name} is on duty right now")
    logger.info("Walk-in auto-assigned: org=%s professional=%s", ctx.organization_id, ranking[0].professional_id)
    return await catalog_service.get_active_professional(ctx, ranking[0].professional_id, lock=True)


async def _resolve_client(ctx: TenantContext, data: WalkInCreate) -> Client:
    if data.client_id is not None:
        return await client_service.get_active_client(ctx, data.client_id)
    if data.client_phone:
        client, _ = await client_service.get_or_create_by_phone(
            ctx, data.client_phone, name=data.client_name, source="walk_in"
        )
        return client
    if data.client_name:
        client = Client(organization_id=ctx.organization_id, name=data.client_name, source="walk_in")
        ctx.session.add(client)
        await ctx.session.flush()
        return client
    raise ValidationFailed("A walk-in needs a client id, phone or name")


async def create_walk_in(ctx: TenantContext, data: WalkInCreate) -> WalkInOutcome:
    service = await catalog_service.get_active_service(ctx, data.service_id)
    professional = await _resolve_professional(ctx, data, service)
    client = await _resolve_client(ctx, data)
    for entity in (service, professional, client):
        ctx.ensure_tenant(entity)

    now = ctx.now.replace(microsecond=0)
    status = await professional_status(ctx, professional.id)
    match status:
        case InService():
            start_at = await estimated_free_at(ctx, status, now)
            if start_at.date() != now.date():
                raise ValidationFailed(f"{professional.full_name} has no room left today")
            state = AppointmentState.CONFIRMED
            actual_start_at = None
            busy = True
        case Idle():
            if not await is_working_now(ctx, professional.id):
                raise ValidationFailed(f"{professional.full_name} has no working hours right now")
            start_at = now
            state = AppointmentState.IN_PROGRESS
            actual_start_at = now
            busy = False

    end_at = start_at + timedelta(minutes=service.duration_minutes)
    if end_at.date() != start_at.date():
        end_time = DAY_END
        logger.warning(
            "Walk-in end clamped to %s: org=%s professional=%s start=%s",
            DAY_END,
            ctx.organization_id,
            professional.id,
            start_at.time(),
        )
    else:
        end_time = end_at.time()

    validation = await validate_interval(
        ctx,
        professional.id,
        start_at.date(),
        start_at.time(),
        end_time,
        is_walk_in=True,
        allow_outside_working_hours=busy,
    )
    validation.raise_if_invalid()

    appointment = Appointment(
        organization_id=ctx.organization_id,
        code=await generate_code(ctx, start_at.date()),
        client_id=client.id,
        professional_id=professional.id,
        service_id=service.id,
        appointment_date=start_at.date(),
        start_time=start_at.time(),
        end_time=end_time,
        state=state,
        price=service.price,
        final_price=service.price,
        confirmation_required=False,
        arrived_at=now,
        actual_start_at=actual_start_at,
        internal_notes=data.notes,
        created_by=ctx.actor_id,
        ip_address=ctx.ip_address,
        origin=AppointmentOrigin.WALK_IN,
    )
    ctx.session.add(appointment)
    await ctx.session.flush()

    wait_minutes = int((start_at - now).total_seconds() // 60)
    await audit_service.record(
        ctx,
        AuditKind.WALK_IN_CREATED,
        appointment.id,
        f"Walk-in {'queued' if busy else 'started'} with {professional.full_name}",
        {
            "professional_id": professional.id,
            "queued": busy,
            "start_time": appointment.start_time,
            "end_time": appointment.end_time,
            "estimated_wait_minutes": wait_minutes,
        },
    )
    logger.info(
        "Walk-in created: org=%s id=%s professional=%s queued=%s wait=%s",
        ctx.organization_id,
        appointment.id,
        professional.id,
        busy,
        wait_minutes,
    )
    return WalkInOutcome(
        appointment=appointment,
        queued=busy,
        estimated_wait_minutes=wait_minutes,
        warnings=[w.message for w in validation.warnings],
    )


async def waiting_queue(ctx: TenantContext, professional_id: int | None = None) -> WaitingQueue:
    """Clients who arrived today and have not started service yet, in serving order."""
    q = (
        select(Appointment, Client.name)
        .join(Client, Client.id == Appointment.client_id)
        .where(
            Appointment.organization_id == ctx.organization_id,
            Appointment.appointment_date == ctx.today,
            Appointment.state.in_((AppointmentState.PENDING, AppointmentState.CONFIRMED)),
            Appointment.arrived_at.is_not(None),
            Appointment.actual_start_at.is_(None),
        )
        .order_by(Appointment.start_time, Appointment.arrived_at, Appointment.id)
    )
    if professional_id is not None:
        q = q.where(Appointment.professional_id == professional_id)
    result = await ctx.session.execute(q)

    positions: dict[int, int] = {}
    entries: list[QueueEntry] = []
    for appointment, client_name in result.all():
        positions[appointment.professional_id] = positions.get(appointment.professional_id, 0) + 1
        entries.append(
            QueueEntry(
                appointment_id=appointment.id,
                code=appointment.code,
                professional_id=appointment.professional_id,
                client_name=client_name,
                state=appointment.state,
                start_time=appointment.start_time,
                arrived_at=appointment.arrived_at,
                minutes_waiting=max(int((ctx.now - appointment.arrived_at).total_seconds() // 60), 0),
                position=positions[appointment.professional_id],
            )
        )
    average = sum(e.minutes_waiting for e in entries) / len(entries) if entries else 0.0
    return WaitingQueue(entries=entries, total_waiting=len(entries), average_wait_minutes=round(average, 1))
