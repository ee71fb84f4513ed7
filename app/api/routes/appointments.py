from datetime import date

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_context, require_staff
from app.api.schemas.appointment import CancelRequest, NoShowRequest
from app.core.context import TenantContext
from app.models.appointment import (
    AppointmentCreate,
    AppointmentOrigin,
    AppointmentPatch,
    AppointmentPublic,
    AppointmentState,
    CompletionRequest,
    RescheduleRequest,
)
from app.models.audit import AuditEventPublic
from app.services import appointment_service, audit_service
from app.services.appointment_service import appointment_to_public

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate, ctx: TenantContext = Depends(get_context)
) -> AppointmentPublic:
    appointment = await appointment_service.create_appointment(ctx, body)
    return appointment_to_public(appointment)


@router.get("", response_model=list[AppointmentPublic])
async def list_appointments(
    date_from: date | None = None,
    date_to: date | None = None,
    professional_id: int | None = None,
    client_id: int | None = None,
    state: list[AppointmentState] | None = Query(None),
    origin: AppointmentOrigin | None = None,
    ctx: TenantContext = Depends(get_context),
) -> list[AppointmentPublic]:
    appointments = await appointment_service.list_appointments(
        ctx,
        date_from=date_from,
        date_to=date_to,
        professional_id=professional_id,
        client_id=client_id,
        states=state,
        origin=origin,
    )
    return [appointment_to_public(a) for a in appointments]


@router.get("/by-phone", response_model=list[AppointmentPublic], dependencies=[Depends(require_staff)])
async def appointments_by_phone(
    phone: str,
    include_history: bool = False,
    ctx: TenantContext = Depends(get_context),
) -> list[AppointmentPublic]:
    appointments = await appointment_service.find_by_phone(ctx, phone, include_history=include_history)
    return [appointment_to_public(a) for a in appointments]


@router.get("/reminders/due", response_model=list[AppointmentPublic], dependencies=[Depends(require_staff)])
async def due_for_reminder(
    within_hours: int | None = Query(None, ge=1, le=168),
    ctx: TenantContext = Depends(get_context),
) -> list[AppointmentPublic]:
    appointments = await appointment_service.due_for_reminder(ctx, within_hours)
    return [appointment_to_public(a) for a in appointments]


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(appointment_id: int, ctx: TenantContext = Depends(get_context)) -> AppointmentPublic:
    appointment = await appointment_service.get_appointment(ctx, appointment_id)
    appointment_service.ensure_client_owns(ctx, appointment)
    return appointment_to_public(appointment)


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def update_appointment(
    appointment_id: int, body: AppointmentPatch, ctx: TenantContext = Depends(get_context)
) -> AppointmentPublic:
    appointment = await appointment_service.update_appointment(ctx, appointment_id, body)
    return appointment_to_public(appointment)


@router.post("/{appointment_id}/confirm", response_model=AppointmentPublic)
async def confirm_appointment(appointment_id: int, ctx: TenantContext = Depends(get_context)) -> AppointmentPublic:
    return appointment_to_public(await appointment_service.confirm_appointment(ctx, appointment_id))


@router.post("/{appointment_id}/check-in", response_model=AppointmentPublic)
async def check_in(appointment_id: int, ctx: TenantContext = Depends(get_context)) -> AppointmentPublic:
    return appointment_to_public(await appointment_service.check_in(ctx, appointment_id))


@router.post("/{appointment_id}/start", response_model=AppointmentPublic)
async def start_service(appointment_id: int, ctx: TenantContext = Depends(get_context)) -> AppointmentPublic:
    return appointment_to_public(await appointment_service.start_service(ctx, appointment_id))


@router.post("/{appointment_id}/complete", response_model=AppointmentPublic)
async def complete_appointment(
    appointment_id: int,
    body: CompletionRequest | None = None,
    ctx: TenantContext = Depends(get_context),
) -> AppointmentPublic:
    return appointment_to_public(await appointment_service.complete_appointment(ctx, appointment_id, body))


@router.post("/{appointment_id}/cancel", response_model=AppointmentPublic)
async def cancel_appointment(
    appointment_id: int,
    body: CancelRequest | None = None,
    ctx: TenantContext = Depends(get_context),
) -> AppointmentPublic:
    reason = body.reason if body else None
    return appointment_to_public(await appointment_service.cancel_appointment(ctx, appointment_id, reason))


@router.post("/{appointment_id}/no-show", response_model=AppointmentPublic)
async def mark_no_show(
    appointment_id: int,
    body: NoShowRequest | None = None,
    ctx: TenantContext = Depends(get_context),
) -> AppointmentPublic:
    reason = body.reason if body else None
    return appointment_to_public(await appointment_service.mark_no_show(ctx, appointment_id, reason))


@router.post("/{appointment_id}/reschedule", response_model=AppointmentPublic)
async def reschedule_appointment(
    appointment_id: int, body: RescheduleRequest, ctx: TenantContext = Depends(get_context)
) -> AppointmentPublic:
    return appointment_to_public(await appointment_service.reschedule_appointment(ctx, appointment_id, body))


@router.post(
    "/{appointment_id}/reminder-sent", response_model=AppointmentPublic, dependencies=[Depends(require_staff)]
)
async def mark_reminder_sent(appointment_id: int, ctx: TenantContext = Depends(get_context)) -> AppointmentPublic:
    return appointment_to_public(await appointment_service.mark_reminder_sent(ctx, appointment_id))


@router.get("/{appointment_id}/audit", response_model=list[AuditEventPublic], dependencies=[Depends(require_staff)])
async def appointment_audit(appointment_id: int, ctx: TenantContext = Depends(get_context)) -> list[AuditEventPublic]:
    await appointment_service.get_appointment(ctx, appointment_id)
    events = await audit_service.list_events(ctx, appointment_id)
    return [AuditEventPublic.model_validate(e) for e in events]
