from fastapi import APIRouter, Depends, status

from app.api.schemas.appointment import CancelRequest
from app.api.deps import get_context, require_automation
from app.core.context import TenantContext
from app.models.appointment import (
    AppointmentPublic,
    AutomatedBookingCreate,
    AutomatedBookingResult,
    AutomatedModification,
)
from app.models.client import ClientPublic
from app.services import matcher_service
from app.services.appointment_service import appointment_to_public

router = APIRouter(
    prefix="/automated/appointments", tags=["automated"], dependencies=[Depends(require_automation)]
)


@router.post("", response_model=AutomatedBookingResult, status_code=status.HTTP_201_CREATED)
async def create_automatic_booking(
    body: AutomatedBookingCreate, ctx: TenantContext = Depends(get_context)
) -> AutomatedBookingResult:
    booking = await matcher_service.create_automatic_booking(ctx, body)
    return AutomatedBookingResult(
        appointment=appointment_to_public(booking.appointment),
        client=ClientPublic.model_validate(booking.client),
        client_created=booking.client_created,
        professional_id=booking.professional.id,
        professional_name=booking.professional.full_name,
        service_name=booking.service.name,
        duration_minutes=booking.service.duration_minutes,
        confirmation_message=booking.confirmation_message,
    )


@router.patch("/{code}", response_model=AppointmentPublic)
async def modify_automatic_booking(
    code: str, body: AutomatedModification, ctx: TenantContext = Depends(get_context)
) -> AppointmentPublic:
    return appointment_to_public(await matcher_service.modify_automatic_booking(ctx, code, body))


@router.post("/{code}/cancel", response_model=AppointmentPublic)
async def cancel_automatic_booking(
    code: str, body: CancelRequest | None = None, ctx: TenantContext = Depends(get_context)
) -> AppointmentPublic:
    reason = body.reason if body else None
    return appointment_to_public(await matcher_service.cancel_automatic_booking(ctx, code, reason))
