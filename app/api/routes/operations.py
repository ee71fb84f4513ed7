from fastapi import APIRouter, Depends, status

from app.api.deps import get_context, require_staff
from app.core.context import TenantContext
from app.models.appointment import WalkInCreate
from app.models.operations import DashboardToday, ProfessionalAvailability, WaitingQueue, WalkInResult
from app.services import dashboard_service, walk_in_service
from app.services.appointment_service import appointment_to_public

router = APIRouter(prefix="/operations", tags=["operations"], dependencies=[Depends(require_staff)])


@router.post("/walk-ins", response_model=WalkInResult, status_code=status.HTTP_201_CREATED)
async def create_walk_in(body: WalkInCreate, ctx: TenantContext = Depends(get_context)) -> WalkInResult:
    outcome = await walk_in_service.create_walk_in(ctx, body)
    return WalkInResult(
        appointment=appointment_to_public(outcome.appointment),
        queued=outcome.queued,
        estimated_wait_minutes=outcome.estimated_wait_minutes,
        warnings=outcome.warnings,
    )


@router.get("/availability", response_model=list[ProfessionalAvailability])
async def immediate_availability(
    service_id: int,
    professional_id: int | None = None,
    ctx: TenantContext = Depends(get_context),
) -> list[ProfessionalAvailability]:
    return await walk_in_service.rank_professionals(ctx, service_id, professional_id)


@router.get("/queue", response_model=WaitingQueue)
async def waiting_queue(
    professional_id: int | None = None, ctx: TenantContext = Depends(get_context)
) -> WaitingQueue:
    return await walk_in_service.waiting_queue(ctx, professional_id)


@router.get("/dashboard", response_model=DashboardToday)
async def dashboard(professional_id: int | None = None, ctx: TenantContext = Depends(get_context)) -> DashboardToday:
    return await dashboard_service.dashboard_today(ctx, professional_id)
