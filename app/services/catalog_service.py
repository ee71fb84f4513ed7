from sqlalchemy import select

from app.core.context import TenantContext
from app.core.errors import NotFound, ValidationFailed
from app.models.professional import Professional, ProfessionalService
from app.models.service import Service


async def get_active_service(ctx: TenantContext, service_id: int) -> Service:
    result = await ctx.session.execute(
        select(Service).where(
            Service.id == service_id,
            Service.organization_id == ctx.organization_id,
            Service.active.is_(True),
        )
    )
    service = result.scalar_one_or_none()
    if not service:
        raise NotFound("Service", service_id)
    return service


async def get_active_professional(ctx: TenantContext, professional_id: int, *, lock: bool = False) -> Professional:
    q = select(Professional).where(
        Professional.id == professional_id,
        Professional.organization_id == ctx.organization_id,
        Professional.active.is_(True),
    )
    if lock:
        q = q.with_for_update()
    result = await ctx.session.execute(q)
    professional = result.scalar_one_or_none()
    if not professional:
        raise NotFound("Professional", professional_id)
    return professional


async def is_certified(ctx: TenantContext, professional_id: int, service_id: int) -> bool:
    result = await ctx.session.execute(
        select(ProfessionalService.id).where(
            ProfessionalService.organization_id == ctx.organization_id,
            ProfessionalService.professional_id == professional_id,
            ProfessionalService.service_id == service_id,
        )
    )
    return result.first() is not None


async def ensure_certified(ctx: TenantContext, professional: Professional, service: Service) -> None:
    if not await is_certified(ctx, professional.id, service.id):
        raise ValidationFailed(f"{professional.full_name} does not perform {service.name}")


async def certified_professionals(ctx: TenantContext, service_id: int) -> list[Professional]:
    """Active professionals able to perform the service, by id."""
    result = await ctx.session.execute(
        select(Professional)
        .join(ProfessionalService, ProfessionalService.professional_id == Professional.id)
        .where(
            Professional.organization_id == ctx.organization_id,
            Professional.active.is_(True),
            ProfessionalService.organization_id == ctx.organization_id,
            ProfessionalService.service_id == service_id,
        )
        .order_by(Professional.id)
    )
    return list(result.scalars().all())
