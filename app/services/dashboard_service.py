from decimal import Decimal

from app.core.context import TenantContext
from app.models.appointment import AppointmentOrigin, AppointmentState
from app.models.operations import DailyCounters, DashboardToday
from app.services.appointment_service import appointment_to_public, list_appointments


async def dashboard_today(ctx: TenantContext, professional_id: int | None = None) -> DashboardToday:
    appointments = await list_appointments(
        ctx, date_from=ctx.today, date_to=ctx.today, professional_id=professional_id
    )
    counters = DailyCounters(total=len(appointments))
    revenue = Decimal("0")
    for appointment in appointments:
        match appointment.state:
            case AppointmentState.COMPLETED:
                counters.completed += 1
                if appointment.paid:
                    revenue += appointment.final_price
            case AppointmentState.CANCELLED:
                counters.cancelled += 1
            case AppointmentState.NO_SHOW:
                counters.no_show += 1
            case AppointmentState.IN_PROGRESS:
                counters.in_progress += 1
        if appointment.origin == AppointmentOrigin.WALK_IN:
            counters.walk_ins += 1
    counters.revenue = revenue
    return DashboardToday(
        day=ctx.today,
        professional_id=professional_id,
        appointments=[appointment_to_public(a) for a in appointments],
        counters=counters,
    )
