"""Decides whether an interval is bookable for a professional on a day.

Read-only: never writes, never raises for a rejected interval. Callers turn an
invalid ``ScheduleValidation`` into ``ValidationFailed``.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, time

from sqlalchemy import or_, select

from app.core.context import TenantContext
from app.core.errors import ValidationFailed
from app.core.timeutils import fmt_time
from app.models.appointment import INACTIVE_STATES, Appointment
from app.models.schedule import ScheduleBlock, WorkingHours

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class ScheduleIssue:
    kind: str
    message: str


@dataclass
class ScheduleValidation:
    errors: list[ScheduleIssue] = field(default_factory=list)
    warnings: list[ScheduleIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def message(self) -> str:
        return "; ".join(issue.message for issue in self.errors)

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationFailed(self.message(), self.errors)


def intervals_overlap(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    """Half-open: back-to-back intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def block_affects(block: ScheduleBlock, start: time, end: time) -> bool:
    if block.start_time is None or block.end_time is None:
        return True
    return intervals_overlap(start, end, block.start_time, block.end_time)


async def working_windows(ctx: TenantContext, professional_id: int, day: date) -> list[WorkingHours]:
    """Active, booking-accepting windows for the weekday of ``day``."""
    result = await ctx.session.execute(
        select(WorkingHours)
        .where(
            WorkingHours.organization_id == ctx.organization_id,
            WorkingHours.professional_id == professional_id,
            WorkingHours.weekday == day.weekday(),
            WorkingHours.active.is_(True),
            WorkingHours.accepts_bookings.is_(True),
            or_(WorkingHours.valid_from.is_(None), WorkingHours.valid_from <= day),
            or_(WorkingHours.valid_until.is_(None), WorkingHours.valid_until >= day),
        )
        .order_by(WorkingHours.start_time)
    )
    return list(result.scalars().all())


async def active_blocks(ctx: TenantContext, professional_id: int, day: date) -> list[ScheduleBlock]:
    result = await ctx.session.execute(
        select(ScheduleBlock).where(
            ScheduleBlock.organization_id == ctx.organization_id,
            ScheduleBlock.active.is_(True),
            or_(ScheduleBlock.professional_id.is_(None), ScheduleBlock.professional_id == professional_id),
            ScheduleBlock.date_from <= day,
            ScheduleBlock.date_to >= day,
        )
    )
    return list(result.scalars().all())


async def active_appointments(
    ctx: TenantContext, professional_id: int, day: date, exclude_appointment_id: int | None = None
) -> list[Appointment]:
    q = select(Appointment).where(
        Appointment.organization_id == ctx.organization_id,
        Appointment.professional_id == professional_id,
        Appointment.appointment_date == day,
        Appointment.state.not_in(INACTIVE_STATES),
    )
    if exclude_appointment_id is not None:
        q = q.where(Appointment.id != exclude_appointment_id)
    result = await ctx.session.execute(q.order_by(Appointment.start_time))
    return list(result.scalars().all())


async def validate_interval(
    ctx: TenantContext,
    professional_id: int,
    day: date,
    start: time,
    end: time,
    exclude_appointment_id: int | None = None,
    is_walk_in: bool = False,
    allow_outside_working_hours: bool = False,
) -> ScheduleValidation:
    validation = ScheduleValidation()

    if start >= end:
        validation.errors.append(
            ScheduleIssue("midnight_crossing", "Start time must be before end time on the same day")
        )
        return validation

    windows = await working_windows(ctx, professional_id, day)
    hours_issue = None
    if not windows:
        hours_issue = ScheduleIssue(
            "not_working_day", f"The professional does not work on {WEEKDAY_NAMES[day.weekday()]}"
        )
    elif not any(w.start_time <= start and end <= w.end_time for w in windows):
        ranges = ", ".join(f"{fmt_time(w.start_time)}-{fmt_time(w.end_time)}" for w in windows)
        hours_issue = ScheduleIssue(
            "outside_working_hours",
            f"{fmt_time(start)}-{fmt_time(end)} is outside working hours ({ranges})",
        )
    if hours_issue is not None:
        if allow_outside_working_hours:
            validation.warnings.append(hours_issue)
            logger.info("Working hours waived: professional=%s day=%s %s", professional_id, day, hours_issue.message)
        else:
            validation.errors.append(hours_issue)

    for block in await active_blocks(ctx, professional_id, day):
        if block_affects(block, start, end):
            scope = "Organization" if block.professional_id is None else "Professional"
            validation.errors.append(ScheduleIssue("blocked", f"{scope} block: {block.title}"))

    for other in await active_appointments(ctx, professional_id, day, exclude_appointment_id):
        if intervals_overlap(start, end, other.start_time, other.end_time):
            validation.errors.append(
                ScheduleIssue(
                    "overlap",
                    f"Overlaps appointment {other.code} "
                    f"({fmt_time(other.start_time)}-{fmt_time(other.end_time)})",
                )
            )

    if validation.errors:
        logger.info(
            "Interval rejected: professional=%s day=%s %s-%s walk_in=%s reasons=%s",
            professional_id,
            day,
            start,
            end,
            is_walk_in,
            [issue.kind for issue in validation.errors],
        )
    return validation
