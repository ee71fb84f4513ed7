"""
Tests for walk-in placement, professional ranking and the waiting queue.
"""

from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import update

from app.core.errors import Unavailable, ValidationFailed
from app.models import AppointmentOrigin, AppointmentState, Client, Service, WorkingHours
from app.models.appointment import WalkInCreate
from app.services import walk_in_service
from app.services.walk_in_service import Idle, InService
from factories import NOW, TODAY, add_appointment, audit_kinds

S = AppointmentState


def _at(hour: int, minute: int) -> datetime:
    return datetime.combine(TODAY, time(hour, minute))


async def _in_service(uow, seed, started: datetime, end: time, professional_id=None, **kwargs):
    async with uow(seed.org_id) as ctx:
        return await add_appointment(
            ctx,
            seed,
            TODAY,
            started.time(),
            end,
            state=S.IN_PROGRESS,
            professional_id=professional_id or seed.ana_id,
            actual_start_at=started,
            arrived_at=started,
            **kwargs,
        )


def _walk_in(seed, **kwargs) -> WalkInCreate:
    values = {"service_id": seed.beard_id, "professional_id": seed.ana_id, "client_phone": seed.client_phone}
    values.update(kwargs)
    return WalkInCreate(**values)


@pytest.mark.asyncio
async def test_walk_in_queued_after_current_service(seed, uow, session_maker, admin):
    """Test a walk-in at 10:05 behind a haircut started at 10:00 is queued 10:30-10:50."""
    await _in_service(uow, seed, _at(10, 0), time(10, 30))

    async with uow(seed.org_id, admin) as ctx:
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    appointment = outcome.appointment
    assert outcome.queued
    assert outcome.estimated_wait_minutes == 25
    assert outcome.warnings == []
    assert appointment.state == S.CONFIRMED
    assert (appointment.start_time, appointment.end_time) == (time(10, 30), time(10, 50))
    assert appointment.origin == AppointmentOrigin.WALK_IN
    assert appointment.arrived_at == NOW
    assert appointment.actual_start_at is None
    assert appointment.final_price == appointment.price
    assert not appointment.confirmation_required
    assert await audit_kinds(session_maker, appointment.id) == ["appointment_walk_in_created"]


@pytest.mark.asyncio
async def test_walk_in_starts_now_when_idle(seed, uow):
    """Test an idle professional takes the walk-in immediately."""
    async with uow(seed.org_id) as ctx:
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    appointment = outcome.appointment
    assert not outcome.queued
    assert outcome.estimated_wait_minutes == 0
    assert appointment.state == S.IN_PROGRESS
    assert (appointment.start_time, appointment.end_time) == (time(10, 5), time(10, 25))
    assert appointment.actual_start_at == NOW


@pytest.mark.asyncio
async def test_idle_outside_working_hours_is_rejected(seed, uow):
    """Test an idle professional past closing time cannot take walk-ins."""
    with pytest.raises(ValidationFailed) as exc:
        async with uow(seed.org_id, now=_at(21, 0)) as ctx:
            await walk_in_service.create_walk_in(ctx, _walk_in(seed))
    assert "no working hours right now" in exc.value.message


@pytest.mark.asyncio
async def test_busy_outside_working_hours_warns(seed, uow):
    """Test a queued walk-in past closing time is accepted with a warning."""
    await _in_service(uow, seed, _at(19, 50), time(20, 20))

    async with uow(seed.org_id, now=_at(20, 0)) as ctx:
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    assert outcome.queued
    assert (outcome.appointment.start_time, outcome.appointment.end_time) == (time(20, 20), time(20, 40))
    assert len(outcome.warnings) == 1
    assert "outside working hours" in outcome.warnings[0]


@pytest.mark.asyncio
async def test_queued_end_is_clamped_before_midnight(seed, uow):
    """Test a queued walk-in running past midnight ends at 23:59."""
    await _in_service(uow, seed, _at(23, 15), time(23, 45))

    async with uow(seed.org_id, now=_at(23, 20)) as ctx:
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    assert (outcome.appointment.start_time, outcome.appointment.end_time) == (time(23, 45), time(23, 59))
    assert outcome.appointment.appointment_date == TODAY


@pytest.mark.asyncio
async def test_queued_start_on_next_day_is_rejected(seed, uow, session_maker):
    """Test a walk-in that could only start tomorrow is refused."""
    await _in_service(uow, seed, _at(23, 50), time(23, 59))

    with pytest.raises(ValidationFailed):
        async with uow(seed.org_id, now=_at(23, 55)) as ctx:
            await walk_in_service.create_walk_in(ctx, _walk_in(seed, client_phone="5553334444"))

    async with session_maker() as session:
        assert (await session.execute(Client.__table__.select().where(Client.phone == "5553334444"))).first() is None


@pytest.mark.asyncio
async def test_overrunning_service_never_estimates_the_past(seed, uow):
    """Test an overrunning service pushes the walk-in to now, not to the past."""
    await _in_service(uow, seed, _at(9, 0), time(9, 30))

    async with uow(seed.org_id) as ctx:
        status = await walk_in_service.professional_status(ctx, seed.ana_id)
        assert isinstance(status, InService)
        assert await walk_in_service.estimated_free_at(ctx, status) == NOW
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    assert outcome.queued
    assert outcome.estimated_wait_minutes == 0
    assert outcome.appointment.start_time == time(10, 5)


@pytest.mark.asyncio
async def test_unstarted_service_estimates_from_now(seed, uow):
    """Test an in-progress appointment without a start time counts its full duration from now."""
    async with uow(seed.org_id) as ctx:
        current = await add_appointment(ctx, seed, TODAY, time(10, 0), time(10, 30), state=S.IN_PROGRESS)
        status = await walk_in_service.professional_status(ctx, seed.ana_id)
        assert status == InService(appointment=current, started_at=None)
        assert await walk_in_service.estimated_free_at(ctx, status) == NOW + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_second_walk_in_at_same_estimate_is_rejected(seed, uow):
    """Test two walk-ins cannot both be queued into the same gap."""
    await _in_service(uow, seed, _at(10, 0), time(10, 30))
    async with uow(seed.org_id) as ctx:
        await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    with pytest.raises(ValidationFailed) as exc:
        async with uow(seed.org_id) as ctx:
            await walk_in_service.create_walk_in(ctx, _walk_in(seed, client_phone="5553334444"))
    assert [e.kind for e in exc.value.errors] == ["overlap"]


@pytest.mark.asyncio
async def test_auto_assign_prefers_free_professional(seed, uow):
    """Test auto-assignment picks an idle professional over a busy one."""
    await _in_service(uow, seed, _at(10, 0), time(10, 30))

    async with uow(seed.org_id) as ctx:
        ranking = await walk_in_service.rank_professionals(ctx, seed.beard_id)
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed, professional_id=None))

    assert [r.professional_id for r in ranking] == [seed.luis_id, seed.ana_id]
    assert [r.available_now for r in ranking] == [True, False]
    assert outcome.appointment.professional_id == seed.luis_id
    assert not outcome.queued


@pytest.mark.asyncio
async def test_auto_assign_balances_load(seed, uow):
    """Test among free professionals the one with fewer appointments today wins."""
    async with uow(seed.org_id) as ctx:
        await add_appointment(ctx, seed, TODAY, time(15, 0), time(15, 30), state=S.CONFIRMED)
        ranking = await walk_in_service.rank_professionals(ctx, seed.beard_id)

    assert [(r.professional_id, r.appointments_today) for r in ranking] == [(seed.luis_id, 0), (seed.ana_id, 1)]


@pytest.mark.asyncio
async def test_auto_assign_without_certified_professional(seed, uow):
    """Test a service nobody performs cannot be assigned."""
    async with uow(seed.org_id) as ctx:
        color = Service(organization_id=seed.org_id, name="Color", duration_minutes=60)
        ctx.session.add(color)
        await ctx.session.flush()
        assert await walk_in_service.rank_professionals(ctx, color.id) == []


@pytest.mark.asyncio
async def test_walk_in_client_resolution(seed, uow):
    """Test known phones are reused, new phones and bare names create clients."""
    async with uow(seed.org_id) as ctx:
        known = await walk_in_service.create_walk_in(ctx, _walk_in(seed, professional_id=seed.ana_id))
        by_phone = await walk_in_service.create_walk_in(
            ctx, _walk_in(seed, professional_id=seed.luis_id, client_phone="555 777 8888", client_name="Rosa")
        )
        new_client = await ctx.session.get(Client, by_phone.appointment.client_id)

    assert known.appointment.client_id == seed.client_id
    assert new_client.phone == "5557778888"
    assert new_client.name == "Rosa"
    assert new_client.source == "walk_in"


@pytest.mark.asyncio
async def test_walk_in_needs_client_details(seed, uow):
    """Test a walk-in without any client information is refused."""
    with pytest.raises(ValidationFailed):
        async with uow(seed.org_id) as ctx:
            await walk_in_service.create_walk_in(ctx, _walk_in(seed, client_phone=None))


@pytest.mark.asyncio
async def test_status_idle_without_service(seed, uow):
    """Test a professional with nothing in progress is idle."""
    async with uow(seed.org_id) as ctx:
        assert await walk_in_service.professional_status(ctx, seed.luis_id) == Idle()


@pytest.mark.asyncio
async def test_waiting_queue_lists_arrived_clients(seed, uow):
    """Test queued walk-ins and checked-in bookings appear in serving order."""
    await _in_service(uow, seed, _at(10, 0), time(10, 30))
    async with uow(seed.org_id) as ctx:
        queued = await walk_in_service.create_walk_in(ctx, _walk_in(seed))
        booked = await add_appointment(
            ctx,
            seed,
            TODAY,
            time(11, 0),
            time(11, 30),
            state=S.CONFIRMED,
            professional_id=seed.luis_id,
            client_id=seed.other_client_id,
            arrived_at=NOW,
        )
        await add_appointment(ctx, seed, TODAY, time(12, 0), time(12, 30), state=S.CONFIRMED)

    async with uow(seed.org_id, now=NOW + timedelta(minutes=10)) as ctx:
        queue = await walk_in_service.waiting_queue(ctx)
        only_ana = await walk_in_service.waiting_queue(ctx, seed.ana_id)

    assert [e.appointment_id for e in queue.entries] == [queued.appointment.id, booked.id]
    assert [e.position for e in queue.entries] == [1, 1]
    assert queue.entries[0].client_name == "Maria"
    assert queue.total_waiting == 2
    assert queue.average_wait_minutes == 10.0
    assert only_ana.total_waiting == 1


@pytest.mark.asyncio
async def test_overrun_estimate_uses_whole_seconds(seed, uow):
    """Test the busy estimate for an overrun uses the same truncated clock as the placement."""
    await _in_service(uow, seed, _at(9, 0), time(9, 30))

    async with uow(seed.org_id, now=NOW.replace(microsecond=500000)) as ctx:
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed))

    assert outcome.queued
    assert outcome.estimated_wait_minutes == 0
    assert outcome.appointment.start_time == time(10, 5)
    assert outcome.appointment.start_time.microsecond == 0
    assert outcome.appointment.end_time == time(10, 25)


@pytest.mark.asyncio
async def test_auto_assign_prefers_busy_over_off_duty(seed, uow):
    """Test a busy professional ranks above one with no working hours, and takes the walk-in."""
    await _in_service(uow, seed, _at(10, 0), time(10, 30))
    async with uow(seed.org_id) as ctx:
        await ctx.session.execute(
            update(WorkingHours).where(WorkingHours.professional_id == seed.luis_id).values(active=False)
        )

    async with uow(seed.org_id) as ctx:
        ranking = await walk_in_service.rank_professionals(ctx, seed.beard_id)
        outcome = await walk_in_service.create_walk_in(ctx, _walk_in(seed, professional_id=None))

    assert [r.professional_id for r in ranking] == [seed.ana_id, seed.luis_id]
    assert [(r.available_now, r.in_service, r.on_duty) for r in ranking] == [(False, True, True), (False, False, False)]
    assert outcome.appointment.professional_id == seed.ana_id
    assert outcome.queued
    assert (outcome.appointment.start_time, outcome.appointment.end_time) == (time(10, 30), time(10, 50))


@pytest.mark.asyncio
async def test_auto_assign_with_everyone_off_duty(seed, uow):
    """Test auto-assignment refuses when no certified professional is working or busy."""
    with pytest.raises(Unavailable) as exc:
        async with uow(seed.org_id, now=_at(21, 0)) as ctx:
            await walk_in_service.create_walk_in(ctx, _walk_in(seed, professional_id=None))
    assert "on duty" in exc.value.message
