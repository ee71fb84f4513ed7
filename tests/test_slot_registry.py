"""
Tests for slot binding, releasing and holding.
"""

from datetime import time, timedelta

import pytest

from app.core.errors import Conflict, NotFound
from app.models import SlotState
from app.services import audit_service, slot_service
from factories import NOW, TOMORROW, add_appointment, add_slot, audit_kinds


async def _slot_and_appointment(uow, seed):
    async with uow(seed.org_id) as ctx:
        slot = await add_slot(ctx, seed.ana_id, TOMORROW, time(9, 0), time(9, 30))
        appointment = await add_appointment(ctx, seed, TOMORROW, time(9, 0), time(9, 30))
        return slot.id, appointment.id


@pytest.mark.asyncio
async def test_bind_occupies_slot_and_bumps_version(seed, uow):
    """Test a successful bind marks the slot occupied with the next version."""
    slot_id, appointment_id = await _slot_and_appointment(uow, seed)

    async with uow(seed.org_id) as ctx:
        slot = await slot_service.bind(ctx, slot_id, appointment_id, expected_version=0)

    assert slot.state == SlotState.OCCUPIED
    assert slot.appointment_id == appointment_id
    assert slot.version == 1


@pytest.mark.asyncio
async def test_bind_with_stale_version_conflicts(seed, uow):
    """Test a bind carrying an outdated version is refused."""
    slot_id, appointment_id = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        await slot_service.hold(ctx, slot_id, "someone", 10)

    with pytest.raises(Conflict):
        async with uow(seed.org_id) as ctx:
            await slot_service.bind(ctx, slot_id, appointment_id, expected_version=0)

    async with uow(seed.org_id) as ctx:
        slot = await slot_service.get_slot(ctx, slot_id)
        assert slot.state == SlotState.HELD
        assert slot.appointment_id is None


@pytest.mark.asyncio
async def test_only_one_of_two_binds_wins(seed, uow):
    """Test two open units reading the same version: only the first bind wins."""
    slot_id, first_id = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        second_id = (
            await add_appointment(ctx, seed, TOMORROW, time(9, 0), time(9, 30), client_id=seed.other_client_id)
        ).id

    async with uow(seed.org_id) as first:
        seen_version = (await slot_service.get_slot(first, slot_id)).version
        with pytest.raises(Conflict):
            async with uow(seed.org_id) as second:
                assert (await slot_service.get_slot(second, slot_id)).version == seen_version
                await slot_service.bind(first, slot_id, first_id, seen_version)
                await slot_service.bind(second, slot_id, second_id, seen_version)

    async with uow(seed.org_id) as ctx:
        slot = await slot_service.get_slot(ctx, slot_id)
    assert slot.appointment_id == first_id
    assert slot.version == seen_version + 1


@pytest.mark.asyncio
async def test_occupied_slot_cannot_be_rebound_without_version(seed, uow):
    """Test an occupied slot refuses a second appointment."""
    slot_id, appointment_id = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        other = await add_appointment(ctx, seed, TOMORROW, time(9, 0), time(9, 30), client_id=seed.other_client_id)
        await slot_service.bind(ctx, slot_id, appointment_id)

    with pytest.raises(Conflict):
        async with uow(seed.org_id) as ctx:
            await slot_service.bind(ctx, slot_id, other.id)


@pytest.mark.asyncio
async def test_release_is_idempotent(seed, uow):
    """Test releasing twice leaves one version bump."""
    slot_id, appointment_id = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        await slot_service.bind(ctx, slot_id, appointment_id)

    async with uow(seed.org_id) as ctx:
        first = await slot_service.release(ctx, slot_id)
        assert first.state == SlotState.AVAILABLE
        assert first.appointment_id is None
        assert first.version == 2
    async with uow(seed.org_id) as ctx:
        second = await slot_service.release(ctx, slot_id)
        assert second.version == 2


@pytest.mark.asyncio
async def test_hold_then_bind(seed, uow, session_maker):
    """Test a held slot can be bound by its holder."""
    slot_id, appointment_id = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        held = await slot_service.hold(ctx, slot_id, "bot-session", 10)
        assert held.state == SlotState.HELD
        assert held.held_until == NOW + timedelta(minutes=10)
    assert await audit_kinds(session_maker) == ["slot_held"]

    async with uow(seed.org_id) as ctx:
        slot = await slot_service.bind(ctx, slot_id, appointment_id, held.version)
    assert slot.state == SlotState.OCCUPIED
    assert slot.held_until is None
    assert slot.held_by is None


@pytest.mark.asyncio
async def test_active_hold_blocks_another_hold(seed, uow):
    """Test an unexpired hold cannot be taken over, an expired one can."""
    slot_id, _ = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        await slot_service.hold(ctx, slot_id, "first", 10)

    with pytest.raises(Conflict):
        async with uow(seed.org_id, now=NOW + timedelta(minutes=5)) as ctx:
            await slot_service.hold(ctx, slot_id, "second", 10)

    async with uow(seed.org_id, now=NOW + timedelta(minutes=11)) as ctx:
        slot = await slot_service.hold(ctx, slot_id, "second", 10)
    assert slot.held_by == "second"


@pytest.mark.asyncio
async def test_slot_of_other_tenant_is_invisible(seed, uow):
    """Test a unit of work never sees another organization's slots."""
    async with uow(seed.other_org_id) as ctx:
        foreign = await add_slot(ctx, seed.other_org_professional_id, TOMORROW, time(9, 0), time(9, 30))

    with pytest.raises(NotFound):
        async with uow(seed.org_id) as ctx:
            await slot_service.get_slot(ctx, foreign.id)


@pytest.mark.asyncio
async def test_find_covering_slot_and_listing(seed, uow):
    """Test the earliest bindable slot containing an interval is found."""
    async with uow(seed.org_id) as ctx:
        await add_slot(ctx, seed.ana_id, TOMORROW, time(9, 0), time(10, 0))
        later = await add_slot(ctx, seed.ana_id, TOMORROW, time(10, 0), time(11, 0))
        await add_slot(ctx, seed.luis_id, TOMORROW, time(10, 0), time(11, 0), state=SlotState.OCCUPIED)

        covering = await slot_service.find_covering_slot(ctx, seed.ana_id, TOMORROW, time(10, 15), time(10, 45))
        missing = await slot_service.find_covering_slot(ctx, seed.ana_id, TOMORROW, time(9, 45), time(10, 15))
        available = await slot_service.list_slots(ctx, TOMORROW, only_available=True)

    assert covering.id == later.id
    assert missing is None
    assert [s.professional_id for s in available] == [seed.ana_id, seed.ana_id]


@pytest.mark.asyncio
async def test_hold_is_audited(seed, uow):
    """Test a hold leaves an audit row naming the slot and the holder."""
    slot_id, _ = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        await slot_service.hold(ctx, slot_id, "bot-session", 10)
        events = await audit_service.list_events(ctx)

    assert [e.kind for e in events] == ["slot_held"]
    assert events[0].appointment_id is None
    assert events[0].details == {
        "slot_id": slot_id,
        "held_by": "bot-session",
        "held_until": str(NOW + timedelta(minutes=10)),
    }


@pytest.mark.asyncio
async def test_failed_hold_is_not_audited(seed, uow, session_maker):
    """Test a refused hold writes no audit row."""
    slot_id, appointment_id = await _slot_and_appointment(uow, seed)
    async with uow(seed.org_id) as ctx:
        await slot_service.bind(ctx, slot_id, appointment_id)

    with pytest.raises(Conflict):
        async with uow(seed.org_id) as ctx:
            await slot_service.hold(ctx, slot_id, "late", 10)
    assert await audit_kinds(session_maker) == []
