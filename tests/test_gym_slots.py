"""
Tests for Daily Access gym selections
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.conversions import utcnow
from app.core.errors import AlreadySelected, DailyAccessRequired, NotFound, SlotLimitExceeded
from app.models import SelectedGym
from app.services.gym_slot_service import GymSlotScheduler


@pytest.mark.asyncio
async def test_add_gym_beyond_max_slots_is_rejected(services, seed):
    member_id = await seed.member("Daily Access")
    past = utcnow() - timedelta(days=3)
    for name in ("Gym A", "Gym B", "Gym C"):
        await seed.selection(member_id, await seed.gym(name), "active", past)
    fourth = await seed.gym("Gym D")

    result = await services.slots.add_gym(member_id, fourth)

    assert not result.ok
    assert isinstance(result.error, SlotLimitExceeded)
    assert result.error.max_slots == 3


@pytest.mark.asyncio
async def test_re_adding_selected_gym_at_limit_reports_slot_limit(services, seed):
    member_id = await seed.member("Daily Access")
    past = utcnow() - timedelta(days=3)
    gym_ids = [await seed.gym(f"Gym {i}") for i in range(3)]
    for gym_id in gym_ids:
        await seed.selection(member_id, gym_id, "active", past)

    result = await services.slots.add_gym(member_id, gym_ids[0])

    assert isinstance(result.error, SlotLimitExceeded)
    assert result.error_code == "SLOT_LIMIT_EXCEEDED"


@pytest.mark.asyncio
async def test_concurrent_adds_never_exceed_max_slots(services, seed, session_factory):
    member_id = await seed.member("Daily Access")
    gym_ids = [await seed.gym(f"Gym {i}") for i in range(6)]

    results = await asyncio.gather(*(services.slots.add_gym(member_id, gym_id) for gym_id in gym_ids))

    assert sum(1 for r in results if r.ok) == 3
    assert sorted(r.error_code for r in results if not r.ok) == ["SLOT_LIMIT_EXCEEDED"] * 3
    async with session_factory() as db:
        rows = (await db.execute(select(SelectedGym).where(SelectedGym.member_id == member_id))).scalars().all()
    assert len(rows) == 3


@pytest.mark.asyncio
async def test_pending_gym_removed_before_period_is_deleted(services, seed, session_factory):
    member_id = await seed.member("Daily Access")
    gym_id = await seed.gym()

    added = await services.slots.add_gym(member_id, gym_id)
    assert added.ok
    assert added.value.status == "pending"

    removed = await services.slots.remove_gym(member_id, gym_id)
    assert removed.ok
    assert removed.value is None

    async with session_factory() as db:
        rows = (await db.execute(select(SelectedGym).where(SelectedGym.member_id == member_id))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_new_selection_starts_next_period(services, seed):
    member_id = await seed.member("Daily Access")
    membership = (await services.reconciler.get_membership(member_id)).value
    gym_id = await seed.gym()

    result = await services.slots.add_gym(member_id, gym_id)

    assert result.value.effective_from == membership.end_date
    assert result.value.gym_name == "Test Gym"


@pytest.mark.asyncio
async def test_add_same_gym_twice(services, seed):
    member_id = await seed.member("Daily Access")
    gym_id = await seed.gym()

    await services.slots.add_gym(member_id, gym_id)
    result = await services.slots.add_gym(member_id, gym_id)

    assert isinstance(result.error, AlreadySelected)


@pytest.mark.asyncio
async def test_add_unknown_gym(services, seed):
    member_id = await seed.member("Daily Access")

    result = await services.slots.add_gym(member_id, 4242)

    assert isinstance(result.error, NotFound)


@pytest.mark.asyncio
async def test_non_daily_access_member_cannot_select(services, seed):
    member_id = await seed.member("Standard")
    gym_id = await seed.gym()

    result = await services.slots.add_gym(member_id, gym_id)

    assert isinstance(result.error, DailyAccessRequired)
    assert result.error_code == "DAILY_ACCESS_REQUIRED"


@pytest.mark.asyncio
async def test_removing_active_gym_keeps_it_until_period_end(services, seed):
    member_id = await seed.member("Daily Access")
    gym_id = await seed.gym()
    await seed.selection(member_id, gym_id, "active", utcnow() - timedelta(days=5))

    removed = await services.slots.remove_gym(member_id, gym_id)
    assert removed.value.status == "removed"
    assert removed.value.effective_from > utcnow()

    selections = (await services.slots.list_selections(member_id)).value
    assert selections.current == []
    assert [s.gym_id for s in selections.ending] == [gym_id]

    # Still usable until the period ends
    visit = await services.bookings.book_direct_visit(member_id, gym_id)
    assert visit.ok


@pytest.mark.asyncio
async def test_removed_gym_frees_slot_and_can_be_added_again(services, seed):
    member_id = await seed.member("Daily Access")
    past = utcnow() - timedelta(days=3)
    gym_ids = [await seed.gym(f"Gym {i}") for i in range(3)]
    for gym_id in gym_ids:
        await seed.selection(member_id, gym_id, "active", past)

    await services.slots.remove_gym(member_id, gym_ids[0])
    readded = await services.slots.add_gym(member_id, gym_ids[0])

    assert readded.ok
    assert readded.value.status == "pending"


@pytest.mark.asyncio
async def test_due_pending_selections_are_promoted(services, seed):
    member_id = await seed.member("Daily Access")
    gym_id = await seed.gym()
    await seed.selection(member_id, gym_id, "pending", utcnow() - timedelta(minutes=1))
    future_gym = await seed.gym("Later Gym")
    await seed.selection(member_id, future_gym, "pending", utcnow() + timedelta(days=7))

    promoted = await services.slots.roll_cycle(member_id)
    assert promoted.value == 1

    selections = (await services.slots.list_selections(member_id)).value
    assert [s.gym_id for s in selections.current] == [gym_id]
    assert [s.gym_id for s in selections.pending] == [future_gym]
    assert selections.max_slots == 3


@pytest.mark.asyncio
async def test_max_slots_override(services, seed, session_factory):
    member_id = await seed.member("Daily Access")
    slots = GymSlotScheduler(session_factory, services.locks, max_slots_override=1)
    first, second = await seed.gym("One"), await seed.gym("Two")

    assert (await slots.add_gym(member_id, first)).ok
    result = await slots.add_gym(member_id, second)

    assert isinstance(result.error, SlotLimitExceeded)
    assert result.error.max_slots == 1
