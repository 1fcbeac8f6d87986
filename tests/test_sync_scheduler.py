"""
Tests for the periodic sync job and the per-member lock registry
"""
import asyncio

import pytest

from app.services.member_locks import MemberLocks
from app.services.sync_scheduler import SubscriptionSyncScheduler


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(services):
    scheduler = SubscriptionSyncScheduler(services.reconciler, interval_minutes=60)

    await scheduler.start()
    assert scheduler.running is True
    assert scheduler.scheduler.get_job("subscription_sync") is not None

    await scheduler.stop()
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_run_sync_keeps_last_report(services, seed, provider):
    member_id = await seed.member("Standard", subscription_id="sub_1")
    provider.advance_period("sub_1")
    scheduler = SubscriptionSyncScheduler(services.reconciler)

    report = await scheduler.run_sync()

    assert report is scheduler.last_report
    assert report.updated == 1
    assert report.processed_member_ids == [member_id]


@pytest.mark.asyncio
async def test_member_locks_serialize_same_member():
    locks = MemberLocks(timeout_seconds=1.0)
    order = []

    async def worker(name):
        async with locks.hold(1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert locks.is_locked(1) is False


@pytest.mark.asyncio
async def test_member_locks_do_not_block_other_members():
    locks = MemberLocks(timeout_seconds=0.05)

    async with locks.hold(1):
        async with locks.hold(2):
            assert locks.is_locked(1)
            assert locks.is_locked(2)
