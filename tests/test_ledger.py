"""
Tests for the credit ledger: charges, refunds and period resets
"""
import asyncio

import pytest

from app.core.errors import InsufficientCredits, NotFound


@pytest.mark.asyncio
async def test_charge_rejected_when_not_enough_credits(services, seed):
    """A charge larger than the remaining balance leaves the balance untouched."""
    member_id = await seed.member("Trial", credits_used=4)

    result = await services.ledger.charge(member_id, 2)

    assert not result.ok
    assert isinstance(result.error, InsufficientCredits)
    assert result.error_code == "INSUFFICIENT_CREDITS"
    assert result.error.remaining == 1

    balance = await services.ledger.get_balance(member_id)
    assert balance.value.credits == 5
    assert balance.value.credits_used == 4


@pytest.mark.asyncio
async def test_charge_then_refund_restores_balance(services, seed):
    member_id = await seed.member("Standard", credits_used=3)

    charged = await services.ledger.charge(member_id, 4)
    assert charged.ok
    assert charged.value.credits_used == 7
    assert charged.value.remaining == 3

    refunded = await services.ledger.refund(member_id, 4)
    assert refunded.ok
    assert refunded.value.credits_used == 3


@pytest.mark.asyncio
async def test_charge_can_use_the_last_credit(services, seed):
    member_id = await seed.member("Trial", credits_used=4)

    result = await services.ledger.charge(member_id, 1)

    assert result.ok
    assert result.value.remaining == 0


@pytest.mark.asyncio
async def test_refund_never_goes_below_zero(services, seed):
    member_id = await seed.member("Standard", credits_used=2)

    result = await services.ledger.refund(member_id, 5)

    assert result.ok
    assert result.value.credits_used == 0
    assert result.value.remaining == 10


@pytest.mark.asyncio
async def test_concurrent_charges_never_overspend(services, seed):
    """Ten parallel single-credit charges against five credits: exactly five succeed."""
    member_id = await seed.member("Trial")

    results = await asyncio.gather(*[services.ledger.charge(member_id, 1) for _ in range(10)])

    assert sum(1 for r in results if r.ok) == 5
    assert all(r.error_code == "INSUFFICIENT_CREDITS" for r in results if not r.ok)

    balance = await services.ledger.get_balance(member_id)
    assert balance.value.credits_used == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -3, 1.5, True])
async def test_invalid_amount_raises_value_error(services, seed, amount):
    member_id = await seed.member("Standard")

    with pytest.raises(ValueError):
        await services.ledger.charge(member_id, amount)

    balance = await services.ledger.get_balance(member_id)
    assert balance.value.credits_used == 0


@pytest.mark.asyncio
async def test_charge_without_active_membership(services, seed):
    result = await services.ledger.charge(999, 1)

    assert not result.ok
    assert isinstance(result.error, NotFound)


@pytest.mark.asyncio
async def test_reset_for_new_period(services, seed):
    member_id = await seed.member("Standard", credits_used=9)

    result = await services.ledger.reset_for_new_period(member_id, 20)

    assert result.ok
    assert result.value.credits == 20
    assert result.value.credits_used == 0
    assert result.value.remaining == 20


@pytest.mark.asyncio
async def test_lock_timeout_returns_member_busy(services, seed):
    member_id = await seed.member("Standard")
    services.locks.timeout_seconds = 0.05

    async with services.locks.hold(member_id):
        result = await services.ledger.charge(member_id, 1)

    assert not result.ok
    assert result.error_code == "MEMBER_BUSY"
    balance = await services.ledger.get_balance(member_id)
    assert balance.value.credits_used == 0
