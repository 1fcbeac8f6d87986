from dataclasses import dataclass
import logging

from sqlalchemy import update, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.conversions import utcnow
from app.core.errors import InsufficientCredits
from app.crud.membershipsCrud import require_active_membership
from app.models import Membership

logger = logging.getLogger(__name__)

_BALANCE_FIELDS = ["credits", "credits_used", "is_active", "updated_at"]


@dataclass
class CreditBalanceData:
    membership_id: int
    member_id: int
    credits: int
    credits_used: int
    remaining: int


def _balance_to_data(membership: Membership) -> CreditBalanceData:
    return CreditBalanceData(
        membership_id=membership.id,
        member_id=membership.member_id,
        credits=membership.credits,
        credits_used=membership.credits_used,
        remaining=membership.remaining_credits,
    )


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Credit amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise ValueError(f"Credit amount must be positive, got {amount}")


async def get_credit_balance(db: AsyncSession, member_id: int) -> CreditBalanceData:
    membership = await require_active_membership(db, member_id)
    return _balance_to_data(membership)


async def charge_credits(
    db: AsyncSession,
    member_id: int,
    amount: int,
    commit: bool = True
) -> CreditBalanceData:
    """
    Consume credits from the member's active membership.

    The UPDATE only matches while credits_used + amount <= credits, so two
    writers racing on the same row cannot push usage past the allowance.
    """
    _validate_amount(amount)
    membership = await require_active_membership(db, member_id)

    result = await db.execute(
        update(Membership)
        .where(
            Membership.id == membership.id,
            Membership.is_active.is_(True),
            Membership.credits_used + amount <= Membership.credits,
        )
        .values(
            credits_used=Membership.credits_used + amount,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    await db.refresh(membership, attribute_names=_BALANCE_FIELDS)
    if result.rowcount == 0:
        raise InsufficientCredits(amount, membership.remaining_credits)

    if commit:
        await db.commit()

    logger.debug(
        f"Charged {amount} credits for member {member_id}, "
        f"remaining {membership.remaining_credits}"
    )
    return _balance_to_data(membership)


async def refund_credits(
    db: AsyncSession,
    member_id: int,
    amount: int,
    commit: bool = True
) -> CreditBalanceData:
    """Return credits to the active membership; usage never drops below zero."""
    _validate_amount(amount)
    membership = await require_active_membership(db, member_id)

    await db.execute(
        update(Membership)
        .where(Membership.id == membership.id)
        .values(
            credits_used=case(
                (Membership.credits_used > amount, Membership.credits_used - amount),
                else_=0,
            ),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    await db.refresh(membership, attribute_names=_BALANCE_FIELDS)
    if commit:
        await db.commit()
    return _balance_to_data(membership)


async def reset_credits_for_new_period(
    db: AsyncSession,
    member_id: int,
    new_credits: int,
    commit: bool = True
) -> CreditBalanceData:
    if isinstance(new_credits, bool) or not isinstance(new_credits, int) or new_credits < 0:
        raise ValueError(f"Period credits must be a non-negative integer, got {new_credits!r}")

    membership = await require_active_membership(db, member_id)
    membership.credits = new_credits
    membership.credits_used = 0
    membership.updated_at = utcnow()

    if commit:
        await db.commit()
    else:
        await db.flush()
    return _balance_to_data(membership)
