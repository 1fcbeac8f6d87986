from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.conversions import as_utc, coerce_int, utcnow
from app.core.errors import NotFound
from app.models import Member, MembershipPlan, Membership, ScheduledChange


@dataclass
class MembershipPlanData:
    id: int
    title: str
    credits: int
    max_daily_gyms: int
    price: float
    currency: str
    stripe_price_id: Optional[str]


@dataclass
class ScheduledChangeData:
    membership_id: int
    scheduled_plan_id: int
    scheduled_plan_title: str
    scheduled_plan_credits: int
    scheduled_stripe_price_id: Optional[str]
    scheduled_change_date: Optional[datetime]
    confirmed: bool
    error: Optional[str]
    attempts: int


@dataclass
class MembershipData:
    id: int
    member_id: int
    plan_id: Optional[int]
    plan_title: Optional[str]
    credits: int
    credits_used: int
    remaining_credits: int
    start_date: datetime
    end_date: Optional[datetime]
    is_active: bool
    is_daily_access: bool
    stripe_subscription_id: Optional[str]
    stripe_status: Optional[str]
    scheduled_change: Optional[ScheduledChangeData]


def _plan_to_data(plan: MembershipPlan) -> MembershipPlanData:
    """Map MembershipPlan model to MembershipPlanData DTO."""
    return MembershipPlanData(
        id=plan.id,
        title=plan.title,
        credits=plan.credits,
        max_daily_gyms=plan.max_daily_gyms,
        price=float(plan.price),
        currency=plan.currency,
        stripe_price_id=plan.stripe_price_id,
    )


def scheduled_change_to_data(change: ScheduledChange) -> ScheduledChangeData:
    return ScheduledChangeData(
        membership_id=change.membership_id,
        scheduled_plan_id=change.scheduled_plan_id,
        scheduled_plan_title=change.scheduled_plan_title,
        scheduled_plan_credits=change.scheduled_plan_credits,
        scheduled_stripe_price_id=change.scheduled_stripe_price_id,
        scheduled_change_date=as_utc(change.scheduled_change_date),
        confirmed=change.confirmed,
        error=change.error,
        attempts=change.attempts,
    )


def membership_to_data(membership: Membership) -> MembershipData:
    """Map Membership (with plan and scheduled_change loaded) to MembershipData DTO."""
    plan = membership.plan
    change = membership.scheduled_change
    return MembershipData(
        id=membership.id,
        member_id=membership.member_id,
        plan_id=membership.plan_id,
        plan_title=membership.plan_title,
        credits=membership.credits,
        credits_used=membership.credits_used,
        remaining_credits=membership.remaining_credits,
        start_date=as_utc(membership.start_date),
        end_date=as_utc(membership.end_date),
        is_active=membership.is_active,
        is_daily_access=bool(plan and plan.is_daily_access),
        stripe_subscription_id=membership.stripe_subscription_id,
        stripe_status=membership.stripe_status,
        scheduled_change=scheduled_change_to_data(change) if change else None,
    )


def calculate_period_end(start_at: datetime) -> datetime:
    """Billing periods are one calendar month long."""
    return as_utc(start_at) + relativedelta(months=1)


def next_period_start(membership: Membership, now: Optional[datetime] = None) -> datetime:
    """
    Start of the next billing period.

    The local end_date is the period boundary; memberships without one (trial,
    never synced) fall back to one month from now.
    """
    end_date = as_utc(membership.end_date)
    if end_date is not None:
        return end_date
    return calculate_period_end(now or utcnow())


async def get_membership_plans(db: AsyncSession) -> List[MembershipPlanData]:
    """Get all available membership plans"""
    result = await db.execute(
        select(MembershipPlan).order_by(MembershipPlan.price.asc())
    )
    return [_plan_to_data(plan) for plan in result.scalars().all()]


async def get_membership_plan(db: AsyncSession, plan_id: int) -> Optional[MembershipPlan]:
    plan_id = coerce_int(plan_id)
    if plan_id is None:
        return None

    result = await db.execute(
        select(MembershipPlan).where(MembershipPlan.id == plan_id)
    )
    return result.scalar_one_or_none()


async def get_plan_by_stripe_price(db: AsyncSession, price_id: Optional[str]) -> Optional[MembershipPlan]:
    if not price_id:
        return None

    result = await db.execute(
        select(MembershipPlan).where(MembershipPlan.stripe_price_id == price_id)
    )
    return result.scalar_one_or_none()


async def create_membership_plan(
    db: AsyncSession,
    *,
    title: str,
    credits: int,
    price: float = 0,
    currency: str = "sek",
    max_daily_gyms: int = 0,
    stripe_price_id: Optional[str] = None,
    commit: bool = True
) -> MembershipPlan:
    """Create a new membership plan"""
    plan = MembershipPlan(
        title=title,
        credits=credits,
        price=Decimal(str(price)),
        currency=currency.lower(),
        max_daily_gyms=max_daily_gyms,
        stripe_price_id=stripe_price_id,
    )

    db.add(plan)
    if commit:
        await db.commit()
        await db.refresh(plan)
    else:
        await db.flush()
    return plan


async def create_member(
    db: AsyncSession,
    *,
    full_name: Optional[str] = None,
    email: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
    commit: bool = True
) -> Member:
    member = Member(full_name=full_name, email=email, stripe_customer_id=stripe_customer_id)
    db.add(member)
    if commit:
        await db.commit()
        await db.refresh(member)
    else:
        await db.flush()
    return member


async def get_member(db: AsyncSession, member_id: int) -> Optional[Member]:
    result = await db.execute(select(Member).where(Member.id == member_id))
    return result.scalar_one_or_none()


async def create_membership(
    db: AsyncSession,
    *,
    member_id: int,
    plan: MembershipPlan,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    credits_used: int = 0,
    stripe_subscription_id: Optional[str] = None,
    stripe_status: Optional[str] = None,
    commit: bool = True
) -> Membership:
    """Create the member's active membership, deactivating any previous one."""
    start = as_utc(start_date) or utcnow()

    previous = await get_active_membership(db, member_id)
    if previous is not None:
        previous.is_active = False
        previous.updated_at = utcnow()
        await db.flush()

    membership = Membership(
        member_id=member_id,
        plan_id=plan.id,
        plan_title=plan.title,
        credits=plan.credits,
        credits_used=credits_used,
        start_date=start,
        end_date=as_utc(end_date) or calculate_period_end(start),
        is_active=True,
        stripe_subscription_id=stripe_subscription_id,
        stripe_status=stripe_status,
    )
    db.add(membership)

    if commit:
        await db.commit()
        await db.refresh(membership)
    else:
        await db.flush()
    return membership


async def get_active_membership(
    db: AsyncSession,
    member_id: int
) -> Optional[Membership]:
    """
    Get the active membership for a member with its plan and scheduled change.

    Uses first() ordered by start_date so a duplicate active row (which the
    partial unique index should prevent) cannot crash the caller.
    """
    result = await db.execute(
        select(Membership)
        .options(
            selectinload(Membership.plan),
            selectinload(Membership.scheduled_change),
        )
        .where(
            and_(
                Membership.member_id == member_id,
                Membership.is_active.is_(True)
            )
        )
        .order_by(Membership.start_date.desc())
    )
    return result.scalars().first()


async def require_active_membership(db: AsyncSession, member_id: int) -> Membership:
    membership = await get_active_membership(db, member_id)
    if membership is None:
        raise NotFound("Active membership for member", member_id)
    return membership


async def get_membership_by_subscription_id(
    db: AsyncSession,
    subscription_id: str
) -> Optional[Membership]:
    result = await db.execute(
        select(Membership)
        .options(selectinload(Membership.plan))
        .where(Membership.stripe_subscription_id == subscription_id)
        .order_by(Membership.is_active.desc(), Membership.start_date.desc())
    )
    return result.scalars().first()


async def list_reconcilable_member_ids(db: AsyncSession) -> List[int]:
    """Members whose active membership is (or should be) backed by a provider subscription."""
    result = await db.execute(
        select(Membership.member_id)
        .join(MembershipPlan, MembershipPlan.id == Membership.plan_id)
        .where(
            and_(
                Membership.is_active.is_(True),
                or_(
                    Membership.stripe_subscription_id.is_not(None),
                    MembershipPlan.stripe_price_id.is_not(None),
                )
            )
        )
        .order_by(Membership.member_id)
    )
    return list(result.scalars().all())


def apply_plan(membership: Membership, plan: MembershipPlan, *, reset_usage: bool) -> None:
    """
    Point the membership at a new plan.

    credits_used never exceeds the new allowance so the ledger invariant holds.
    """
    membership.plan_id = plan.id
    membership.plan = plan
    membership.plan_title = plan.title
    if reset_usage:
        membership.credits_used = 0
    else:
        membership.credits_used = min(membership.credits_used or 0, plan.credits)
    membership.credits = plan.credits
    membership.updated_at = utcnow()


async def upsert_scheduled_change(
    db: AsyncSession,
    membership: Membership,
    plan: MembershipPlan,
    *,
    scheduled_change_date: Optional[datetime]
) -> ScheduledChange:
    """Create the pending change for the membership or retarget the existing one."""
    change = membership.scheduled_change
    if change is None:
        change = ScheduledChange(membership_id=membership.id)
        membership.scheduled_change = change
        db.add(change)

    change.scheduled_plan_id = plan.id
    change.scheduled_plan_title = plan.title
    change.scheduled_plan_credits = plan.credits
    change.scheduled_stripe_price_id = plan.stripe_price_id
    change.scheduled_change_date = scheduled_change_date
    change.confirmed = False
    change.error = None
    change.attempts = 0
    change.provider_schedule_id = None
    change.updated_at = utcnow()
    await db.flush()
    return change


async def clear_scheduled_change(db: AsyncSession, membership: Membership) -> None:
    change = membership.scheduled_change
    if change is None:
        return
    membership.scheduled_change = None
    await db.delete(change)
    await db.flush()
