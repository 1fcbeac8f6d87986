from datetime import datetime
from typing import Optional, List

import strawberry
from app.crud.membershipsCrud import MembershipData, MembershipPlanData, ScheduledChangeData
from app.services.subscription_reconciler import PlanChangeData, SyncOutcome, SyncReport


@strawberry.type
class MembershipPlan:
    id: int
    title: str
    credits: int
    max_daily_gyms: int
    price: float
    currency: str
    is_daily_access: bool

    @classmethod
    def from_data(cls, data: MembershipPlanData) -> "MembershipPlan":
        return cls(
            id=data.id,
            title=data.title,
            credits=data.credits,
            max_daily_gyms=data.max_daily_gyms,
            price=data.price,
            currency=data.currency,
            is_daily_access=data.max_daily_gyms > 0,
        )


@strawberry.type
class ScheduledChange:
    scheduled_plan_id: int
    scheduled_plan_title: str
    scheduled_plan_credits: int
    scheduled_change_date: Optional[datetime]
    confirmed: bool
    error: Optional[str]
    attempts: int

    @classmethod
    def from_data(cls, data: ScheduledChangeData) -> "ScheduledChange":
        return cls(
            scheduled_plan_id=data.scheduled_plan_id,
            scheduled_plan_title=data.scheduled_plan_title,
            scheduled_plan_credits=data.scheduled_plan_credits,
            scheduled_change_date=data.scheduled_change_date,
            confirmed=data.confirmed,
            error=data.error,
            attempts=data.attempts,
        )


@strawberry.type
class Membership:
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
    stripe_status: Optional[str]
    has_subscription: bool
    scheduled_change: Optional[ScheduledChange]

    @classmethod
    def from_data(cls, data: MembershipData) -> "Membership":
        return cls(
            id=data.id,
            member_id=data.member_id,
            plan_id=data.plan_id,
            plan_title=data.plan_title,
            credits=data.credits,
            credits_used=data.credits_used,
            remaining_credits=data.remaining_credits,
            start_date=data.start_date,
            end_date=data.end_date,
            is_active=data.is_active,
            is_daily_access=data.is_daily_access,
            stripe_status=data.stripe_status,
            has_subscription=bool(data.stripe_subscription_id),
            scheduled_change=ScheduledChange.from_data(data.scheduled_change) if data.scheduled_change else None,
        )


@strawberry.type
class PlanChange:
    member_id: int
    status: str
    plan_id: Optional[int]
    plan_title: Optional[str]
    scheduled_change: Optional[ScheduledChange]

    @classmethod
    def from_data(cls, data: PlanChangeData) -> "PlanChange":
        return cls(
            member_id=data.member_id,
            status=data.status,
            plan_id=data.plan_id,
            plan_title=data.plan_title,
            scheduled_change=ScheduledChange.from_data(data.scheduled_change) if data.scheduled_change else None,
        )


@strawberry.type
class SyncResult:
    member_id: int
    outcome: str
    changes: List[str]

    @classmethod
    def from_data(cls, data: SyncOutcome) -> "SyncResult":
        return cls(member_id=data.member_id, outcome=data.outcome, changes=list(data.changes))


@strawberry.type
class SyncFailure:
    member_id: int
    error_code: str
    message: str


@strawberry.type
class SyncSummary:
    created: int
    updated: int
    unchanged: int
    errors: List[SyncFailure]
    processed_member_ids: List[int]
    timed_out: bool

    @classmethod
    def from_data(cls, data: SyncReport) -> "SyncSummary":
        return cls(
            created=data.created,
            updated=data.updated,
            unchanged=data.unchanged,
            errors=[
                SyncFailure(member_id=e.member_id, error_code=e.error_code, message=e.message)
                for e in data.errors
            ],
            processed_member_ids=list(data.processed_member_ids),
            timed_out=data.timed_out,
        )


@strawberry.input
class SchedulePlanChangeInput:
    plan_id: int
    member_id: Optional[int] = None


# Response types
@strawberry.type
class MembershipResponse:
    success: bool
    error_code: Optional[str]
    message: str
    membership: Optional[Membership] = None


@strawberry.type
class PlanChangeResponse:
    success: bool
    error_code: Optional[str]
    message: str
    plan_change: Optional[PlanChange] = None


@strawberry.type
class ScheduledChangeResponse:
    success: bool
    error_code: Optional[str]
    message: str
    scheduled_change: Optional[ScheduledChange] = None


@strawberry.type
class SyncOneResponse:
    success: bool
    error_code: Optional[str]
    message: str
    result: Optional[SyncResult] = None


@strawberry.type
class SyncAllResponse:
    success: bool
    error_code: Optional[str]
    message: str
    summary: Optional[SyncSummary] = None
