from typing import Optional
import logging

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, IsStaff, resolve_member_id
from app.graphql.responses import (
    FORBIDDEN, FORBIDDEN_MESSAGE, INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE
)
from app.graphql.subscriptions.types import (
    Membership,
    MembershipResponse,
    PlanChange,
    PlanChangeResponse,
    SchedulePlanChangeInput,
    ScheduledChange,
    ScheduledChangeResponse,
    SyncAllResponse,
    SyncOneResponse,
    SyncResult,
    SyncSummary,
)
from app.services.subscription_reconciler import PLAN_CHANGE_APPLIED, PLAN_CHANGE_UNCHANGED

logger = logging.getLogger(__name__)


@strawberry.type
class SubscriptionMutation:
    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def schedule_plan_change(self, info: Info, input: SchedulePlanChangeInput) -> PlanChangeResponse:
        """Switch plans now (no subscription yet) or at the next renewal"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None:
            return PlanChangeResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.reconciler.schedule_plan_change(member_id, input.plan_id)
        except Exception as e:
            logger.error(f"Error changing plan for member {member_id}: {e}", exc_info=True)
            return PlanChangeResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return PlanChangeResponse(success=False, error_code=result.error_code, message=result.error.message)

        if result.value.status == PLAN_CHANGE_APPLIED:
            message = "Plan changed"
        elif result.value.status == PLAN_CHANGE_UNCHANGED:
            message = "Already on this plan"
        else:
            message = "Plan change scheduled for the next billing period"
        return PlanChangeResponse(
            success=True,
            error_code=None,
            message=message,
            plan_change=PlanChange.from_data(result.value),
        )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def cancel_scheduled_change(self, info: Info, member_id: Optional[int] = None) -> ScheduledChangeResponse:
        """Keep the current plan after the next renewal"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return ScheduledChangeResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.reconciler.cancel_scheduled_change(member_id)
        except Exception as e:
            logger.error(f"Error cancelling scheduled change for member {member_id}: {e}", exc_info=True)
            return ScheduledChangeResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return ScheduledChangeResponse(success=False, error_code=result.error_code, message=result.error.message)
        return ScheduledChangeResponse(
            success=True,
            error_code=None,
            message="Scheduled change cancelled",
            scheduled_change=ScheduledChange.from_data(result.value),
        )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def cancel_membership(self, info: Info, member_id: Optional[int] = None) -> MembershipResponse:
        """Cancel the subscription and end the membership"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return MembershipResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.reconciler.cancel_membership(member_id)
        except Exception as e:
            logger.error(f"Error cancelling membership for member {member_id}: {e}", exc_info=True)
            return MembershipResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return MembershipResponse(success=False, error_code=result.error_code, message=result.error.message)
        return MembershipResponse(
            success=True,
            error_code=None,
            message="Membership cancelled",
            membership=Membership.from_data(result.value),
        )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def sync_one(self, info: Info, member_id: Optional[int] = None) -> SyncOneResponse:
        """Pull the member's subscription state from the payment provider"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return SyncOneResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.reconciler.sync_one(member_id)
        except Exception as e:
            logger.error(f"Error syncing member {member_id}: {e}", exc_info=True)
            return SyncOneResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return SyncOneResponse(success=False, error_code=result.error_code, message=result.error.message)
        return SyncOneResponse(
            success=True,
            error_code=None,
            message=f"Membership {result.value.outcome}",
            result=SyncResult.from_data(result.value),
        )

    @strawberry.mutation(permission_classes=[IsStaff])
    async def sync_all(self, info: Info) -> SyncAllResponse:
        """Reconcile every provider-backed membership"""
        try:
            report = await info.context.services.reconciler.sync_all()
        except Exception as e:
            logger.error(f"Error during sync_all: {e}", exc_info=True)
            return SyncAllResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        return SyncAllResponse(
            success=not report.timed_out,
            error_code="SYNC_TIMED_OUT" if report.timed_out else None,
            message=(
                f"{len(report.processed_member_ids)} members processed, "
                f"{len(report.errors)} errors"
            ),
            summary=SyncSummary.from_data(report),
        )
