from typing import Optional, List

import strawberry
from strawberry.types import Info

from app.crud.membershipsCrud import get_membership_plans
from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.responses import FORBIDDEN, FORBIDDEN_MESSAGE
from app.graphql.subscriptions.types import Membership, MembershipPlan, MembershipResponse


@strawberry.type
class SubscriptionQuery:
    @strawberry.field(permission_classes=[IsAuthenticated])
    async def membership(self, info: Info, member_id: Optional[int] = None) -> MembershipResponse:
        """Active membership with any pending plan change"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return MembershipResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        result = await info.context.services.reconciler.get_membership(member_id)
        if not result.ok:
            return MembershipResponse(success=False, error_code=result.error_code, message=result.error.message)
        return MembershipResponse(
            success=True,
            error_code=None,
            message="OK",
            membership=Membership.from_data(result.value),
        )

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def membership_plans(self, info: Info) -> List[MembershipPlan]:
        """All plans, cheapest first"""
        async with info.context.services.session_factory() as db:
            plans = await get_membership_plans(db)
        return [MembershipPlan.from_data(plan) for plan in plans]
