from typing import Optional

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.daily_access.types import GymSelections, GymSelectionsResponse
from app.graphql.responses import FORBIDDEN, FORBIDDEN_MESSAGE


@strawberry.type
class DailyAccessQuery:
    @strawberry.field(permission_classes=[IsAuthenticated])
    async def gym_selections(self, info: Info, member_id: Optional[int] = None) -> GymSelectionsResponse:
        """Current, pending and ending Daily Access gyms"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return GymSelectionsResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        result = await info.context.services.slots.list_selections(member_id)
        if not result.ok:
            return GymSelectionsResponse(success=False, error_code=result.error_code, message=result.error.message)
        return GymSelectionsResponse(
            success=True,
            error_code=None,
            message="OK",
            selections=GymSelections.from_data(result.value),
        )
