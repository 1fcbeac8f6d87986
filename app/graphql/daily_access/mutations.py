from typing import Optional
import logging

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.daily_access.types import (
    GymSelectionInput, GymSelectionResponse, RollCycleResponse, SelectedGym
)
from app.graphql.responses import (
    FORBIDDEN, FORBIDDEN_MESSAGE, INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE
)

logger = logging.getLogger(__name__)


@strawberry.type
class DailyAccessMutation:
    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def add_gym(self, info: Info, input: GymSelectionInput) -> GymSelectionResponse:
        """Select a gym from the next billing period"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None:
            return GymSelectionResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.slots.add_gym(member_id, input.gym_id)
        except Exception as e:
            logger.error(f"Error adding gym {input.gym_id} for member {member_id}: {e}", exc_info=True)
            return GymSelectionResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return GymSelectionResponse(success=False, error_code=result.error_code, message=result.error.message)
        return GymSelectionResponse(
            success=True,
            error_code=None,
            message="Gym added, active from the next billing period",
            selection=SelectedGym.from_data(result.value),
        )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def remove_gym(self, info: Info, input: GymSelectionInput) -> GymSelectionResponse:
        """Drop a gym; active gyms stay usable until the period ends"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None:
            return GymSelectionResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.slots.remove_gym(member_id, input.gym_id)
        except Exception as e:
            logger.error(f"Error removing gym {input.gym_id} for member {member_id}: {e}", exc_info=True)
            return GymSelectionResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return GymSelectionResponse(success=False, error_code=result.error_code, message=result.error.message)
        if result.value is None:
            return GymSelectionResponse(success=True, error_code=None, message="Pending gym removed")
        return GymSelectionResponse(
            success=True,
            error_code=None,
            message="Gym will be removed at the end of the billing period",
            selection=SelectedGym.from_data(result.value),
        )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def roll_cycle(self, info: Info, member_id: Optional[int] = None) -> RollCycleResponse:
        """Activate pending gyms whose billing period has started"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return RollCycleResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        result = await info.context.services.slots.roll_cycle(member_id)
        if not result.ok:
            return RollCycleResponse(success=False, error_code=result.error_code, message=result.error.message)
        return RollCycleResponse(
            success=True,
            error_code=None,
            message=f"{result.value} gyms activated",
            activated=result.value,
        )
