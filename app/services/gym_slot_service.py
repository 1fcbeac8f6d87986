"""
Gym Slot Scheduler
Daily Access gym selections: additions and removals take effect at the next billing period
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import DailyAccessRequired
from app.core.results import ServiceResult
from app.crud.membershipsCrud import next_period_start, require_active_membership
from app.crud.selectedGymsCrud import (
    SelectedGymData,
    SelectionsData,
    add_selected_gym,
    list_selections,
    promote_due_selections,
    remove_selected_gym,
)
from app.models import Membership
from app.services.base_service import MemberScopedService
from app.services.member_locks import MemberLocks

logger = logging.getLogger(__name__)


class GymSlotScheduler(MemberScopedService):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: MemberLocks,
        max_slots_override: Optional[int] = None,
    ):
        super().__init__(session_factory, locks)
        self.max_slots_override = max_slots_override

    def max_slots_for(self, membership: Membership) -> int:
        if self.max_slots_override is not None:
            return self.max_slots_override
        return membership.plan.max_daily_gyms if membership.plan else 0

    async def _daily_access_membership(self, db: AsyncSession, member_id: int) -> Membership:
        membership = await require_active_membership(db, member_id)
        if membership.plan is None or not membership.plan.is_daily_access:
            raise DailyAccessRequired(member_id)
        return membership

    async def add_gym(self, member_id: int, gym_id: int) -> ServiceResult[SelectedGymData]:
        async def operation(db: AsyncSession) -> SelectedGymData:
            membership = await self._daily_access_membership(db, member_id)
            await promote_due_selections(db, member_id, commit=False)
            selection = await add_selected_gym(
                db,
                member_id=member_id,
                gym_id=gym_id,
                effective_from=next_period_start(membership),
                max_slots=self.max_slots_for(membership),
                commit=False,
            )
            logger.info(f"Member {member_id} selected gym {gym_id} from {selection.effective_from}")
            return selection

        return await self._write(member_id, "add_gym", operation)

    async def remove_gym(self, member_id: int, gym_id: int) -> ServiceResult[Optional[SelectedGymData]]:
        """Returns the removed row, or None when a pending row was deleted."""
        async def operation(db: AsyncSession) -> Optional[SelectedGymData]:
            membership = await require_active_membership(db, member_id)
            await promote_due_selections(db, member_id, commit=False)
            return await remove_selected_gym(
                db,
                member_id=member_id,
                gym_id=gym_id,
                effective_from=next_period_start(membership),
                commit=False,
            )

        return await self._write(member_id, "remove_gym", operation)

    async def list_selections(self, member_id: int) -> ServiceResult[SelectionsData]:
        async def operation(db: AsyncSession) -> SelectionsData:
            membership = await require_active_membership(db, member_id)
            await promote_due_selections(db, member_id, commit=False)
            selections = await list_selections(db, member_id)
            selections.max_slots = self.max_slots_for(membership) if membership.plan and membership.plan.is_daily_access else 0
            return selections

        return await self._write(member_id, "list_selections", operation)

    async def roll_cycle(self, member_id: int) -> ServiceResult[int]:
        """Activate pending selections whose period has started; returns how many."""
        async def operation(db: AsyncSession) -> int:
            promoted = await promote_due_selections(db, member_id, commit=False)
            if promoted:
                logger.info(f"Activated {promoted} pending gym selections for member {member_id}")
            return promoted

        return await self._write(member_id, "roll_cycle", operation)
