"""
Booking/Visit Service
Direct visits and class bookings paid for with ledger credits
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import GymNotInSelection, NotFound
from app.core.logging_config import log_credit_event
from app.core.results import ServiceResult
from app.crud.bookingsCrud import (
    BookingData,
    CancelledBookingData,
    CheckInPassData,
    cancel_booking,
    complete_booking,
    create_class_booking,
    create_direct_visit,
    ensure_no_active_booking,
    get_check_in_pass,
    get_member_bookings,
)
from app.crud.membershipsCrud import require_active_membership
from app.crud.selectedGymsCrud import get_usable_gym_ids, promote_due_selections
from app.models import Booking
from app.services.base_service import MemberScopedService

logger = logging.getLogger(__name__)


class BookingService(MemberScopedService):
    """Booking creation and the credit charge commit together or not at all"""

    async def _booking_owner(self, booking_id: int) -> Optional[int]:
        async with self.session_factory() as db:
            result = await db.execute(select(Booking.member_id).where(Booking.id == booking_id))
            return result.scalar_one_or_none()

    async def book_direct_visit(
        self,
        member_id: int,
        gym_id: int,
        credits_to_use: int = 1
    ) -> ServiceResult[BookingData]:
        async def operation(db: AsyncSession) -> BookingData:
            membership = await require_active_membership(db, member_id)
            await ensure_no_active_booking(db, member_id)

            if membership.plan is not None and membership.plan.is_daily_access:
                await promote_due_selections(db, member_id, commit=False)
                if gym_id not in await get_usable_gym_ids(db, member_id):
                    raise GymNotInSelection(gym_id)

            booking = await create_direct_visit(
                db,
                member_id=member_id,
                gym_id=gym_id,
                credits_to_use=credits_to_use,
                commit=False,
            )
            logger.info(f"Member {member_id} booked direct visit {booking.id} at gym {gym_id}")
            return booking

        result = await self._write(member_id, "book_direct_visit", operation)
        log_credit_event("direct_visit", member_id, credits_to_use, success=result.ok)
        return result

    async def book_class(self, member_id: int, class_id: int) -> ServiceResult[BookingData]:
        async def operation(db: AsyncSession) -> BookingData:
            await require_active_membership(db, member_id)
            booking = await create_class_booking(
                db,
                member_id=member_id,
                class_id=class_id,
                commit=False,
            )
            logger.info(f"Member {member_id} booked class {class_id} as booking {booking.id}")
            return booking

        result = await self._write(member_id, "book_class", operation)
        if result.ok:
            log_credit_event("class_booking", member_id, result.value.credits_used)
        return result

    async def cancel_booking(self, booking_id: int) -> ServiceResult[CancelledBookingData]:
        member_id = await self._booking_owner(booking_id)
        if member_id is None:
            return ServiceResult.failure(NotFound("Booking", booking_id))

        async def operation(db: AsyncSession) -> CancelledBookingData:
            return await cancel_booking(db, booking_id, commit=False)

        result = await self._write(member_id, "cancel_booking", operation)
        if result.ok and result.value.refunded_credits:
            log_credit_event("refund", member_id, result.value.refunded_credits,
                             remaining=result.value.remaining_credits)
        return result

    async def complete_booking(self, booking_id: int) -> ServiceResult[BookingData]:
        member_id = await self._booking_owner(booking_id)
        if member_id is None:
            return ServiceResult.failure(NotFound("Booking", booking_id))

        return await self._write(
            member_id,
            "complete_booking",
            lambda db: complete_booking(db, booking_id, commit=False),
        )

    async def get_check_in_pass(self, booking_id: int) -> ServiceResult[CheckInPassData]:
        return await self._read(
            "get_check_in_pass",
            lambda db: get_check_in_pass(db, booking_id),
        )

    async def list_bookings(self, member_id: int, status: Optional[str] = None) -> ServiceResult[List[BookingData]]:
        return await self._read(
            "list_bookings",
            lambda db: get_member_bookings(db, member_id, status),
        )

    async def get_booking_owner(self, booking_id: int) -> Optional[int]:
        return await self._booking_owner(booking_id)
