from typing import Optional

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.bookings.types import (
    Booking, BookingsResponse, CheckInPass, CheckInPassResponse
)
from app.graphql.responses import FORBIDDEN, FORBIDDEN_MESSAGE


@strawberry.type
class BookingQuery:
    @strawberry.field(permission_classes=[IsAuthenticated])
    async def bookings(
        self,
        info: Info,
        member_id: Optional[int] = None,
        status: Optional[str] = None
    ) -> BookingsResponse:
        """Member bookings, newest first"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return BookingsResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        result = await info.context.services.bookings.list_bookings(member_id, status)
        if not result.ok:
            return BookingsResponse(success=False, error_code=result.error_code, message=result.error.message)
        return BookingsResponse(
            success=True,
            error_code=None,
            message="OK",
            bookings=[Booking.from_data(b) for b in result.value],
            total_count=len(result.value),
        )

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def check_in_pass(self, info: Info, booking_id: int) -> CheckInPassResponse:
        """Pass shown at the gym entrance"""
        services = info.context.services
        owner_id = await services.bookings.get_booking_owner(booking_id)
        if owner_id is not None and resolve_member_id(info, owner_id) is None:
            return CheckInPassResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        result = await services.bookings.get_check_in_pass(booking_id)
        if not result.ok:
            return CheckInPassResponse(success=False, error_code=result.error_code, message=result.error.message)
        return CheckInPassResponse(
            success=True,
            error_code=None,
            message="OK",
            check_in_pass=CheckInPass.from_data(result.value),
        )
