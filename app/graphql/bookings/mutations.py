import logging

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.bookings.types import (
    BookClassInput, BookDirectVisitInput, Booking, BookingResponse, CancelBookingResponse
)
from app.graphql.responses import (
    FORBIDDEN, FORBIDDEN_MESSAGE, INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE, INVALID_ARGUMENT
)

logger = logging.getLogger(__name__)


def _booking_response(result, success_message: str) -> BookingResponse:
    if not result.ok:
        return BookingResponse(success=False, error_code=result.error_code, message=result.error.message)
    return BookingResponse(
        success=True,
        error_code=None,
        message=success_message,
        booking=Booking.from_data(result.value),
    )


async def _may_manage_booking(info, booking_id: int) -> bool:
    owner_id = await info.context.services.bookings.get_booking_owner(booking_id)
    return owner_id is None or resolve_member_id(info, owner_id) is not None


@strawberry.type
class BookingMutation:
    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def book_direct_visit(self, info: Info, input: BookDirectVisitInput) -> BookingResponse:
        """Book a drop-in visit and pay for it with credits"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None:
            return BookingResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.bookings.book_direct_visit(
                member_id, input.gym_id, input.credits_to_use
            )
            return _booking_response(result, "Visit booked")
        except ValueError as e:
            return BookingResponse(success=False, error_code=INVALID_ARGUMENT, message=str(e))
        except Exception as e:
            logger.error(f"Error booking visit for member {member_id}: {e}", exc_info=True)
            return BookingResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def book_class(self, info: Info, input: BookClassInput) -> BookingResponse:
        """Book a class and pay its credit price"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None:
            return BookingResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.bookings.book_class(member_id, input.class_id)
            return _booking_response(result, "Class booked")
        except Exception as e:
            logger.error(f"Error booking class {input.class_id} for member {member_id}: {e}", exc_info=True)
            return BookingResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def cancel_booking(self, info: Info, booking_id: int) -> CancelBookingResponse:
        """Delete a booking and refund its credits"""
        if not await _may_manage_booking(info, booking_id):
            return CancelBookingResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.bookings.cancel_booking(booking_id)
        except Exception as e:
            logger.error(f"Error cancelling booking {booking_id}: {e}", exc_info=True)
            return CancelBookingResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

        if not result.ok:
            return CancelBookingResponse(success=False, error_code=result.error_code, message=result.error.message)
        return CancelBookingResponse.from_data(result.value)

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def complete_booking(self, info: Info, booking_id: int) -> BookingResponse:
        """Mark a booking as used"""
        if not await _may_manage_booking(info, booking_id):
            return BookingResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.bookings.complete_booking(booking_id)
            return _booking_response(result, "Booking completed")
        except Exception as e:
            logger.error(f"Error completing booking {booking_id}: {e}", exc_info=True)
            return BookingResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)
