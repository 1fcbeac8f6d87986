from datetime import datetime
from typing import Optional, List

import strawberry
from app.crud.bookingsCrud import BookingData, CancelledBookingData, CheckInPassData


@strawberry.type
class Booking:
    id: int
    member_id: int
    gym_id: Optional[int]
    class_id: Optional[int]
    credits_used: int
    status: str
    created_at: datetime
    completed_at: Optional[datetime]
    gym_name: Optional[str]
    class_name: Optional[str]
    class_start: Optional[datetime]
    class_end: Optional[datetime]

    @classmethod
    def from_data(cls, data: BookingData) -> "Booking":
        return cls(
            id=data.id,
            member_id=data.member_id,
            gym_id=data.gym_id,
            class_id=data.class_id,
            credits_used=data.credits_used,
            status=data.status,
            created_at=data.created_at,
            completed_at=data.completed_at,
            gym_name=data.gym_name,
            class_name=data.class_name,
            class_start=data.class_start,
            class_end=data.class_end,
        )


@strawberry.type
class CheckInPass:
    booking_id: int
    member_id: int
    gym_id: Optional[int]
    gym_name: Optional[str]
    class_name: Optional[str]
    valid_from: datetime
    valid_until: datetime
    is_valid: bool

    @classmethod
    def from_data(cls, data: CheckInPassData) -> "CheckInPass":
        return cls(
            booking_id=data.booking_id,
            member_id=data.member_id,
            gym_id=data.gym_id,
            gym_name=data.gym_name,
            class_name=data.class_name,
            valid_from=data.valid_from,
            valid_until=data.valid_until,
            is_valid=data.is_valid,
        )


@strawberry.input
class BookDirectVisitInput:
    gym_id: int
    credits_to_use: int = 1
    member_id: Optional[int] = None


@strawberry.input
class BookClassInput:
    class_id: int
    member_id: Optional[int] = None


# Response types
@strawberry.type
class BookingResponse:
    """Response for booking operations"""
    success: bool
    error_code: Optional[str]
    message: str
    booking: Optional[Booking] = None


@strawberry.type
class CancelBookingResponse:
    success: bool
    error_code: Optional[str]
    message: str
    refunded_credits: int = 0
    remaining_credits: Optional[int] = None

    @classmethod
    def from_data(cls, data: CancelledBookingData) -> "CancelBookingResponse":
        return cls(
            success=True,
            error_code=None,
            message="Booking cancelled",
            refunded_credits=data.refunded_credits,
            remaining_credits=data.remaining_credits,
        )


@strawberry.type
class BookingsResponse:
    success: bool
    error_code: Optional[str]
    message: str
    bookings: List[Booking] = strawberry.field(default_factory=list)
    total_count: int = 0


@strawberry.type
class CheckInPassResponse:
    success: bool
    error_code: Optional[str]
    message: str
    check_in_pass: Optional[CheckInPass] = None
