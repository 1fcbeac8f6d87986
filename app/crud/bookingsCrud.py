"""
CRUD operations for bookings and visits.

Booking rows and the credit charge are written in the caller's transaction;
nothing here commits unless ``commit`` is True.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List
import logging

from sqlalchemy import select, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.conversions import as_utc, utcnow
from app.core.errors import BookingNotCancellable, DuplicateActiveBooking, NotFound
from app.crud.creditLedgerCrud import charge_credits, refund_credits
from app.crud.membershipsCrud import get_active_membership
from app.models import Booking, Visit, Gym, GymClass
from app.models.bookingModel import BOOKING_CONFIRMED, BOOKING_COMPLETED, BOOKING_CANCELLED

logger = logging.getLogger(__name__)

DIRECT_VISIT_WINDOW = timedelta(hours=24)


@dataclass
class BookingData:
    """Booking with gym/class details for display"""
    id: int
    member_id: int
    gym_id: Optional[int]
    class_id: Optional[int]
    credits_used: int
    status: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    gym_name: Optional[str] = None
    class_name: Optional[str] = None
    class_start: Optional[datetime] = None
    class_end: Optional[datetime] = None


@dataclass
class CancelledBookingData:
    booking_id: int
    refunded_credits: int
    remaining_credits: Optional[int]


@dataclass
class CheckInPassData:
    booking_id: int
    member_id: int
    gym_id: Optional[int]
    gym_name: Optional[str]
    class_name: Optional[str]
    valid_from: datetime
    valid_until: datetime
    is_valid: bool


def _booking_options():
    return (
        selectinload(Booking.gym),
        selectinload(Booking.gym_class).selectinload(GymClass.gym),
    )


def booking_to_data(booking: Booking) -> BookingData:
    gym_class = booking.gym_class
    gym = booking.gym or (gym_class.gym if gym_class else None)
    return BookingData(
        id=booking.id,
        member_id=booking.member_id,
        gym_id=booking.gym_id if booking.gym_id is not None else (gym_class.gym_id if gym_class else None),
        class_id=booking.class_id,
        credits_used=booking.credits_used,
        status=booking.status,
        created_at=as_utc(booking.created_at),
        completed_at=as_utc(booking.completed_at),
        gym_name=gym.name if gym else None,
        class_name=gym_class.name if gym_class else None,
        class_start=as_utc(gym_class.start_time) if gym_class else None,
        class_end=as_utc(gym_class.end_time) if gym_class else None,
    )


async def get_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .options(*_booking_options())
        .where(Booking.id == booking_id)
    )
    return result.scalar_one_or_none()


async def require_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await get_booking(db, booking_id)
    if booking is None:
        raise NotFound("Booking", booking_id)
    return booking


async def get_member_bookings(
    db: AsyncSession,
    member_id: int,
    status: Optional[str] = None
) -> List[BookingData]:
    query = (
        select(Booking)
        .options(*_booking_options())
        .where(Booking.member_id == member_id)
        .order_by(Booking.created_at.desc())
    )
    if status:
        query = query.where(Booking.status == status)

    result = await db.execute(query)
    return [booking_to_data(b) for b in result.scalars().all()]


async def find_active_booking(
    db: AsyncSession,
    member_id: int,
    now: Optional[datetime] = None
) -> Optional[Booking]:
    """
    A confirmed booking still in use: an upcoming class, or a direct visit
    created within the last 24 hours.
    """
    now = now or utcnow()
    result = await db.execute(
        select(Booking)
        .outerjoin(GymClass, GymClass.id == Booking.class_id)
        .where(
            and_(
                Booking.member_id == member_id,
                Booking.status == BOOKING_CONFIRMED,
                or_(
                    and_(Booking.class_id.is_not(None), GymClass.start_time > now),
                    and_(Booking.class_id.is_(None), Booking.created_at >= now - DIRECT_VISIT_WINDOW),
                ),
            )
        )
        .order_by(Booking.created_at.desc())
    )
    return result.scalars().first()


async def ensure_no_active_booking(db: AsyncSession, member_id: int, now: Optional[datetime] = None) -> None:
    existing = await find_active_booking(db, member_id, now)
    if existing is not None:
        raise DuplicateActiveBooking(existing.id)


async def create_direct_visit(
    db: AsyncSession,
    *,
    member_id: int,
    gym_id: int,
    credits_to_use: int = 1,
    commit: bool = True
) -> BookingData:
    """Charge credits and record a confirmed direct visit plus its Visit row."""
    gym = await db.get(Gym, gym_id)
    if gym is None or not gym.is_active:
        raise NotFound("Gym", gym_id)

    await ensure_no_active_booking(db, member_id)
    await charge_credits(db, member_id, credits_to_use, commit=False)

    now = utcnow()
    booking = Booking(
        member_id=member_id,
        gym_id=gym_id,
        class_id=None,
        credits_used=credits_to_use,
        status=BOOKING_CONFIRMED,
        created_at=now,
    )
    booking.gym = gym
    booking.gym_class = None
    db.add(booking)
    await db.flush()

    db.add(Visit(
        member_id=member_id,
        gym_id=gym_id,
        booking_id=booking.id,
        credits_used=credits_to_use,
        visit_date=now,
    ))

    if commit:
        await db.commit()
    else:
        await db.flush()
    return booking_to_data(booking)


async def create_class_booking(
    db: AsyncSession,
    *,
    member_id: int,
    class_id: int,
    commit: bool = True
) -> BookingData:
    """Charge the class price and record a confirmed class booking."""
    result = await db.execute(
        select(GymClass)
        .options(selectinload(GymClass.gym))
        .where(GymClass.id == class_id)
    )
    gym_class = result.scalar_one_or_none()
    now = utcnow()
    if gym_class is None or as_utc(gym_class.start_time) <= now:
        raise NotFound("Upcoming class", class_id)

    await ensure_no_active_booking(db, member_id, now)
    await charge_credits(db, member_id, gym_class.credits, commit=False)

    booking = Booking(
        member_id=member_id,
        gym_id=None,
        class_id=class_id,
        credits_used=gym_class.credits,
        status=BOOKING_CONFIRMED,
        created_at=now,
    )
    booking.gym = None
    booking.gym_class = gym_class
    db.add(booking)

    if commit:
        await db.commit()
    else:
        await db.flush()
    return booking_to_data(booking)


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    commit: bool = True
) -> CancelledBookingData:
    """Delete a booking with its visit and hand its credits back."""
    booking = await require_booking(db, booking_id)
    if booking.status == BOOKING_COMPLETED:
        raise BookingNotCancellable(booking.id, booking.status)

    refund = booking.credits_used if booking.status == BOOKING_CONFIRMED else 0
    member_id = booking.member_id

    await db.execute(delete(Visit).where(Visit.booking_id == booking.id))
    await db.delete(booking)
    await db.flush()

    remaining = None
    if refund > 0:
        if await get_active_membership(db, member_id) is None:
            logger.warning(
                f"Booking {booking_id} deleted without refund: member {member_id} has no active membership"
            )
            refund = 0
        else:
            balance = await refund_credits(db, member_id, refund, commit=False)
            remaining = balance.remaining

    if commit:
        await db.commit()
    return CancelledBookingData(booking_id=booking_id, refunded_credits=refund, remaining_credits=remaining)


async def complete_booking(
    db: AsyncSession,
    booking_id: int,
    commit: bool = True
) -> BookingData:
    """Mark a booking completed; repeated calls leave it unchanged."""
    booking = await require_booking(db, booking_id)
    if booking.status in (BOOKING_COMPLETED, BOOKING_CANCELLED):
        return booking_to_data(booking)

    now = utcnow()
    booking.status = BOOKING_COMPLETED
    booking.completed_at = now
    booking.updated_at = now

    if booking.is_class_booking:
        visit_result = await db.execute(select(Visit.id).where(Visit.booking_id == booking.id))
        if visit_result.first() is None:
            db.add(Visit(
                member_id=booking.member_id,
                gym_id=booking.gym_class.gym_id if booking.gym_class else None,
                booking_id=booking.id,
                credits_used=booking.credits_used,
                visit_date=now,
            ))

    if commit:
        await db.commit()
    else:
        await db.flush()
    return booking_to_data(booking)


async def get_check_in_pass(
    db: AsyncSession,
    booking_id: int,
    now: Optional[datetime] = None
) -> CheckInPassData:
    """Pass shown at the gym: direct visits last 24 hours, classes until they end."""
    now = now or utcnow()
    booking = await require_booking(db, booking_id)
    data = booking_to_data(booking)

    if data.class_id is not None:
        valid_from = data.created_at
        valid_until = data.class_end
    else:
        valid_from = data.created_at
        valid_until = data.created_at + DIRECT_VISIT_WINDOW

    return CheckInPassData(
        booking_id=data.id,
        member_id=data.member_id,
        gym_id=data.gym_id,
        gym_name=data.gym_name,
        class_name=data.class_name,
        valid_from=valid_from,
        valid_until=valid_until,
        is_valid=data.status == BOOKING_CONFIRMED and valid_from <= now < valid_until,
    )
