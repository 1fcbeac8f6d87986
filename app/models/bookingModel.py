"""
Booking and visit models for FitPass
"""
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING
from sqlalchemy import ForeignKey, Integer, BigInteger, String, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from app.db.postgresql import Base, BigIntId

if TYPE_CHECKING:
    from app.models.userModel import Member
    from app.models.gymModel import Gym, GymClass

BOOKING_CONFIRMED = "confirmed"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (BOOKING_CONFIRMED, BOOKING_COMPLETED, BOOKING_CANCELLED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    """A credit-consuming direct visit or class booking"""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    member_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("members.id"), nullable=False)
    gym_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("gyms.id"))
    class_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("gym_classes.id"))
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BOOKING_CONFIRMED)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    member: Mapped["Member"] = relationship(back_populates="bookings")
    gym: Mapped[Optional["Gym"]] = relationship()
    gym_class: Mapped[Optional["GymClass"]] = relationship(back_populates="bookings")

    __table_args__ = (
        CheckConstraint("status IN ('confirmed','completed','cancelled')", name="ck_booking_status"),
        CheckConstraint("credits_used >= 0", name="ck_booking_credits_used"),
        Index("idx_bookings_member", "member_id", "status", "created_at"),
    )

    @property
    def is_class_booking(self) -> bool:
        return self.class_id is not None


class Visit(Base):
    """Immutable record of credits consumed at a gym"""

    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    member_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("members.id"), nullable=False)
    gym_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("gyms.id"))
    booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("bookings.id", ondelete="CASCADE"))
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    visit_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    member: Mapped["Member"] = relationship(back_populates="visits")

    __table_args__ = (
        Index("idx_visits_member", "member_id", "visit_date"),
        Index("idx_visits_booking", "booking_id"),
    )
