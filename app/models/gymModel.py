"""
Gym, class and Daily Access gym selection models for FitPass
"""
from datetime import datetime, timezone
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, BigInteger, String, Boolean, CheckConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from app.db.postgresql import Base, BigIntId

if TYPE_CHECKING:
    from app.models.userModel import Member
    from app.models.bookingModel import Booking

SELECTION_PENDING = "pending"
SELECTION_ACTIVE = "active"
SELECTION_REMOVED = "removed"
SELECTION_STATUSES = (SELECTION_PENDING, SELECTION_ACTIVE, SELECTION_REMOVED)
# Rows that occupy a Daily Access slot
SLOT_HOLDING_STATUSES = (SELECTION_ACTIVE, SELECTION_PENDING)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Gym(Base):
    """Partner gyms (clubs)"""

    __tablename__ = "gyms"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    classes: Mapped[List["GymClass"]] = relationship(back_populates="gym")


class GymClass(Base):
    """A scheduled class held at a gym"""

    __tablename__ = "gym_classes"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    gym_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("gyms.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    start_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    gym: Mapped["Gym"] = relationship(back_populates="classes")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="gym_class")

    __table_args__ = (
        CheckConstraint("credits > 0", name="ck_class_credits"),
        CheckConstraint("end_time > start_time", name="ck_class_time_range"),
        Index("idx_gym_classes_time", "gym_id", "start_time"),
    )


class SelectedGym(Base):
    """One Daily Access gym selection per (member, gym) pair"""

    __tablename__ = "user_selected_gyms"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    member_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("members.id"), nullable=False)
    gym_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("gyms.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SELECTION_PENDING)
    added_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    effective_from: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    member: Mapped["Member"] = relationship(back_populates="selected_gyms")
    gym: Mapped["Gym"] = relationship()

    __table_args__ = (
        CheckConstraint("status IN ('pending','active','removed')", name="ck_selected_gym_status"),
        Index(
            "uq_selected_gym_holding", "member_id", "gym_id", unique=True,
            postgresql_where=text("status IN ('pending','active')"),
            sqlite_where=text("status IN ('pending','active')"),
        ),
        Index("idx_selected_gyms_member", "member_id", "status"),
    )
