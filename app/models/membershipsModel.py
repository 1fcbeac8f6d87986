"""
Membership, plan and scheduled plan change models for FitPass
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, BigInteger, Numeric, String, Text, Boolean,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from app.db.postgresql import Base, BigIntId

if TYPE_CHECKING:
    from app.models.userModel import Member


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MembershipPlan(Base):
    """Plans sold through the payment provider"""

    __tablename__ = "membership_plans"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # > 0 marks a Daily Access plan; the value is the number of gym slots
    max_daily_gyms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="sek")
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String(120), unique=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    memberships: Mapped[List["Membership"]] = relationship(back_populates="plan")

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_plan_credits"),
        CheckConstraint("max_daily_gyms >= 0", name="ck_plan_max_daily_gyms"),
    )

    @property
    def is_daily_access(self) -> bool:
        return (self.max_daily_gyms or 0) > 0


class Membership(Base):
    """A member's membership and credit balance for the current billing period"""

    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    member_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("members.id"), nullable=False)
    plan_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("membership_plans.id"))
    plan_title: Mapped[Optional[str]] = mapped_column(String(120))
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(120))
    stripe_status: Mapped[Optional[str]] = mapped_column(String(40))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    # Relationships
    member: Mapped["Member"] = relationship(back_populates="memberships")
    plan: Mapped[Optional["MembershipPlan"]] = relationship(back_populates="memberships")
    scheduled_change: Mapped[Optional["ScheduledChange"]] = relationship(
        back_populates="membership",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_membership_credits"),
        CheckConstraint("credits_used >= 0 AND credits_used <= credits", name="ck_membership_credits_used"),
        Index(
            "uq_memberships_one_active", "member_id", unique=True,
            postgresql_where=text("is_active"), sqlite_where=text("is_active = 1"),
        ),
        Index("idx_memberships_subscription", "stripe_subscription_id"),
    )

    @property
    def remaining_credits(self) -> int:
        return max(0, (self.credits or 0) - (self.credits_used or 0))


class ScheduledChange(Base):
    """Plan change agreed with the payment provider for the next renewal"""

    __tablename__ = "membership_scheduled_changes"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    membership_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    scheduled_plan_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("membership_plans.id"), nullable=False)
    scheduled_plan_title: Mapped[str] = mapped_column(String(120), nullable=False)
    scheduled_plan_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_stripe_price_id: Mapped[Optional[str]] = mapped_column(String(120))
    scheduled_change_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider_schedule_id: Mapped[Optional[str]] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    membership: Mapped["Membership"] = relationship(back_populates="scheduled_change")
    scheduled_plan: Mapped["MembershipPlan"] = relationship()

    @property
    def state(self) -> str:
        if self.confirmed:
            return "confirmed"
        return "unconfirmed"
