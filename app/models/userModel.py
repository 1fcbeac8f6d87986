"""
Member identity model for FitPass
"""
from datetime import datetime, timezone
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import String, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from app.db.postgresql import Base, BigIntId

if TYPE_CHECKING:
    from app.models.membershipsModel import Membership
    from app.models.gymModel import SelectedGym
    from app.models.bookingModel import Booking, Visit


class Member(Base):
    """People holding (or having held) a FitPass membership"""

    __tablename__ = "members"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(200))
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # Relationships
    memberships: Mapped[List["Membership"]] = relationship(back_populates="member")
    selected_gyms: Mapped[List["SelectedGym"]] = relationship(back_populates="member")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="member")
    visits: Mapped[List["Visit"]] = relationship(back_populates="member")

    __table_args__ = (
        Index("idx_members_email", "email"),
        Index("idx_members_stripe_customer", "stripe_customer_id"),
    )
