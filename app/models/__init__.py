# FitPass core models
from app.models.userModel import Member
from app.models.membershipsModel import MembershipPlan, Membership, ScheduledChange
from app.models.gymModel import Gym, GymClass, SelectedGym
from app.models.bookingModel import Booking, Visit

__all__ = [
    "Member",
    "MembershipPlan", "Membership", "ScheduledChange",
    "Gym", "GymClass", "SelectedGym",
    "Booking", "Visit",
]
