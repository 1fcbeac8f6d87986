from typing import Optional

from strawberry.types import Info
from strawberry.permission import BasePermission


class IsAuthenticated(BasePermission):
    message = "Authentication required."

    def has_permission(self, source, info: Info, **kwargs):
        return bool(info.context.user)


class IsStaff(BasePermission):
    message = "Staff role required."

    def has_permission(self, source, info: Info, **kwargs):
        user = info.context.user
        return bool(user and user.is_staff)


def resolve_member_id(info: Info, member_id: Optional[int]) -> Optional[int]:
    """
    Member the caller may act on: themselves by default, anyone for staff.
    Returns None when the caller asks for another member without the staff role.
    """
    user = info.context.user
    if member_id is None or member_id == user.member_id:
        return user.member_id
    if user.is_staff:
        return member_id
    return None
