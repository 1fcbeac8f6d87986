"""
Business error taxonomy for the credit ledger, gym slots, bookings and
subscription reconciliation.

Every error carries a stable ``code`` so callers can render a specific message.
"""
from typing import Optional


class CoreError(Exception):
    code = "CORE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InsufficientCredits(CoreError):
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, requested: int, remaining: int):
        super().__init__(
            f"Not enough credits: requested {requested}, remaining {remaining}"
        )
        self.requested = requested
        self.remaining = remaining


class SlotLimitExceeded(CoreError):
    code = "SLOT_LIMIT_EXCEEDED"

    def __init__(self, max_slots: int):
        super().__init__(f"Daily Access allows at most {max_slots} gyms")
        self.max_slots = max_slots


class AlreadySelected(CoreError):
    code = "ALREADY_SELECTED"

    def __init__(self, gym_id: int):
        super().__init__(f"Gym {gym_id} is already selected")
        self.gym_id = gym_id


class DailyAccessRequired(CoreError):
    code = "DAILY_ACCESS_REQUIRED"

    def __init__(self, member_id: int):
        super().__init__(f"Member {member_id} does not have a Daily Access membership")
        self.member_id = member_id


class DuplicateActiveBooking(CoreError):
    code = "DUPLICATE_ACTIVE_BOOKING"

    def __init__(self, booking_id: int):
        super().__init__(f"Member already holds active booking {booking_id}")
        self.booking_id = booking_id


class GymNotInSelection(CoreError):
    code = "GYM_NOT_IN_SELECTION"

    def __init__(self, gym_id: int):
        super().__init__(f"Gym {gym_id} is not in the member's Daily Access selection")
        self.gym_id = gym_id


class BookingNotCancellable(CoreError):
    code = "BOOKING_NOT_CANCELLABLE"

    def __init__(self, booking_id: int, status: str):
        super().__init__(f"Booking {booking_id} with status {status} cannot be cancelled")
        self.booking_id = booking_id
        self.status = status


class NotFound(CoreError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: Optional[object] = None):
        if identifier is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} {identifier} not found"
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class ProviderUnavailable(CoreError):
    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, operation: str, detail: Optional[str] = None):
        message = f"Payment provider unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.detail = detail


class CurrencyMismatch(CoreError):
    code = "CURRENCY_MISMATCH"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Current subscription uses {current.upper()}, new price uses "
            f"{requested.upper()}; currency cannot change on an existing subscription"
        )
        self.current = current
        self.requested = requested


class MemberBusy(CoreError):
    code = "MEMBER_BUSY"

    def __init__(self, member_id: int, timeout: float):
        super().__init__(
            f"Another operation for member {member_id} did not finish within {timeout}s"
        )
        self.member_id = member_id
        self.timeout = timeout
