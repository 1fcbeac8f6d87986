from typing import Optional

import strawberry
from app.crud.creditLedgerCrud import CreditBalanceData


@strawberry.type
class CreditBalance:
    membership_id: int
    member_id: int
    credits: int
    credits_used: int
    remaining: int

    @classmethod
    def from_data(cls, data: CreditBalanceData) -> "CreditBalance":
        return cls(
            membership_id=data.membership_id,
            member_id=data.member_id,
            credits=data.credits,
            credits_used=data.credits_used,
            remaining=data.remaining,
        )


@strawberry.input
class CreditAmountInput:
    amount: int
    member_id: Optional[int] = None


# Response types
@strawberry.type
class CreditBalanceResponse:
    """Response for charge, refund and balance lookups"""
    success: bool
    error_code: Optional[str]
    message: str
    balance: Optional[CreditBalance] = None
