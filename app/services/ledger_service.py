"""
Credit Ledger
Owns credits / credits_used on the member's active membership
"""
import logging

from app.core.logging_config import log_credit_event
from app.core.results import ServiceResult
from app.crud.creditLedgerCrud import (
    CreditBalanceData,
    charge_credits,
    get_credit_balance,
    refund_credits,
    reset_credits_for_new_period,
)
from app.services.base_service import MemberScopedService

logger = logging.getLogger(__name__)


class CreditLedger(MemberScopedService):
    """Charges, refunds and period resets, serialized per member"""

    async def charge(self, member_id: int, amount: int) -> ServiceResult[CreditBalanceData]:
        result = await self._write(
            member_id,
            "charge",
            lambda db: charge_credits(db, member_id, amount, commit=False),
        )
        log_credit_event(
            "charge", member_id, amount,
            remaining=result.value.remaining if result.ok else None,
            success=result.ok,
        )
        return result

    async def refund(self, member_id: int, amount: int) -> ServiceResult[CreditBalanceData]:
        result = await self._write(
            member_id,
            "refund",
            lambda db: refund_credits(db, member_id, amount, commit=False),
        )
        log_credit_event(
            "refund", member_id, amount,
            remaining=result.value.remaining if result.ok else None,
            success=result.ok,
        )
        return result

    async def reset_for_new_period(self, member_id: int, new_credits: int) -> ServiceResult[CreditBalanceData]:
        return await self._write(
            member_id,
            "reset_for_new_period",
            lambda db: reset_credits_for_new_period(db, member_id, new_credits, commit=False),
        )

    async def get_balance(self, member_id: int) -> ServiceResult[CreditBalanceData]:
        return await self._read(
            "get_balance",
            lambda db: get_credit_balance(db, member_id),
        )
