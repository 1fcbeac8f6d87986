import logging

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.ledger.types import CreditAmountInput, CreditBalance, CreditBalanceResponse
from app.graphql.responses import (
    FORBIDDEN, FORBIDDEN_MESSAGE, INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE, INVALID_ARGUMENT
)

logger = logging.getLogger(__name__)


def _balance_response(result, success_message: str) -> CreditBalanceResponse:
    if not result.ok:
        return CreditBalanceResponse(
            success=False,
            error_code=result.error_code,
            message=result.error.message,
        )
    return CreditBalanceResponse(
        success=True,
        error_code=None,
        message=success_message,
        balance=CreditBalance.from_data(result.value),
    )


@strawberry.type
class LedgerMutation:
    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def charge(self, info: Info, input: CreditAmountInput) -> CreditBalanceResponse:
        """Consume credits from the member's active membership"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None:
            return CreditBalanceResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.ledger.charge(member_id, input.amount)
            return _balance_response(result, f"Charged {input.amount} credits")
        except ValueError as e:
            return CreditBalanceResponse(success=False, error_code=INVALID_ARGUMENT, message=str(e))
        except Exception as e:
            logger.error(f"Error charging credits for member {member_id}: {e}", exc_info=True)
            return CreditBalanceResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def refund(self, info: Info, input: CreditAmountInput) -> CreditBalanceResponse:
        """Staff correction: give credits back to a membership. Members get refunds through cancelBooking"""
        member_id = resolve_member_id(info, input.member_id)
        if member_id is None or not info.context.user.is_staff:
            return CreditBalanceResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        try:
            result = await info.context.services.ledger.refund(member_id, input.amount)
            return _balance_response(result, f"Refunded {input.amount} credits")
        except ValueError as e:
            return CreditBalanceResponse(success=False, error_code=INVALID_ARGUMENT, message=str(e))
        except Exception as e:
            logger.error(f"Error refunding credits for member {member_id}: {e}", exc_info=True)
            return CreditBalanceResponse(success=False, error_code=INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)
