from typing import Optional
import logging

import strawberry
from strawberry.types import Info

from app.graphql.auth.permissions import IsAuthenticated, resolve_member_id
from app.graphql.ledger.types import CreditBalance, CreditBalanceResponse
from app.graphql.responses import FORBIDDEN, FORBIDDEN_MESSAGE

logger = logging.getLogger(__name__)


@strawberry.type
class LedgerQuery:
    @strawberry.field(permission_classes=[IsAuthenticated])
    async def credit_balance(self, info: Info, member_id: Optional[int] = None) -> CreditBalanceResponse:
        """Credits, usage and remaining balance for the current period"""
        member_id = resolve_member_id(info, member_id)
        if member_id is None:
            return CreditBalanceResponse(success=False, error_code=FORBIDDEN, message=FORBIDDEN_MESSAGE)

        result = await info.context.services.ledger.get_balance(member_id)
        if not result.ok:
            return CreditBalanceResponse(success=False, error_code=result.error_code, message=result.error.message)
        return CreditBalanceResponse(
            success=True,
            error_code=None,
            message="OK",
            balance=CreditBalance.from_data(result.value),
        )
