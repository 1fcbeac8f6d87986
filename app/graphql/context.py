from dataclasses import dataclass, field
from typing import List, Optional
import logging

from strawberry.fastapi import BaseContext
from fastapi import Request, Response

from app.auth.jwt import STAFF_ROLE, verify_token
from app.core.conversions import coerce_int
from app.services.container import CoreServices

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedMember:
    member_id: int
    roles: List[str] = field(default_factory=list)

    @property
    def is_staff(self) -> bool:
        return STAFF_ROLE in self.roles


@dataclass
class Context(BaseContext):
    services: CoreServices
    request: Request
    response: Response
    user: Optional[AuthenticatedMember] = None


async def build_context(
    request: Request,
    response: Response,
) -> Context:
    services: CoreServices = request.app.state.services
    user = None

    access_token = request.headers.get("x-access-token")
    if access_token:
        payload = verify_token(access_token, services.settings)
        if payload:
            member_id = coerce_int(payload.get("member_id"))
            if member_id is not None:
                roles = payload.get("roles") or []
                user = AuthenticatedMember(member_id=member_id, roles=list(roles))
        else:
            logger.debug("Ignoring invalid access token")

    return Context(services=services, request=request, response=response, user=user)
