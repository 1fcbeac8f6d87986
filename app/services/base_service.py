"""
Shared transaction handling for the member-scoped core services
"""
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import CoreError
from app.core.results import ServiceResult
from app.services.member_locks import MemberLocks

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[AsyncSession], Awaitable[T]]


class MemberScopedService:
    """
    Runs crud operations in one transaction per call.

    Writes hold the member's lock for the whole transaction; business errors
    raised by the crud layer roll back and come back as a failed ServiceResult.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], locks: MemberLocks):
        self.session_factory = session_factory
        self.locks = locks

    async def _run(self, action: str, operation: Operation) -> ServiceResult:
        async with self.session_factory() as db:
            try:
                value = await operation(db)
                await db.commit()
                return ServiceResult.success(value)
            except CoreError as e:
                await db.rollback()
                logger.info(f"{action} rejected: {e.code} {e.message}")
                return ServiceResult.failure(e)
            except Exception as e:
                await db.rollback()
                logger.error(f"{action} failed: {e}", exc_info=True)
                raise

    async def _write(self, member_id: int, action: str, operation: Operation) -> ServiceResult:
        try:
            async with self.locks.hold(member_id):
                return await self._run(action, operation)
        except CoreError as e:
            # Lock timeout
            return ServiceResult.failure(e)

    async def _read(self, action: str, operation: Operation) -> ServiceResult:
        return await self._run(action, operation)
