"""
Per-member lock registry
Serializes credit, gym-slot, booking and subscription writes for one member
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from app.core.errors import MemberBusy

logger = logging.getLogger(__name__)


class MemberLocks:
    """
    One asyncio.Lock per member id.

    Operations on different members never contend; the registry itself is
    guarded so two coroutines cannot create separate locks for one member.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = {}
        self._registry_lock = asyncio.Lock()

    async def _checkout(self, member_id: int) -> asyncio.Lock:
        async with self._registry_lock:
            lock = self._locks.get(member_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[member_id] = lock
            self._waiters[member_id] = self._waiters.get(member_id, 0) + 1
            return lock

    async def _release(self, member_id: int) -> None:
        async with self._registry_lock:
            remaining = self._waiters.get(member_id, 1) - 1
            if remaining <= 0:
                # Nobody else holds or waits on it
                self._waiters.pop(member_id, None)
                self._locks.pop(member_id, None)
            else:
                self._waiters[member_id] = remaining

    @asynccontextmanager
    async def hold(self, member_id: int) -> AsyncIterator[None]:
        lock = await self._checkout(member_id)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Lock timeout for member {member_id} after {self.timeout_seconds}s")
                raise MemberBusy(member_id, self.timeout_seconds)
            try:
                yield
            finally:
                lock.release()
        finally:
            await self._release(member_id)

    def is_locked(self, member_id: int) -> bool:
        lock = self._locks.get(member_id)
        return bool(lock and lock.locked())
