"""
Builds the core services for one application instance
"""
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.services.booking_service import BookingService
from app.services.gym_slot_service import GymSlotScheduler
from app.services.ledger_service import CreditLedger
from app.services.member_locks import MemberLocks
from app.services.payment_provider import PaymentProvider
from app.services.subscription_reconciler import SubscriptionReconciler


@dataclass
class CoreServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    provider: PaymentProvider
    locks: MemberLocks
    ledger: CreditLedger
    slots: GymSlotScheduler
    bookings: BookingService
    reconciler: SubscriptionReconciler


def build_core_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    provider: PaymentProvider,
) -> CoreServices:
    # One lock registry shared by every service so all writes for a member serialize
    locks = MemberLocks(timeout_seconds=settings.lock_timeout_seconds)
    return CoreServices(
        settings=settings,
        session_factory=session_factory,
        provider=provider,
        locks=locks,
        ledger=CreditLedger(session_factory, locks),
        slots=GymSlotScheduler(session_factory, locks, max_slots_override=settings.max_slots_override),
        bookings=BookingService(session_factory, locks),
        reconciler=SubscriptionReconciler(
            session_factory,
            locks,
            provider,
            provider_timeout_seconds=settings.provider_timeout_seconds,
            provider_max_attempts=settings.provider_max_attempts,
            provider_backoff_seconds=settings.provider_backoff_seconds,
            sync_concurrency=settings.sync_concurrency,
            sync_all_timeout_seconds=settings.sync_all_timeout_seconds,
        ),
    )
