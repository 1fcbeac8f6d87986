"""
Pytest configuration and fixtures for testing
"""
import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from itertools import count
from typing import Dict, List, Optional

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.config import Settings
from app.core.conversions import utcnow
from app.crud.membershipsCrud import create_member, create_membership, create_membership_plan, get_membership_plan
from app.crud.selectedGymsCrud import create_gym
from app.db.postgresql import build_session_factory, init_db
from app.models import GymClass, SelectedGym
from app.services.container import build_core_services
from app.services.payment_provider import (
    PRICE_CHANGE_IMMEDIATE,
    PRICE_CHANGE_SCHEDULED,
    PaymentProviderError,
    ProviderPrice,
    ProviderPriceChange,
    ProviderSubscription,
)

TEST_WEBHOOK_SECRET = "whsec_test_secret"


class FakePaymentProvider:
    """
    In-memory stand-in for Stripe.

    Scheduled prices take effect when a test calls advance_period, the same
    way Stripe switches price when a subscription schedule phase starts.
    """

    def __init__(self):
        self.subscriptions: Dict[str, ProviderSubscription] = {}
        self.prices: Dict[str, ProviderPrice] = {}
        self.scheduled_prices: Dict[str, str] = {}
        self.released_schedules: List[str] = []
        self.calls: List[str] = []
        self.delay_seconds = 0.0
        self._failures: Dict[str, List[bool]] = {}
        self._ids = count(1)

    # Test setup ---------------------------------------------------------

    def add_price(self, price_id: str, currency: str = "sek", unit_amount: int = 29900) -> ProviderPrice:
        price = ProviderPrice(id=price_id, currency=currency, unit_amount=unit_amount)
        self.prices[price_id] = price
        return price

    def add_subscription(
        self,
        subscription_id: str,
        price_id: str,
        *,
        status: str = "active",
        customer_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> ProviderSubscription:
        start = period_start or utcnow() - timedelta(days=10)
        subscription = ProviderSubscription(
            id=subscription_id,
            status=status,
            price_id=price_id,
            currency=self.prices[price_id].currency,
            current_period_start=start,
            current_period_end=period_end or start + relativedelta(months=1),
            customer_id=customer_id,
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    def fail(self, operation: str, times: int = 1, transient: bool = True) -> None:
        """Make the next ``times`` calls to ``operation`` raise."""
        self._failures.setdefault(operation, []).extend([transient] * times)

    def advance_period(self, subscription_id: str) -> ProviderSubscription:
        subscription = self.subscriptions[subscription_id]
        subscription.current_period_start = subscription.current_period_end
        subscription.current_period_end = subscription.current_period_end + relativedelta(months=1)
        scheduled = self.scheduled_prices.pop(subscription_id, None)
        if scheduled:
            subscription.price_id = scheduled
            subscription.currency = self.prices[scheduled].currency
            subscription.schedule_id = None
        return replace(subscription)

    # PaymentProvider ----------------------------------------------------

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        pending = self._failures.get(operation)
        if pending:
            transient = pending.pop(0)
            raise PaymentProviderError(f"{operation} failed", transient=transient)

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        await self._enter("get_subscription")
        if subscription_id not in self.subscriptions:
            raise PaymentProviderError(f"No such subscription: {subscription_id}", transient=False)
        return replace(self.subscriptions[subscription_id])

    async def get_price(self, price_id: str) -> ProviderPrice:
        await self._enter("get_price")
        if price_id not in self.prices:
            raise PaymentProviderError(f"No such price: {price_id}", transient=False)
        return self.prices[price_id]

    async def update_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
        mode: str = PRICE_CHANGE_SCHEDULED,
    ) -> ProviderPriceChange:
        await self._enter("update_subscription_price")
        subscription = self.subscriptions[subscription_id]
        if mode == PRICE_CHANGE_IMMEDIATE:
            subscription.price_id = price_id
            return ProviderPriceChange(subscription_id, price_id, mode, effective_at=utcnow())

        self.scheduled_prices[subscription_id] = price_id
        subscription.schedule_id = f"sub_sched_{subscription_id}"
        return ProviderPriceChange(
            subscription_id,
            price_id,
            mode,
            effective_at=subscription.current_period_end,
            schedule_id=subscription.schedule_id,
        )

    async def create_subscription(self, customer_id: str, price_id: str) -> ProviderSubscription:
        await self._enter("create_subscription")
        subscription_id = f"sub_created_{next(self._ids)}"
        start = utcnow()
        return replace(self.add_subscription(
            subscription_id, price_id,
            customer_id=customer_id,
            period_start=start,
            period_end=start + relativedelta(months=1),
        ))

    async def cancel_subscription(self, subscription_id: str) -> ProviderSubscription:
        await self._enter("cancel_subscription")
        subscription = self.subscriptions[subscription_id]
        subscription.status = "canceled"
        return replace(subscription)

    async def release_schedule(self, schedule_id: str) -> None:
        await self._enter("release_schedule")
        self.released_schedules.append(schedule_id)
        for subscription in self.subscriptions.values():
            if subscription.schedule_id == schedule_id:
                subscription.schedule_id = None
                self.scheduled_prices.pop(subscription.id, None)


class Seeder:
    """Writes fixture rows through the crud layer"""

    def __init__(self, session_factory, provider: FakePaymentProvider):
        self.session_factory = session_factory
        self.provider = provider
        self.plans = {}

    async def plans_setup(self):
        specs = [
            ("Standard", 10, 299, "sek", 0, "price_standard"),
            ("Premium", 20, 499, "sek", 0, "price_premium"),
            ("Daily Access", 30, 699, "sek", 3, "price_daily"),
            ("Euro Standard", 10, 29, "eur", 0, "price_eur"),
            ("Trial", 5, 0, "sek", 0, None),
        ]
        async with self.session_factory() as db:
            for title, credits, price, currency, max_gyms, price_id in specs:
                plan = await create_membership_plan(
                    db,
                    title=title,
                    credits=credits,
                    price=price,
                    currency=currency,
                    max_daily_gyms=max_gyms,
                    stripe_price_id=price_id,
                )
                self.plans[title] = plan.id
                if price_id:
                    self.provider.add_price(price_id, currency=currency)
        return self.plans

    async def member(
        self,
        plan: str = "Standard",
        *,
        credits_used: int = 0,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> int:
        """Create a member with an active membership on ``plan``; returns the member id."""
        async with self.session_factory() as db:
            member = await create_member(db, full_name="Test Member", stripe_customer_id=customer_id)
            plan_row = await get_membership_plan(db, self.plans[plan])
            start = None
            if subscription_id:
                provider_sub = self.provider.subscriptions.get(subscription_id)
                if provider_sub is None:
                    provider_sub = self.provider.add_subscription(
                        subscription_id, plan_row.stripe_price_id, customer_id=customer_id
                    )
                start = provider_sub.current_period_start
                end_date = end_date or provider_sub.current_period_end
            await create_membership(
                db,
                member_id=member.id,
                plan=plan_row,
                start_date=start,
                end_date=end_date,
                credits_used=credits_used,
                stripe_subscription_id=subscription_id,
                stripe_status="active" if subscription_id else None,
            )
            return member.id

    async def gym(self, name: str = "Test Gym") -> int:
        async with self.session_factory() as db:
            gym = await create_gym(db, name=name)
            return gym.id

    async def gym_class(self, gym_id: int, *, starts_in: timedelta = timedelta(hours=2), credits: int = 2) -> int:
        start = utcnow() + starts_in
        async with self.session_factory() as db:
            gym_class = GymClass(
                gym_id=gym_id,
                name="Spinning",
                start_time=start,
                end_time=start + timedelta(hours=1),
                credits=credits,
            )
            db.add(gym_class)
            await db.commit()
            return gym_class.id

    async def selection(self, member_id: int, gym_id: int, status: str, effective_from: datetime) -> int:
        async with self.session_factory() as db:
            row = SelectedGym(
                member_id=member_id,
                gym_id=gym_id,
                status=status,
                added_at=utcnow(),
                effective_from=effective_from,
            )
            db.add(row)
            await db.commit()
            return row.id


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key="test-secret",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        lock_timeout_seconds=5.0,
        provider_timeout_seconds=1.0,
        provider_max_attempts=2,
        provider_backoff_seconds=0.0,
        sync_all_timeout_seconds=30.0,
        sync_concurrency=3,
        auto_sync_enabled=False,
    )


@pytest.fixture
async def session_factory(settings):
    """
    Fixture that provides a file-backed SQLite database per test.

    A file is used instead of :memory: so every session sees the same data.
    """
    engine = create_async_engine(settings.database_url, echo=False)
    await init_db(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def services(settings, session_factory, provider):
    return build_core_services(settings, session_factory, provider)


@pytest.fixture
async def seed(session_factory, provider):
    seeder = Seeder(session_factory, provider)
    await seeder.plans_setup()
    return seeder
