"""
Payment provider boundary
Wraps the Stripe API behind a small async interface used by the subscription reconciler
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import stripe

from app.core.conversions import from_unix

logger = logging.getLogger(__name__)

PRICE_CHANGE_IMMEDIATE = "immediate"
PRICE_CHANGE_SCHEDULED = "scheduled"

# Subscription statuses that end the membership locally
TERMINAL_SUBSCRIPTION_STATUSES = ("canceled", "incomplete_expired")


@dataclass
class ProviderSubscription:
    id: str
    status: str
    price_id: Optional[str]
    currency: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    customer_id: Optional[str] = None
    schedule_id: Optional[str] = None


@dataclass
class ProviderPrice:
    id: str
    currency: str
    unit_amount: Optional[int] = None
    product_id: Optional[str] = None


@dataclass
class ProviderPriceChange:
    subscription_id: str
    price_id: str
    mode: str
    effective_at: Optional[datetime]
    schedule_id: Optional[str] = None


class PaymentProviderError(Exception):
    """
    Failure talking to the payment provider.

    ``transient`` errors (network, rate limit, provider 5xx) are worth retrying;
    anything else is a request the provider will keep rejecting.
    """

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.message = message
        self.transient = transient


class PaymentProvider(Protocol):
    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        ...

    async def get_price(self, price_id: str) -> ProviderPrice:
        ...

    async def update_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
        mode: str = PRICE_CHANGE_SCHEDULED,
    ) -> ProviderPriceChange:
        ...

    async def create_subscription(self, customer_id: str, price_id: str) -> ProviderSubscription:
        ...

    async def cancel_subscription(self, subscription_id: str) -> ProviderSubscription:
        ...

    async def release_schedule(self, schedule_id: str) -> None:
        ...


def _field(obj, name, default=None):
    if obj is None:
        return default
    # StripeObject supports item access; attribute access would hit dict.items
    try:
        value = obj[name]
    except (KeyError, TypeError, AttributeError):
        return getattr(obj, name, default)
    return default if value is None else value


def _subscription_from_stripe(subscription) -> ProviderSubscription:
    items = _field(_field(subscription, "items"), "data") or []
    first_item = items[0] if items else None
    price = _field(first_item, "price")

    # Newer API versions moved the period onto subscription items
    period_start = _field(subscription, "current_period_start") or _field(first_item, "current_period_start")
    period_end = _field(subscription, "current_period_end") or _field(first_item, "current_period_end")

    customer = _field(subscription, "customer")
    schedule = _field(subscription, "schedule")
    return ProviderSubscription(
        id=_field(subscription, "id"),
        status=_field(subscription, "status"),
        price_id=_field(price, "id"),
        currency=_field(price, "currency") or _field(subscription, "currency"),
        current_period_start=from_unix(period_start),
        current_period_end=from_unix(period_end),
        customer_id=customer if isinstance(customer, str) else _field(customer, "id"),
        schedule_id=schedule if isinstance(schedule, str) else _field(schedule, "id"),
    )


class StripePaymentProvider:
    """
    PaymentProvider backed by the Stripe SDK.

    The SDK is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, api_key: Optional[str]):
        if not api_key:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")
        self.api_key = api_key

    async def _call(self, operation: str, func, *args, **kwargs):
        if not self.api_key:
            raise PaymentProviderError("STRIPE_SECRET_KEY is not set", transient=False)
        try:
            return await asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            logger.warning(f"Stripe {operation} failed transiently: {e}")
            raise PaymentProviderError(str(e), transient=True) from e
        except stripe.APIError as e:
            logger.warning(f"Stripe {operation} returned a server error: {e}")
            raise PaymentProviderError(str(e), transient=True) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} rejected: {e}")
            raise PaymentProviderError(str(e), transient=False) from e

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        subscription = await self._call(
            "get_subscription", stripe.Subscription.retrieve, subscription_id
        )
        return _subscription_from_stripe(subscription)

    async def get_price(self, price_id: str) -> ProviderPrice:
        price = await self._call("get_price", stripe.Price.retrieve, price_id)
        product = _field(price, "product")
        return ProviderPrice(
            id=_field(price, "id"),
            currency=_field(price, "currency"),
            unit_amount=_field(price, "unit_amount"),
            product_id=product if isinstance(product, str) else _field(product, "id"),
        )

    async def update_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
        mode: str = PRICE_CHANGE_SCHEDULED,
    ) -> ProviderPriceChange:
        subscription = await self._call(
            "update_subscription_price", stripe.Subscription.retrieve, subscription_id
        )
        current = _subscription_from_stripe(subscription)
        items = _field(_field(subscription, "items"), "data") or []
        if not items:
            raise PaymentProviderError(f"Subscription {subscription_id} has no items", transient=False)

        if mode == PRICE_CHANGE_IMMEDIATE:
            updated = await self._call(
                "update_subscription_price",
                stripe.Subscription.modify,
                subscription_id,
                items=[{"id": _field(items[0], "id"), "price": price_id}],
                proration_behavior="create_prorations",
            )
            return ProviderPriceChange(
                subscription_id=subscription_id,
                price_id=price_id,
                mode=mode,
                effective_at=from_unix(_field(updated, "current_period_start")) or current.current_period_start,
            )

        # Scheduled: keep the current price until the period ends, then one
        # phase on the new price before the schedule releases the subscription
        schedule_id = current.schedule_id
        if schedule_id:
            schedule = await self._call(
                "update_subscription_price", stripe.SubscriptionSchedule.retrieve, schedule_id
            )
        else:
            schedule = await self._call(
                "update_subscription_price",
                stripe.SubscriptionSchedule.create,
                from_subscription=subscription_id,
            )
        phases = _field(schedule, "phases") or []
        current_phase = phases[0] if phases else None
        phase_start = _field(current_phase, "start_date") or _field(subscription, "current_period_start")
        phase_end = _field(current_phase, "end_date") or _field(subscription, "current_period_end")

        await self._call(
            "update_subscription_price",
            stripe.SubscriptionSchedule.modify,
            _field(schedule, "id"),
            end_behavior="release",
            phases=[
                {
                    "items": [{"price": current.price_id, "quantity": 1}],
                    "start_date": phase_start,
                    "end_date": phase_end,
                },
                {
                    "items": [{"price": price_id, "quantity": 1}],
                    "iterations": 1,
                },
            ],
        )
        return ProviderPriceChange(
            subscription_id=subscription_id,
            price_id=price_id,
            mode=mode,
            effective_at=from_unix(phase_end),
            schedule_id=_field(schedule, "id"),
        )

    async def create_subscription(self, customer_id: str, price_id: str) -> ProviderSubscription:
        subscription = await self._call(
            "create_subscription",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
        )
        return _subscription_from_stripe(subscription)

    async def cancel_subscription(self, subscription_id: str) -> ProviderSubscription:
        subscription = await self._call(
            "cancel_subscription", stripe.Subscription.cancel, subscription_id
        )
        return _subscription_from_stripe(subscription)

    async def release_schedule(self, schedule_id: str) -> None:
        await self._call("release_schedule", stripe.SubscriptionSchedule.release, schedule_id)
