"""
Stripe webhook endpoint
Verified subscription and invoice events trigger a reconcile of the affected member
"""
import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.services.container import CoreServices

logger = logging.getLogger(__name__)

stripe_router = APIRouter(prefix="/stripe", tags=["stripe"])

SYNC_EVENT_PREFIXES = ("customer.subscription.", "invoice.")


def _subscription_id_from_event(event: dict) -> Optional[str]:
    obj = (event.get("data") or {}).get("object") or {}
    if event.get("type", "").startswith("customer.subscription."):
        return obj.get("id")

    subscription = obj.get("subscription")
    if subscription is None:
        # Newer API versions nest it under the invoice parent
        details = (obj.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def _reply(ok: bool, **content) -> JSONResponse:
    # Always 200 so Stripe does not keep retrying events we cannot use
    return JSONResponse(status_code=200, content={"ok": ok, "received": True, **content})


@stripe_router.post("/webhook")
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed; subscription and invoice events run
    syncOne for the member owning the subscription.
    """
    services: CoreServices = request.app.state.services
    webhook_secret = services.settings.stripe_webhook_secret
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
        return _reply(False, error="Webhook secret not configured")

    payload = await request.body()
    stripe_signature = request.headers.get("stripe-signature")
    if not stripe_signature:
        logger.error("Missing Stripe-Signature header")
        return _reply(False, error="Missing signature header")

    try:
        stripe.Webhook.construct_event(payload, stripe_signature, webhook_secret)
        event = json.loads(payload)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Stripe webhook signature verification failed: {e}")
        return _reply(False, error="Invalid webhook signature")
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return _reply(False, error="Invalid payload format")

    event_type = event.get("type", "")
    if not event_type.startswith(SYNC_EVENT_PREFIXES):
        logger.debug(f"Ignoring Stripe event {event_type}")
        return _reply(True, event_type=event_type, synced=False)

    subscription_id = _subscription_id_from_event(event)
    if not subscription_id:
        return _reply(True, event_type=event_type, synced=False)

    try:
        member_id = await services.reconciler.find_member_by_subscription(subscription_id)
        if member_id is None:
            logger.warning(f"Stripe event {event_type} for unknown subscription {subscription_id}")
            return _reply(True, event_type=event_type, synced=False)

        result = await services.reconciler.sync_one(member_id)
    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return _reply(False, event_type=event_type, error=str(e))

    if not result.ok:
        logger.warning(f"Webhook sync for member {member_id} failed: {result.error_code}")
        return _reply(False, event_type=event_type, synced=False, error_code=result.error_code)
    return _reply(True, event_type=event_type, synced=True, outcome=result.value.outcome)
