"""Stripe billing integration service."""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from shared.config import is_production

logger = logging.getLogger("creditsync.stripe")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_WEBHOOK_SECRET_PROD = os.getenv("STRIPE_WEBHOOK_SECRET_PROD", "")

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY


def is_stripe_configured() -> bool:
    return bool(STRIPE_SECRET_KEY)


def webhook_secret() -> str:
    return STRIPE_WEBHOOK_SECRET_PROD if is_production() else STRIPE_WEBHOOK_SECRET


def to_plain(obj: Any) -> dict:
    """Convert a StripeObject (or an already-plain dict) to a plain dict."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def construct_webhook_event(payload: bytes, sig_header: str) -> dict:
    """Verify and construct a Stripe webhook event from the raw payload."""
    event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret())
    return to_plain(event)


def retrieve_customer(customer_id: str) -> dict:
    """Retrieve a Stripe customer by ID. Deleted customers carry deleted=True."""
    return to_plain(stripe.Customer.retrieve(customer_id))


def create_customer(email: str) -> dict:
    customer = stripe.Customer.create(email=email)
    logger.info("Created Stripe customer", extra={"customer_id": customer["id"]})
    return to_plain(customer)


def list_active_subscriptions(customer_id: str) -> list[dict]:
    result = stripe.Subscription.list(customer=customer_id, status="active")
    return [to_plain(sub) for sub in result["data"]]


def retrieve_subscription(subscription_id: str) -> dict:
    """Retrieve a Stripe subscription by ID."""
    return to_plain(stripe.Subscription.retrieve(subscription_id))


def cancel_subscription(subscription_id: str) -> dict:
    return to_plain(stripe.Subscription.cancel(subscription_id))


async def create_checkout_session(
    *,
    price_id: str,
    success_url: str,
    cancel_url: str,
    customer_id: str,
    metadata: Optional[dict] = None,
) -> str:
    """Create a subscription-mode Checkout Session. Returns the session URL."""
    session = stripe.checkout.Session.create(
        success_url=success_url,
        cancel_url=cancel_url,
        payment_method_types=["card"],
        mode="subscription",
        billing_address_collection="auto",
        customer=customer_id,
        allow_promotion_codes=True,
        line_items=[{"price": price_id, "quantity": 1}],
        metadata={**(metadata or {})},
        payment_method_collection="if_required",
    )
    return session.url


async def create_portal_session(
    *,
    customer_id: str,
    return_url: str,
) -> str:
    """Create a Stripe Customer Portal session. Returns the session URL."""
    session = stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=return_url,
    )
    return session.url


def subscription_price_id(subscription: dict) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def subscription_period(subscription: dict) -> tuple[datetime, datetime]:
    """
    Current period bounds of a subscription.

    Newer Stripe API versions moved current_period_* onto the subscription
    items, so fall back to the first item when the top-level fields are gone.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or [{}]
        start = items[0].get("current_period_start", start)
        end = items[0].get("current_period_end", end)
    return (
        datetime.fromtimestamp(int(start or 0), tz=timezone.utc),
        datetime.fromtimestamp(int(end or 0), tz=timezone.utc),
    )


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    sub_id = invoice.get("subscription")
    if sub_id:
        return sub_id if isinstance(sub_id, str) else sub_id.get("id")
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")
