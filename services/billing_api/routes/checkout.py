"""Checkout, billing-portal and cancellation endpoint."""

import logging
from datetime import datetime, timezone
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from dependencies import get_db
from services.ledger import downgrade_to_free, ensure_user, set_stripe_customer_id
from services.stripe_service import (
    cancel_subscription,
    create_checkout_session,
    create_customer,
    create_portal_session,
    is_stripe_configured,
    list_active_subscriptions,
    retrieve_customer,
)
from shared.config import is_production, optional_env
from shared.metrics import checkout_requests_total

logger = logging.getLogger("creditsync.checkout")


def get_base_url() -> str:
    if is_production():
        return optional_env("STRIPE_PROD_REDIRECT", "https://yourdomain.com").rstrip("/")
    return optional_env("STRIPE_REDIRECT_URL", "http://localhost:3000").rstrip("/")


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price: Optional[str] = Field(None, max_length=100)
    user_id: Optional[str] = Field(None, alias="userId", max_length=200)
    email: Optional[str] = Field(None, max_length=320)
    manage_subscription: bool = Field(False, alias="manageSubscription")
    cancel_subscription: bool = Field(False, alias="cancelSubscription")


router = APIRouter(prefix="/api", tags=["checkout"])


async def validate_customer(db, user_id: str, email: str) -> dict:
    """
    Make sure the user exists locally and has a live Stripe customer.

    A stored customer id that Stripe no longer knows (deleted, or from another
    Stripe account) is replaced with a freshly created customer.
    """
    user = await ensure_user(db, user_id)

    customer = None
    stored_id = user.get("stripeCustomerId")
    if stored_id:
        try:
            customer = retrieve_customer(stored_id)
            if customer.get("deleted"):
                customer = None
        except stripe.StripeError as exc:
            logger.info(
                "Stripe customer not found, creating a new one",
                extra={"user_id": user_id, "customer_id": stored_id, "error": str(exc)},
            )
            customer = None

    if not customer:
        customer = create_customer(email)
        await set_stripe_customer_id(db, user_id, customer["id"])

    return customer


def _format_expiry(subscription: dict) -> str:
    period_end = subscription.get("current_period_end")
    if period_end is None:
        items = (subscription.get("items") or {}).get("data") or [{}]
        period_end = items[0].get("current_period_end") or 0
    return datetime.fromtimestamp(int(period_end), tz=timezone.utc).strftime("%m/%d/%Y")


def _has_price(subscription: dict, price_id: str) -> bool:
    items = (subscription.get("items") or {}).get("data") or []
    return any((item.get("price") or {}).get("id") == price_id for item in items)


@router.post("/checkout")
async def checkout(data: CheckoutRequest, db=Depends(get_db)):
    """Start a checkout, open the billing portal, or cancel active subscriptions."""
    if not data.price and not data.manage_subscription and not data.cancel_subscription:
        raise HTTPException(400, "Missing price, manageSubscription, or cancelSubscription")
    if not data.user_id or not data.email:
        raise HTTPException(400, "Missing userId or email")
    if not is_stripe_configured():
        raise HTTPException(503, "Billing is not configured")

    base_url = get_base_url()

    try:
        customer = await validate_customer(db, data.user_id, data.email)
        customer_id = customer["id"]
        subscriptions = list_active_subscriptions(customer_id)

        if data.manage_subscription and subscriptions:
            url = await create_portal_session(customer_id=customer_id, return_url=base_url)
            checkout_requests_total.labels(action="manage", result="ok").inc()
            return {"url": url}

        if data.cancel_subscription and subscriptions:
            for subscription in subscriptions:
                cancel_subscription(subscription["id"])
            await downgrade_to_free(db, customer_id)
            logger.info(
                "Cancelled subscriptions on request",
                extra={"user_id": data.user_id, "count": len(subscriptions)},
            )
            checkout_requests_total.labels(action="cancel", result="ok").inc()
            return {"message": "Subscription cancelled successfully"}

        if data.price and subscriptions:
            existing = next((s for s in subscriptions if _has_price(s, data.price)), None)
            if existing:
                checkout_requests_total.labels(action="checkout", result="duplicate").inc()
                raise HTTPException(
                    400,
                    f"You already have this subscription plan that expires on {_format_expiry(existing)}.",
                )

        if data.price:
            metadata = {"userId": data.user_id}
            if subscriptions:
                metadata["previousSubscriptionIdz"] = ",".join(s["id"] for s in subscriptions)
            url = await create_checkout_session(
                price_id=data.price,
                success_url=f"{base_url}?stripe=success",
                cancel_url=f"{base_url}?stripe=cancel",
                customer_id=customer_id,
                metadata=metadata,
            )
            checkout_requests_total.labels(action="checkout", result="ok").inc()
            return {"url": url}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error in checkout", extra={"user_id": data.user_id})
        checkout_requests_total.labels(action="any", result="error").inc()
        raise HTTPException(500, "Internal server error")

    raise HTTPException(400, "Invalid request")
