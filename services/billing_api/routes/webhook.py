"""Stripe webhook receiver."""

import asyncio
import logging

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from dependencies import get_db
from plans import get_plan_by_price_id
from services.event_dedup import (
    event_key,
    invoice_key,
    processed_events,
    subscription_created_key,
    subscription_updated_key,
)
from services.ledger import (
    downgrade_to_free,
    mark_subscription_cancelled,
    save_billing_history,
    upsert_subscription,
)
from services.stripe_service import (
    cancel_subscription,
    construct_webhook_event,
    invoice_subscription_id,
    list_active_subscriptions,
    retrieve_subscription,
    subscription_price_id,
)
from shared.config import env_float
from shared.logging import log_event, log_exception
from shared.metrics import webhook_events_total, webhook_signature_failures_total

logger = logging.getLogger("creditsync.webhook")

# Give the new subscription's own events a head start before cancelling the old ones.
CHECKOUT_CANCEL_DELAY_SECONDS = env_float("CHECKOUT_CANCEL_DELAY_SECONDS", 1.0)
# Let invoice/subscription events of a replacement plan land before deciding to downgrade.
SUBSCRIPTION_DELETED_DELAY_SECONDS = env_float("SUBSCRIPTION_DELETED_DELAY_SECONDS", 2.0)

HANDLED_EVENT_TYPES = {
    "checkout.session.completed",
    "invoice.payment_succeeded",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


async def _handle_checkout_completed(db, session: dict) -> None:
    """Cancel the subscriptions a plan change replaces."""
    metadata = session.get("metadata") or {}
    logger.info(
        "Checkout session completed",
        extra={"session_id": session.get("id"), "customer_id": session.get("customer")},
    )

    raw_ids = metadata.get("previousSubscriptionIdz")
    if not raw_ids:
        return
    previous_ids = [sid.strip() for sid in raw_ids.split(",") if sid.strip()]
    logger.info("Cancelling previous subscriptions", extra={"subscription_ids": previous_ids})
    await asyncio.sleep(CHECKOUT_CANCEL_DELAY_SECONDS)

    for subscription_id in previous_ids:
        try:
            cancel_subscription(subscription_id)
            logger.info("Cancelled subscription", extra={"subscription_id": subscription_id})
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                logger.info("Subscription already cancelled", extra={"subscription_id": subscription_id})
            else:
                log_exception(logger, "Error cancelling subscription", exc, {"subscription_id": subscription_id})
        except stripe.StripeError as exc:
            log_exception(logger, "Error cancelling subscription", exc, {"subscription_id": subscription_id})


async def _handle_invoice_payment_succeeded(db, invoice: dict) -> None:
    """Grant the period's credits and record the payment. Failures propagate."""
    logger.info(
        "Invoice payment succeeded",
        extra={
            "invoice_id": invoice.get("id"),
            "amount": invoice.get("amount_paid"),
            "currency": invoice.get("currency"),
            "customer_id": invoice.get("customer"),
        },
    )

    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("No subscription id on invoice", extra={"invoice_id": invoice.get("id")})
        return

    subscription = retrieve_subscription(subscription_id)
    price_id = subscription_price_id(subscription)
    plan = get_plan_by_price_id(price_id)
    customer_id = subscription.get("customer")

    logger.info(
        "Subscription details",
        extra={
            "subscription_id": subscription.get("id"),
            "customer_id": customer_id,
            "plan": plan.title,
            "price_id": price_id,
            "status": subscription.get("status"),
        },
    )

    if processed_events.check_and_add(invoice_key(invoice.get("id"), customer_id)):
        logger.info("Duplicate invoice payment, skipping", extra={"invoice_id": invoice.get("id")})
        return

    credits_added = await upsert_subscription(db, subscription, plan.title)

    try:
        await save_billing_history(db, invoice, subscription, plan.title, credits_added or 0)
    except Exception as exc:
        log_exception(logger, "Error saving billing history", exc, {"invoice_id": invoice.get("id")})


async def _handle_subscription_created(db, subscription: dict) -> None:
    customer_id = subscription.get("customer")
    status = subscription.get("status")
    logger.info(
        "Subscription created",
        extra={"subscription_id": subscription.get("id"), "customer_id": customer_id, "status": status},
    )

    if processed_events.check_and_add(subscription_created_key(subscription.get("id"), customer_id)):
        logger.info("Duplicate subscription creation, skipping", extra={"subscription_id": subscription.get("id")})
        return

    if status not in ("active", "trialing"):
        return
    try:
        plan = get_plan_by_price_id(subscription_price_id(subscription))
        await upsert_subscription(db, subscription, plan.title)
    except Exception as exc:
        log_exception(logger, "Error processing new subscription", exc, {"subscription_id": subscription.get("id")})


async def _handle_subscription_updated(db, subscription: dict) -> None:
    customer_id = subscription.get("customer")
    status = subscription.get("status")
    logger.info(
        "Subscription updated",
        extra={"subscription_id": subscription.get("id"), "customer_id": customer_id, "status": status},
    )

    key = subscription_updated_key(subscription.get("id"), customer_id, status)
    if processed_events.check_and_add(key):
        logger.info("Duplicate subscription update, skipping", extra={"subscription_id": subscription.get("id")})
        return

    if status != "active":
        return
    try:
        plan = get_plan_by_price_id(subscription_price_id(subscription))
        await upsert_subscription(db, subscription, plan.title)
    except Exception as exc:
        log_exception(logger, "Error processing subscription update", exc, {"subscription_id": subscription.get("id")})


async def _handle_subscription_deleted(db, subscription: dict) -> None:
    """Close out billing records; drop to Free only if nothing else is active."""
    subscription_id = subscription.get("id")
    customer_id = subscription.get("customer")
    logger.info("Subscription deleted", extra={"subscription_id": subscription_id, "customer_id": customer_id})

    try:
        await mark_subscription_cancelled(db, subscription_id)
    except Exception as exc:
        log_exception(logger, "Error updating billing history", exc, {"subscription_id": subscription_id})

    await asyncio.sleep(SUBSCRIPTION_DELETED_DELAY_SECONDS)

    try:
        active = list_active_subscriptions(customer_id)
        if active:
            logger.info(
                "Customer has other active subscriptions, keeping plan",
                extra={"customer_id": customer_id, "active_count": len(active)},
            )
            return
        await downgrade_to_free(db, customer_id)
    except Exception as exc:
        log_exception(logger, "Error checking customer subscriptions", exc, {"customer_id": customer_id})


router = APIRouter(prefix="/api", tags=["webhook"])


@router.post("/webhook")
async def stripe_webhook(request: Request, db=Depends(get_db)):
    """Handle Stripe webhook events."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""

    try:
        event = construct_webhook_event(payload, sig_header)
    except Exception as exc:
        webhook_signature_failures_total.inc()
        logger.warning("Webhook signature verification failed", extra={"error": str(exc)})
        return JSONResponse({"error": str(exc)}, status_code=400)

    event_id = event.get("id")
    event_type = event.get("type")
    data_object = (event.get("data") or {}).get("object") or {}
    log_event(logger, "Webhook event received", event_id=event_id, event_type=event_type)

    if processed_events.check_and_add(event_key(event_id, event_type)):
        logger.info("Duplicate webhook event, skipping", extra={"event_id": event_id})
        webhook_events_total.labels(event_type=event_type, result="duplicate").inc()
        return {"received": True, "duplicate": True}

    if event_type not in HANDLED_EVENT_TYPES:
        logger.info("Unhandled event type", extra={"event_type": event_type})
        webhook_events_total.labels(event_type=event_type, result="unhandled").inc()
        return {"received": True}

    try:
        if event_type == "checkout.session.completed":
            await _handle_checkout_completed(db, data_object)
        elif event_type == "invoice.payment_succeeded":
            await _handle_invoice_payment_succeeded(db, data_object)
        elif event_type == "customer.subscription.created":
            await _handle_subscription_created(db, data_object)
        elif event_type == "customer.subscription.updated":
            await _handle_subscription_updated(db, data_object)
        elif event_type == "customer.subscription.deleted":
            await _handle_subscription_deleted(db, data_object)
    except Exception as exc:
        logger.error(
            "Webhook processing failed",
            extra={"event_type": event_type, "event_id": event_id, "error": str(exc)},
            exc_info=True,
        )
        webhook_events_total.labels(event_type=event_type, result="failed").inc()
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    webhook_events_total.labels(event_type=event_type, result="processed").inc()
    return {"received": True}
