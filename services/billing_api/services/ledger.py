"""User, credit and billing-history operations against MongoDB."""

import logging
from datetime import datetime, timedelta, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from db.mongo import BILLING_HISTORY, USERS
from models.documents import BillingHistoryDocument, BillingStatus, UserDocument, serialize_document
from plans import FREE_PLAN, get_plan_by_price_id, plan_credits
from services.stripe_service import subscription_period, subscription_price_id
from shared.config import env_int
from shared.metrics import credit_grants_skipped_total, credits_granted_total

logger = logging.getLogger("creditsync.ledger")

CREDIT_GRANT_WINDOW_SECONDS = env_int("CREDIT_GRANT_WINDOW_SECONDS", 600)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes unless the client is tz_aware.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def fetch_user(db: AsyncIOMotorDatabase, user_id: str) -> dict | None:
    """Fetch a user with credits and plan defaulted. Returns None if missing or on error."""
    try:
        user = await db[USERS].find_one({"userId": user_id})
    except PyMongoError as exc:
        logger.error("Error fetching user", extra={"user_id": user_id, "error": str(exc)})
        return None
    if not user:
        return None

    result = serialize_document(user)
    result["credits"] = user.get("credits") or 0
    result["subscription"] = user.get("subscription") or FREE_PLAN
    result["stripeCustomerId"] = user.get("stripeCustomerId")
    return result


async def ensure_user(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    """Return the user document, creating a Free user with no credits if missing."""
    users = db[USERS]
    user = await users.find_one({"userId": user_id})
    if user:
        return user

    doc = UserDocument(userId=user_id).to_document()
    try:
        await users.insert_one(doc)
        logger.info("Created user", extra={"user_id": user_id})
    except DuplicateKeyError:
        # Concurrent checkout created it first.
        pass
    return await users.find_one({"userId": user_id}) or doc


async def set_stripe_customer_id(db: AsyncIOMotorDatabase, user_id: str, customer_id: str) -> None:
    await db[USERS].update_one(
        {"userId": user_id},
        {"$set": {"stripeCustomerId": customer_id, "updatedAt": _now()}},
    )


def _recently_granted(user: dict | None, now: datetime) -> bool:
    last = (user or {}).get("lastCreditAddedDate")
    if not last:
        return False
    return now - _as_utc(last) < timedelta(seconds=CREDIT_GRANT_WINDOW_SECONDS)


async def upsert_subscription(db: AsyncIOMotorDatabase, subscription: dict, plan: str) -> int:
    """
    Record the customer's current plan and grant the plan's credits.

    The grant is skipped when credits were added less than
    CREDIT_GRANT_WINDOW_SECONDS ago and the user is already on the same plan,
    since invoice.payment_succeeded and customer.subscription.* events for
    one payment usually arrive together.

    Returns the number of credits actually added.
    """
    customer_id = subscription.get("customer")
    users = db[USERS]
    existing = await users.find_one({"stripeCustomerId": customer_id})

    now = _now()
    credits_to_add = plan_credits(plan)
    update: dict = {"$set": {"subscription": plan, "lastCreditAddedDate": now, "updatedAt": now}}
    credits_added = 0

    if credits_to_add > 0:
        if _recently_granted(existing, now) and (existing or {}).get("subscription") == plan:
            logger.info(
                "Credits recently added, skipping duplicate grant",
                extra={"customer_id": customer_id, "plan": plan},
            )
            credit_grants_skipped_total.labels(plan=plan).inc()
        else:
            update["$inc"] = {"credits": credits_to_add}
            credits_added = credits_to_add

    result = await users.update_one({"stripeCustomerId": customer_id}, update)
    if result.matched_count == 0:
        logger.warning(
            "No user for Stripe customer, subscription not recorded",
            extra={"customer_id": customer_id, "plan": plan},
        )
        return 0
    if credits_added:
        credits_granted_total.labels(plan=plan).inc(credits_added)
        current_credits = (existing or {}).get("credits") or 0
        logger.info(
            "Added credits for subscription",
            extra={
                "customer_id": customer_id,
                "plan": plan,
                "credits_added": credits_added,
                "new_total": current_credits + credits_added,
            },
        )

    logger.info(
        "Subscription update completed",
        extra={"customer_id": customer_id, "plan": plan, "credits_added": credits_added},
    )
    return credits_added


async def save_billing_history(
    db: AsyncIOMotorDatabase,
    invoice: dict,
    subscription: dict,
    plan_name: str,
    credits_added: int,
) -> dict:
    """
    Insert one billing-history record per paid invoice and make it the current one.

    Returns the existing record unchanged if the invoice was already recorded.
    creditsAdded stores the plan's nominal grant, not credits_added, so a
    skipped duplicate grant still shows what the period was worth.
    """
    history = db[BILLING_HISTORY]
    invoice_id = invoice.get("id")
    customer_id = subscription.get("customer")
    price_id = subscription_price_id(subscription)
    plan_details = get_plan_by_price_id(price_id)

    existing = await history.find_one({"stripeInvoiceId": invoice_id})
    if existing:
        logger.info("Billing history already exists for invoice", extra={"invoice_id": invoice_id})
        return existing

    await history.update_many(
        {"stripeCustomerId": customer_id},
        {"$set": {"isCurrentSubscription": False, "updatedAt": _now()}},
    )

    user = await db[USERS].find_one({"stripeCustomerId": customer_id})
    user_id = (
        (user or {}).get("userId")
        or (subscription.get("metadata") or {}).get("userId")
        or customer_id
    )

    period_start, period_end = subscription_period(subscription)
    record = BillingHistoryDocument(
        userId=user_id,
        stripeCustomerId=customer_id,
        stripeSubscriptionId=subscription.get("id"),
        stripeInvoiceId=invoice_id,
        stripePriceId=price_id or "",
        planName=plan_name,
        isYearly=plan_details.is_yearly,
        amount=invoice.get("amount_paid") or 0,
        currency=invoice.get("currency") or "usd",
        creditsAdded=plan_credits(plan_name),
        status=BillingStatus.ACTIVE,
        transactionDate=datetime.fromtimestamp(int(invoice.get("created") or 0), tz=timezone.utc),
        periodStart=period_start,
        periodEnd=period_end,
        isCurrentSubscription=True,
    ).to_document()

    result = await history.insert_one(record)
    record["_id"] = result.inserted_id

    logger.info(
        "Billing history saved",
        extra={
            "invoice_id": invoice_id,
            "subscription_id": subscription.get("id"),
            "plan": plan_name,
            "amount": record["amount"],
            "credits_added": record["creditsAdded"],
            "credits_granted_now": credits_added,
        },
    )
    return record


async def mark_subscription_cancelled(db: AsyncIOMotorDatabase, subscription_id: str) -> int:
    """Flag every billing record of a Stripe subscription as cancelled. Returns the match count."""
    result = await db[BILLING_HISTORY].update_many(
        {"stripeSubscriptionId": subscription_id},
        {
            "$set": {
                "status": BillingStatus.CANCELLED.value,
                "isCurrentSubscription": False,
                "updatedAt": _now(),
            }
        },
    )
    return result.matched_count


async def downgrade_to_free(db: AsyncIOMotorDatabase, customer_id: str) -> bool:
    """Move a customer back to the Free plan. Credits already granted are kept."""
    users = db[USERS]
    user = await users.find_one({"stripeCustomerId": customer_id})
    if not user or user.get("subscription") == FREE_PLAN:
        return False

    await users.update_one(
        {"stripeCustomerId": customer_id},
        {"$set": {"subscription": FREE_PLAN, "updatedAt": _now()}},
    )
    logger.info("Customer moved to Free plan", extra={"customer_id": customer_id})
    return True


async def fetch_credits(db: AsyncIOMotorDatabase, user_id: str) -> int:
    user = await fetch_user(db, user_id)
    if not user:
        return 0
    return user["credits"]


async def validate_credits(db: AsyncIOMotorDatabase, user_id: str, credits: int) -> bool:
    try:
        user = await db[USERS].find_one({"userId": user_id})
    except PyMongoError as exc:
        logger.error("Error validating credits", extra={"user_id": user_id, "error": str(exc)})
        return False
    if not user:
        logger.info("User not found for credit check", extra={"user_id": user_id})
        return False

    available = user.get("credits") or 0
    logger.debug("Credit check", extra={"user_id": user_id, "available": available, "required": credits})
    return available >= credits


async def deduct_credits(db: AsyncIOMotorDatabase, user_id: str, credits: int) -> bool:
    """
    Atomically subtract credits.

    The balance check is part of the update filter, so two concurrent
    deductions can never take the balance below zero.
    """
    try:
        result = await db[USERS].find_one_and_update(
            {"userId": user_id, "credits": {"$gte": credits}},
            {"$inc": {"credits": -credits}, "$set": {"updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as exc:
        logger.error("Error deducting credits", extra={"user_id": user_id, "error": str(exc)})
        return False

    if not result:
        logger.info(
            "User not found or insufficient credits for deduction",
            extra={"user_id": user_id, "required": credits},
        )
        return False

    logger.info(
        "Deducted credits",
        extra={"user_id": user_id, "credits": credits, "remaining": result.get("credits")},
    )
    return True


async def _history_for(db: AsyncIOMotorDatabase, query: dict) -> list[dict]:
    cursor = db[BILLING_HISTORY].find(query).sort("transactionDate", DESCENDING)
    return await cursor.to_list(length=None)


async def get_billing_history(db: AsyncIOMotorDatabase, user_id: str) -> list[dict]:
    """
    Billing records for a user, newest first.

    Records written before the local user existed are keyed by customer id
    only, so fall back to the user's stripeCustomerId when nothing matches.
    """
    try:
        records = await _history_for(db, {"userId": user_id})
        if not records:
            user = await db[USERS].find_one({"userId": user_id})
            if user and user.get("stripeCustomerId"):
                records = await _history_for(db, {"stripeCustomerId": user["stripeCustomerId"]})
    except PyMongoError as exc:
        logger.error("Error fetching billing history", extra={"user_id": user_id, "error": str(exc)})
        return []
    return [serialize_document(r) for r in records]
