import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from dependencies import get_db
from services.ledger import fetch_credits, fetch_user, get_billing_history

logger = logging.getLogger("creditsync.user")

router = APIRouter(prefix="/api", tags=["user"])


@router.get("/user")
async def get_user_dashboard(
    user_id: Optional[str] = Query(None, alias="userId", max_length=200),
    db=Depends(get_db),
):
    """Plan, credit balance and billing history for the dashboard."""
    if not user_id:
        raise HTTPException(400, "Missing userId")

    try:
        user = await fetch_user(db, user_id)
        credits = await fetch_credits(db, user_id)
        billing_history = await get_billing_history(db, user_id)
    except Exception:
        logger.exception("Error fetching user data", extra={"user_id": user_id})
        raise HTTPException(500, "Internal server error")

    return {"user": user, "credits": credits, "billingHistory": billing_history}
