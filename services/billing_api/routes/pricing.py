from fastapi import APIRouter, Query

from plans import list_plans
from services.stripe_service import STRIPE_PUBLISHABLE_KEY, is_stripe_configured

router = APIRouter(prefix="/api", tags=["plans"])


@router.get("/plans")
async def get_plans(interval: str = Query("monthly", pattern="^(monthly|yearly)$")):
    """Pricing table for the requested billing interval."""
    return {
        "interval": interval,
        "plans": list_plans(interval),
        "stripe_configured": is_stripe_configured(),
        "publishable_key": STRIPE_PUBLISHABLE_KEY if is_stripe_configured() else None,
    }
