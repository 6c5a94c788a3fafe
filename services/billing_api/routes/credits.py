import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from dependencies import get_db
from services.ledger import deduct_credits, validate_credits
from shared.metrics import credit_deductions_total

logger = logging.getLogger("creditsync.credits")

router = APIRouter(prefix="/api/credits", tags=["credits"])


class DeductCreditsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId", max_length=200)
    credits: Optional[int] = None


def _failure(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "success": False}, status_code=status_code)


@router.post("/deduct")
async def deduct(data: DeductCreditsRequest, db=Depends(get_db)):
    """Spend credits from a user's balance."""
    if not data.user_id or not data.credits:
        return JSONResponse({"error": "Missing userId or credits"}, status_code=400)
    if data.credits < 0:
        return _failure("Credits must be a positive number", 400)

    try:
        if not await validate_credits(db, data.user_id, data.credits):
            credit_deductions_total.labels(result="insufficient").inc()
            return _failure("Insufficient credits", 400)

        # The balance may have changed since the check; the deduction re-checks atomically.
        if not await deduct_credits(db, data.user_id, data.credits):
            credit_deductions_total.labels(result="failed").inc()
            return _failure("Failed to deduct credits", 500)
    except Exception:
        logger.exception("Error deducting credits", extra={"user_id": data.user_id})
        return _failure("Internal server error", 500)

    credit_deductions_total.labels(result="success").inc()
    return {"success": True}
