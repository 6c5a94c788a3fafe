from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UPGRADED = "upgraded"
    DOWNGRADED = "downgraded"


class UserDocument(BaseModel):
    userId: str = Field(..., min_length=1)
    subscription: str = "Free"
    stripeCustomerId: Optional[str] = None
    credits: int = 0
    lastCreditAddedDate: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        return self.model_dump(exclude_none=True)


class BillingHistoryDocument(BaseModel):
    userId: str
    stripeCustomerId: str
    stripeSubscriptionId: str
    stripeInvoiceId: str
    stripePriceId: str
    planName: str
    isYearly: bool
    amount: int  # cents
    currency: str = "usd"
    creditsAdded: int = 0
    status: BillingStatus = BillingStatus.ACTIVE
    transactionDate: datetime
    periodStart: datetime
    periodEnd: datetime
    isCurrentSubscription: bool = False
    previousSubscriptionId: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        return self.model_dump(mode="python", exclude_none=True) | {"status": self.status.value}


def serialize_document(doc: dict | None) -> dict | None:
    """Make a Mongo document JSON-friendly: ObjectId to str, datetimes to ISO strings."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out[key] = str(value)
        elif isinstance(value, datetime):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out
