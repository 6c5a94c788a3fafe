import logging
import os

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

logger = logging.getLogger("creditsync.db")

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "creditsync")

USERS = "users"
BILLING_HISTORY = "billinghistories"

_client: AsyncIOMotorClient | None = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(MONGODB_URI, serverSelectionTimeoutMS=5000)
    return _client


def get_database() -> AsyncIOMotorDatabase:
    return get_client()[MONGODB_DB]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the indexes the ledger queries rely on. Safe to call on every startup."""
    await db[USERS].create_index("userId", unique=True)
    await db[USERS].create_index("stripeCustomerId")

    history = db[BILLING_HISTORY]
    await history.create_index("stripeInvoiceId", unique=True)
    await history.create_index([("userId", ASCENDING), ("transactionDate", DESCENDING)])
    await history.create_index([("stripeCustomerId", ASCENDING), ("transactionDate", DESCENDING)])
    await history.create_index(
        [("userId", ASCENDING), ("status", ASCENDING), ("isCurrentSubscription", ASCENDING)]
    )
    logger.info("MongoDB indexes ensured", extra={"database": db.name})


async def ping(db: AsyncIOMotorDatabase) -> bool:
    await db.command("ping")
    return True
