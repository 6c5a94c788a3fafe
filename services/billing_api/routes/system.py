import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from db.mongo import ping
from dependencies import get_db
from services.stripe_service import is_stripe_configured

logger = logging.getLogger("creditsync.system")

router = APIRouter(tags=["system"])


async def check_mongo(db) -> dict:
    start = time.time()
    try:
        await ping(db)
        return {"status": "healthy", "latency_ms": int((time.time() - start) * 1000)}
    except Exception as e:
        logger.error("MongoDB health check failed: %s", e)
        return {"status": "down", "error": str(e)}


@router.get("/health")
async def health(db=Depends(get_db)):
    mongo = await check_mongo(db)
    body = {
        "status": "ok" if mongo["status"] == "healthy" else "degraded",
        "service": "creditsync-billing",
        "mongodb": mongo,
        "stripe_configured": is_stripe_configured(),
    }
    return JSONResponse(body, status_code=200 if mongo["status"] == "healthy" else 503)


@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
