import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request

from db.mongo import close_client, ensure_indexes, get_database
from middleware.trace import TraceMiddleware
from routes.checkout import router as checkout_router
from routes.credits import router as credits_router
from routes.pricing import router as pricing_router
from routes.system import router as system_router
from routes.user import router as user_router
from routes.webhook import router as webhook_router
from services.stripe_service import is_stripe_configured
from shared.logging import configure_logging

CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "*")

logger = logging.getLogger("creditsync.app")

app = FastAPI(title="creditsync billing")
app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook_router)
app.include_router(checkout_router)
app.include_router(credits_router)
app.include_router(user_router)
app.include_router(pricing_router)
app.include_router(system_router)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Same {"error": ...} body as HTTPException.
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"Invalid {field}: {message}" if field else message},
    )


@app.on_event("startup")
async def startup():
    configure_logging("creditsync-billing")
    app.state.db = get_database()
    try:
        await ensure_indexes(app.state.db)
    except Exception:
        # Keep serving; /health reports the database as down.
        logger.exception("Could not ensure MongoDB indexes")
    if not is_stripe_configured():
        logger.warning("STRIPE_SECRET_KEY is not set; checkout is disabled")


@app.on_event("shutdown")
async def shutdown():
    close_client()
