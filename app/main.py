"""
Main FastAPI application for the Premium Payments API.
Serves payment routes, health probes and metrics.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import health, payments
from app.core.config import settings
from app.core.logging import configure_logging
from app.services.errors import PaymentError
from app.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Premium Payments API",
    description="Lightning invoices for premium tiers and entitlement provisioning",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    """Internal detail goes to the log only; clients get the fixed public message."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "payment_request_failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "error": f"{type(exc).__name__}: {exc}",
            **{k: v for k, v in exc.detail.items() if k in ("payment_id", "pubkey", "tier", "settlement_hash")},
        },
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router)
app.include_router(metrics_router)
