"""
Main FastAPI application for the referral service.
Serves health, referrals (public, user and admin) and metrics.
"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import health, referrals
from app.referral.errors import ReferralError
from app.utils.metrics import router as metrics_router


configure_logging()
logger = logging.getLogger("app.http")

app = FastAPI(
    title="Referral Service API",
    description="Referral codes, redemptions and reward attribution for RestaurantBook",
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


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or str(uuid4())
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": round((time.perf_counter() - start) * 1000, 1),
        },
    )
    return response


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_error",
        exc_info=exc,
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "method": request.method,
            "path": request.url.path,
            "error": type(exc).__name__,
        },
    )
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


@app.exception_handler(ReferralError)
async def referral_error_handler(request: Request, exc: ReferralError) -> JSONResponse:
    # GenerationExhausted, StoreFailure: operational problems, never user-facing detail.
    return _internal_error(request, exc)


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    return _internal_error(request, exc)


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(referrals.router)
app.include_router(metrics_router)
