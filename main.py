"""
main.py
Marketplace API entry point: app factory, middleware, domain error
mapping, logging setup and the public health/metrics endpoints.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from logging import LogRecord
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from config import redis_client as redis_state
from config.database import AsyncSessionLocal, close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from shared.utils.errors import DomainError

from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.earnings.router import router as earnings_router
from services.event.router import router as event_router
from services.notification.router import router as notification_router
from services.rating.router import router as rating_router
from services.review.router import router as review_router

ROUTERS = (
    auth_router,
    event_router,
    booking_router,
    review_router,
    rating_router,
    notification_router,
    earnings_router,
)

UNLIMITED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}


# ── Logging ──────────────────────────────────────────────────

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """Stamp every record with the current request's ID."""

    def filter(self, record: LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with the request ID when inside a request."""

    def format(self, record: LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if getattr(record, "request_id", None):
            entry["request_id"] = record.request_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging() -> None:
    if settings.DEBUG:
        level = logging.DEBUG
    else:
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    if settings.LOG_JSON:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s")
        )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")
    await init_db()
    await init_redis()
    logger.info("Database and Redis connected")
    yield
    await close_redis()
    await close_db()
    logger.info("Shutdown complete")


# ── Health probes ────────────────────────────────────────────

async def _database_ok() -> bool:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        return False


async def _redis_ok() -> bool:
    # Not connected yet (e.g. under tests) counts as healthy
    if redis_state.redis_client is None:
        return True
    try:
        await redis_state.redis_client.ping()
        return True
    except Exception:
        logger.warning("Health check: redis unreachable", exc_info=True)
        return False


# ── App Factory ──────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Lumera Event Marketplace API

Booking lifecycle and provider-rating core of the marketplace:
- **Events**: client events, organizer assignment and detachment
- **Bookings**: Pending → Confirmed | Rejected | Cancelled → Completed
- **Reviews & Ratings**: one review per completed booking, full-recompute aggregates
- **Notifications**: in-app inbox, message notification reactivation
- **Earnings**: recorded transactions and payout requests

All endpoints except `/health` and `/metrics` require
`Authorization: Bearer <access_token>`.

- `Client`: create events, book services, review completed bookings
- `Organizer` / `Supplier`: manage bookings addressed to them, view earnings
- `Admin`: reset bookings, remove reviews, process payouts, repair ratings
        """,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        """Request ID (header + log context), timing, and one access log line."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms}ms")
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
        return response

    @app.middleware("http")
    async def unauthenticated_rate_limit(request: Request, call_next):
        """
        Per-IP cap on requests without a bearer token
        (RATE_LIMIT_UNAUTH_PER_MINUTE). Fails open when Redis is down.
        """
        if (
            request.url.path in UNLIMITED_PATHS
            or request.headers.get("Authorization", "").startswith("Bearer ")
            or redis_state.redis_client is None
        ):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        try:
            count = await RedisCache(redis_state.redis_client).count_unauth_request(client_ip)
        except Exception:
            logger.error("Rate limit check failed", exc_info=True)
            return await call_next(request)

        if count > settings.RATE_LIMIT_UNAUTH_PER_MINUTE:
            logger.warning(f"Rate limit exceeded for IP {client_ip}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Please slow down."},
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

    # ── Exception Handlers ───────────────────────────────────

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        """Typed manager errors → status code + {"detail", "code"}."""
        logger.info(f"{request.method} {request.url.path} → {exc.status_code} {exc.code}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=True)
        expose = settings.DEBUG and not settings.is_production
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if expose else "An internal server error occurred",
                "request_id": request_id,
            },
        )

    # ── Public routes ────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        checks = {
            "database": "ok" if await _database_ok() else "error",
            "redis": "ok" if await _redis_ok() else "error",
        }
        healthy = all(v == "ok" for v in checks.values())
        body = {"status": "ok" if healthy else "degraded", "version": settings.APP_VERSION, **checks}
        return JSONResponse(content=body, status_code=200 if healthy else 503)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": None if settings.is_production else "/docs",
            "health": "/health",
        }

    for router in ROUTERS:
        app.include_router(router)

    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
    )
