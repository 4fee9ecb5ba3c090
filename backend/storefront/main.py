"""FastAPI application for the delivery storefront and its admin console."""

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront.api.deps import SESSION_HEADER
from storefront.api.routes import api_router
from storefront.core.config import settings
from storefront.core.rate_limit import client_ip, limiter
from storefront.db.base import Base
from storefront.db.session import IS_SQLITE, engine, session_scope
from storefront.services.state_store import cleanup_expired_state

APP_VERSION = "1.0.0"
STATE_CLEANUP_INTERVAL_SECONDS = 3600
UNLOGGED_PATHS = frozenset({"/", "/health", "/health/ready", "/docs", "/openapi.json"})


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the production log shipper."""

    def format(self, record):
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging() -> None:
    """Readable logs in debug, JSON on stdout otherwise."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level))
    root.handlers.clear()
    if settings.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    root.addHandler(handler)


configure_logging()
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("storefront.requests")


class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    """Send plain-HTTP requests forwarded by the proxy to HTTPS."""

    async def dispatch(self, request: Request, call_next):
        if request.headers.get("x-forwarded-proto") == "http":
            return RedirectResponse(url=str(request.url.replace(scheme="https")), status_code=301)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers allowing Stripe Elements, Google Places and Shopify images."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        api_origins = " ".join(settings.cors_origins_list)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), payment=(self \"https://js.stripe.com\")"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' https://js.stripe.com https://maps.googleapis.com; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data: blob: https://cdn.shopify.com https://maps.gstatic.com; "
            f"connect-src 'self' https://api.stripe.com https://maps.googleapis.com {api_origins}; "
            "frame-src https://js.stripe.com https://hooks.stripe.com; "
            "font-src 'self' data:;"
        )
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each API call with status, duration and client."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"
        ip = client_ip(request)
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            request_logger.error(f"{route} raised {type(e).__name__}: {e} ({elapsed:.3f}s, client {ip})")
            raise

        elapsed = time.perf_counter() - started
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(level, f"{route} -> {response.status_code} ({elapsed:.3f}s, client {ip})")
        return response


def _run_state_cleanup() -> int:
    with session_scope() as db:
        return cleanup_expired_state(db)


async def _periodic_state_cleanup():
    """Purge expired carts, checkout state and last-order records every hour."""
    while True:
        try:
            removed = await asyncio.to_thread(_run_state_cleanup)
            if removed:
                logger.info(f"Purged {removed} expired session state entries")
        except SQLAlchemyError as e:
            logger.warning(f"Session state cleanup error: {e}")
        await asyncio.sleep(STATE_CLEANUP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting delivery storefront {APP_VERSION} (debug={settings.debug})")

    if IS_SQLITE:
        db_path = settings.database_url.split("sqlite:///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    if not settings.stripe_configured:
        logger.warning("STRIPE_SECRET_KEY is not set; payments will be unavailable")
    if not settings.shopify_configured:
        logger.warning("Shopify credentials are not set; the catalog will be unavailable")

    cleanup_task = asyncio.create_task(_periodic_state_cleanup())

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    logger.info("Shutting down delivery storefront")


app = FastAPI(
    title="Delivery Storefront",
    description="Backend API for the alcohol delivery storefront and its admin console",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

if not settings.debug:
    app.add_middleware(HTTPSRedirectMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# Added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", SESSION_HEADER, "Stripe-Signature"],
    max_age=600,
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    return {"status": "healthy", "version": APP_VERSION}


@app.get("/health/ready")
def readiness_check():
    """Readiness check: database connectivity plus which integrations are configured."""
    checks = {}
    try:
        with session_scope() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"

    checks["stripe"] = "configured" if settings.stripe_configured else "not configured"
    checks["shopify"] = "configured" if settings.shopify_configured else "not configured"
    checks["distance_pricing"] = "configured" if settings.google_maps_api_key else "standard fee only"

    return {
        "status": "ready" if checks["database"] == "healthy" else "degraded",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


@app.get("/")
def root():
    return {"message": "Delivery Storefront API", "health": "/health"}
