"""
api/main.py -- FastAPI application entry point for the JWT Pizza service.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one log line and one metrics sample per request
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds every service object (database, stores, session authority,
factory client, metrics) and parks it on app.state, then tears them down
symmetrically on shutdown. Route handlers only ever reach services through
request.app.state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import DocsResponse, EndpointDoc, ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.franchise import router as franchise_router
from api.routes.order import router as order_router
from api.routes.user import router as user_router
from auth.models import Role, RoleAssignment, User
from auth.store import UserStore
from auth.tokens import SessionAuthority
from core.config import get_settings
from core.database import Database
from core.errors import PizzaError
from core.metrics import Metrics
from core.telemetry import install_log_shipping, status_to_level, uninstall_log_shipping
from pizza.factory import FactoryClient
from pizza.store import PizzaStore

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pizza.api")


# ---------------------------------------------------------------------------
# First-run admin seed
# ---------------------------------------------------------------------------


def seed_admin(user_store: UserStore, name: str, email: str, password: str) -> bool:
    """Create the admin account when the database has no users yet.

    Returns True when a user was created. A non-empty database is left alone
    even if the configured admin does not exist in it.
    """
    if not email or not password or user_store.has_users():
        return False
    user_store.add_user(User(name=name, email=email, password=password, roles=[RoleAssignment(Role.ADMIN)]))
    logger.info("Seeded admin account %s", email)
    return True


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services on startup; release them in reverse order on shutdown.

    The metrics reporter and the Loki shipper only start when their URLs are
    configured.
    """
    settings = get_settings()
    logger.info("JWT Pizza service %s starting up", VERSION)

    log_shipping = install_log_shipping(
        settings.logging_url, settings.logging_source, settings.logging_user_id, settings.logging_api_key
    )

    db = Database(settings.database_url)
    user_store = UserStore(db, hash_rounds=settings.password_hash_rounds)
    seed_admin(user_store, settings.admin_name, settings.admin_email, settings.admin_password)

    app.state.db = db
    app.state.user_store = user_store
    app.state.pizza_store = PizzaStore(db, orders_per_page=settings.list_per_page)
    app.state.sessions = SessionAuthority(user_store, settings.secret_key, settings.token_expire_seconds)
    app.state.factory = FactoryClient(settings.factory_url, settings.factory_api_key)
    app.state.metrics = Metrics(settings.metrics_url, settings.metrics_source, settings.metrics_api_key)

    metrics_task = None
    if settings.metrics_url:
        metrics_task = asyncio.create_task(app.state.metrics.report_forever(settings.metrics_interval_seconds))

    yield

    if metrics_task is not None:
        metrics_task.cancel()
    app.state.metrics.close()
    app.state.factory.close()
    db.close()
    logger.info("JWT Pizza service shutdown complete")
    if log_shipping is not None:
        uninstall_log_shipping(*log_shipping)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="JWT Pizza Service",
    description="Pizza ordering, franchise administration and JWT sessions.",
    version=VERSION,
    lifespan=lifespan,
    # /api/docs is the service's own endpoint listing.
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000

    metrics = getattr(request.app.state, "metrics", None)
    if metrics is not None:
        metrics.track_request(request.method, ms)

    client = request.client.host if request.client else "unknown"
    has_auth = "Authorization" in request.headers
    logger.log(
        status_to_level(response.status_code),
        "%s %s %d %.1fms %s auth=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        client,
        has_auth,
        extra={
            "log_type": "http",
            "log_data": {
                "authorized": has_auth,
                "path": request.url.path,
                "method": request.method,
                "statusCode": response.status_code,
                "latencyMs": round(ms, 1),
                "client": client,
            },
        },
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(user_router, prefix="/api", tags=["User"])
app.include_router(order_router, prefix="/api", tags=["Order"])
app.include_router(franchise_router, prefix="/api", tags=["Franchise"])

# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(PizzaError)
async def pizza_error_handler(request: Request, exc: PizzaError) -> JSONResponse:
    """Render a domain failure with the status and code the error class carries."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message, exc.detail)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured errors for framework HTTP exceptions, including unmatched routes."""
    if exc.status_code == 404:
        return _error(404, "not_found", "unknown endpoint")
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Service endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/", include_in_schema=False)
async def welcome() -> dict:
    return {"message": "welcome to JWT Pizza", "version": VERSION}


@app.get("/api/docs", response_model=DocsResponse, tags=["Service"])
async def docs(request: Request) -> DocsResponse:
    """List every API endpoint plus the non-secret parts of the configuration."""
    settings = get_settings()
    endpoints = [
        EndpointDoc(method=method, path=route.path, description=route.summary or (route.description or "").strip())
        for route in request.app.routes
        if isinstance(route, APIRoute) and route.path.startswith("/api")
        for method in sorted(route.methods)
    ]
    return DocsResponse(
        version=VERSION,
        endpoints=endpoints,
        config={"factory": settings.factory_url, "db": request.app.state.db.engine.url.render_as_string()},
    )


@app.get("/api/health", response_model=HealthResponse, tags=["Service"])
def health(request: Request):
    """Liveness plus a SELECT 1 against the database."""
    if request.app.state.db.ping():
        return HealthResponse(version=VERSION)
    return JSONResponse(
        status_code=503,
        content=HealthResponse(status="degraded", version=VERSION, database="unavailable").model_dump(),
    )
