"""
api/main.py -- FastAPI application entry point for the farm admin backend.

Run with:      uvicorn api.main:app --reload
               python main.py init-db   (create tables, first SUPERADMIN)

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds one Engine and hands it to every store, so an entity write
and its audit row share a transaction. Shutdown disposes the pool.

Every response, success or failure, uses the envelope in api/responses.py.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.responses import error, ok
from api.routes.v1.auth import router as auth_router
from api.routes.v1.farm import router as farm_router
from api.routes.v1.password import router as password_router
from api.routes.v1.requests import router as requests_router
from api.routes.v1.users import router as users_router
from approvals.store import ApprovalStore
from auth.store import UserStore
from core.config import get_settings
from core.database import create_db_engine, ping
from core.errors import AppError
from farm.store import FarmStore
from notify.mailer import Mailer

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("piscicola.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the shared engine and the stores on startup; dispose on shutdown.

    Every store calls metadata.create_all() on construction, so the first
    one to start creates the whole schema.
    """
    logger.info("Farm admin API starting up")
    engine = create_db_engine(settings.database_url)
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.farm_store = FarmStore(engine)
    app.state.approvals = ApprovalStore(engine, code_ttl_hours=settings.auth_code_ttl_hours)
    app.state.mailer = Mailer(settings)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet. Run 'python main.py create-user --role SUPERADMIN' to create one.")
    if not app.state.mailer.enabled:
        logger.warning("SMTP_HOST is not set: approval codes and reset codes will not be emailed")

    yield

    engine.dispose()
    logger.info("Farm admin API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Piscicola Admin API",
    description="Catalogs, feeding/loss/harvest records, users and the approval-code workflow.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,  # the session travels as a cookie
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
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
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(password_router, prefix="/api/v1", tags=["Password reset"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(farm_router, prefix="/api/v1", tags=["Farm"])
app.include_router(requests_router, prefix="/api/v1", tags=["Change requests"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return {"success": false, "msg": ...} so the admin UI can show
# the message without inspecting status codes.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return error(exc.status_code, exc.msg)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429; Retry-After tells clients how many seconds to wait."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return error(429, "Demasiados intentos. Intente nuevamente más tarde.", headers={"Retry-After": str(retry_after)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first validation message."""
    return error(400, _first_error(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """A constraint the stores did not pre-check (e.g. a racing duplicate)."""
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return error(409, "Conflicto en datos (duplicado)")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error(500, "Error interno")


def _first_error(errors) -> str:
    if not errors:
        return "Datos inválidos"
    first = errors[0]
    msg = str(first.get("msg", "Datos inválidos")).removeprefix("Value error, ")
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    return f"{field}: {msg}" if field else msg


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration state. No auth and no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and a database probe, inside the usual envelope."""
    db_ok = ping(request.app.state.engine)
    report = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
    return ok(**report.model_dump())
