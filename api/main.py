"""
api/main.py -- FastAPI application entry point for agg-api.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (engine, schema, stores, token codec, auth service,
optional session sweep) and shutdown (cancel sweep, dispose engine)
symmetrically. Constructing the TokenCodec is the last startup-fatal check:
a signing key shorter than 32 bytes stops the process before it serves.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import (
    AuthError,
    Forbidden,
    InvalidCredentials,
    PersistenceError,
    SessionExpired,
    SessionNotFound,
    SessionRevoked,
)
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from core.db import create_engine, create_schema

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("aggapi.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Startup wiring
# ---------------------------------------------------------------------------


async def init_auth(app: FastAPI, settings: Settings) -> None:
    """Build the storage engine, stores, codec and service onto app.state.

    Shared by the real lifespan and the test lifespan so both wire the app
    identically. Raises ValueError on a short signing key.
    """
    engine = create_engine(settings.database_url, timeout=settings.storage_timeout_seconds)
    await create_schema(engine)
    app.state.engine = engine
    app.state.user_store = UserStore(engine, timeout=settings.storage_timeout_seconds)
    app.state.session_store = SessionStore(engine, timeout=settings.storage_timeout_seconds)
    app.state.token_codec = TokenCodec(settings.secret_key)
    app.state.auth_service = AuthService(
        app.state.user_store,
        app.state.session_store,
        app.state.token_codec,
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
    )
    app.state.setup_required = not await app.state.user_store.has_users()


async def _sweep_loop(service: AuthService, interval: int) -> None:
    """Delete expired sessions every `interval` seconds.

    Purely a storage reclaim: renew re-checks expiry on every call, so a
    stopped or failing sweep never lets an expired session through. Storage
    errors are logged and the loop carries on. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await service.sweep_expired()
        except PersistenceError:
            logger.warning("Session sweep skipped: storage unavailable")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("agg-api starting up")
    await init_auth(app, _settings)
    logger.info("Auth initialized (setup_required=%s)", app.state.setup_required)

    sweep_task = None
    if _settings.session_sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(_sweep_loop(app.state.auth_service, _settings.session_sweep_interval_seconds))
        logger.info("Session sweep every %ds", _settings.session_sweep_interval_seconds)

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        # Let an in-flight sweep roll back before the pool goes away.
        with suppress(asyncio.CancelledError):
            await sweep_task
    await app.state.engine.dispose()
    logger.info("agg-api shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="agg-api",
    description="Events/accounts aggregator -- authentication and session lifecycle.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST registration is the
# outermost layer. Register innermost-first: SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives latency.
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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth taxonomy onto HTTP.

    Bearer token failures (missing/malformed header, bad signature, expired,
    undecodable) all collapse into one generic 401. Only the log line records
    which one it was.
    """
    logger.info("Auth failure on %s %s: %s", request.method, request.url.path, exc.code)
    if isinstance(exc, Forbidden):
        return _error(403, "forbidden", "Admin access required.")
    if isinstance(exc, SessionNotFound):
        return _error(404, "not_found", "Session not found.")
    if isinstance(exc, InvalidCredentials):
        response = _error(401, "bad_credentials", "Invalid email or password.")
        response.headers["Cache-Control"] = "no-store"
        return response
    if isinstance(exc, SessionRevoked):
        return _error(401, "session_revoked", "Session has been revoked. Log in again.")
    if isinstance(exc, SessionExpired):
        return _error(401, "session_expired", "Session has expired. Log in again.")
    response = _error(401, "unauthorized", "Authentication required.")
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    """Storage failed or timed out. Never retried here; the client may retry."""
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return _error(503, "storage_unavailable", "Storage backend unavailable. Try again later.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or params fail validation.

    Only field locations and messages are echoed; submitted values (which may
    include a password) are not.
    """
    errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    return _error(422, "validation_error", "Request validation failed.", errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail. When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth --
# health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database_ok = await request.app.state.user_store.ping()
    return HealthResponse(
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
