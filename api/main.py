"""
api/main.py -- FastAPI application entry point for setu-auth.

Exposes the authentication core (auth/service.py) over HTTP. The handlers in
api/routes/v1/auth.py are thin adapters; every rule lives in AuthService.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for the configured browser origins
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan opens the store and builds the service on startup, and closes the
store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AccountLocked, AuthError, Internal
from auth.service import AuthService
from auth.store import AuthStore
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("setuauth.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store and build the service; close the store on shutdown.

    app.state.reset_delivery is the hook a deployment sets to a callable
    (email, token) that hands the plaintext reset token to a mailer. It stays
    None until something installs one.
    """
    logger.info("setu-auth API starting up")
    app.state.auth_store = AuthStore(settings.database_url)
    app.state.auth_service = AuthService(app.state.auth_store, settings)
    app.state.reset_delivery = None
    logger.info("Auth store initialized")

    yield

    app.state.auth_store.close()
    logger.info("setu-auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="setu-auth API",
    description="Role-based account registration, login, token rotation and password reset.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _envelope(status_code: int, code: str, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map an AuthError subclass to its status code and the error envelope.

    Internal keeps its message in the server log only. AccountLocked carries
    Retry-After so clients know when the lock lifts.
    """
    if isinstance(exc, Internal):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        return _envelope(500, exc.code, Internal.default_message)
    response = _envelope(exc.status_code, exc.code, exc.message, exc.detail or None)
    if isinstance(exc, AccountLocked):
        response.headers["Retry-After"] = str(exc.remaining_seconds)
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, outside the
    router, so it must return a response rather than a coroutine.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _envelope(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when a request body does not match its transport model."""
    return _envelope(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTPExceptions raised by auth/dependencies.py.

    Those carry detail={"code", "message"}; use it as the error field directly.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    response = _envelope(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if headers:
        response.headers.update(headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Return liveness, version and a database probe. 503 when the store is unreachable."""
    store: AuthStore | None = getattr(request.app.state, "auth_store", None)
    db_ok = store is not None and store.ping()
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
