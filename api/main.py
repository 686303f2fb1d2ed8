"""
api/main.py -- FastAPI application entry point for bankauth.

Exposes the credential-verification and access-audit core over HTTP.

Install deps:  pip install -e .
Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. log_requests          -- one access-log line per request with latency

Rate limiting is not middleware: it runs as router dependencies (see
api/limiter.py) so a rejection goes through the exception handlers below
like any other error, and /api/health stays unthrottled.

Lifespan builds the credential store, audit recorder, rate limiter and auth
service on startup and tears them down symmetrically on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import RateLimiter
from api.models import ErrorResponse, HealthResponse
from api.routes.audit import router as audit_router
from api.routes.auth import router as auth_router
from auth.audit import AuditRecorder
from auth.errors import RateLimitError
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import get_settings

__version__ = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("bankauth.api")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the auth service needs both the store and the
    recorder. Shutdown closes the recorder after the store so queued audit
    rows are still drained.
    """
    logger.info("bankauth API starting up")
    app.state.credential_store = CredentialStore()
    app.state.audit_recorder = AuditRecorder()
    app.state.rate_limiter = RateLimiter.from_settings(_settings)
    app.state.auth_service = AuthService(app.state.credential_store, app.state.audit_recorder)
    logger.info(
        "Auth initialized (users=%d, general_limit=%d, auth_limit=%d, window=%ds)",
        app.state.credential_store.count_users(),
        _settings.general_rate_limit,
        _settings.auth_rate_limit,
        _settings.rate_limit_window_seconds,
    )

    yield

    app.state.credential_store.close()
    app.state.audit_recorder.close()
    logger.info("bankauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="bankauth API",
    description="Credential verification, session tokens and access audit for online banking.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(audit_router, prefix="/api", tags=["Audit"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {success: false, message} envelope so clients
# can parse errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitError)
async def rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    """Return 429 when a traffic-class ceiling is exceeded.

    Not audited: no credential check happened. The WARNING line was already
    written by the limiter dependency.
    """
    response = JSONResponse(status_code=429, content=ErrorResponse(message=exc.message).model_dump())
    response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the body is not JSON or a field has the wrong type."""
    logger.warning("Request validation failed %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(message="Request validation failed").model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback is logged server-side only. The client receives a generic
    message with no internal detail.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(message="Internal server error").model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable. No
# rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
