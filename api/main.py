"""
api/main.py -- FastAPI application entry point for authcore.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- allows the configured browser origins, with credentials
     so the refresh_token cookie reaches /renew-token and /auto-login.
  2. log_requests   -- one log line per request with latency.

Lifespan builds every auth component once, from a single Settings instance,
and stores them on app.state:
  settings, account_store, token_issuer, account_service
Shutdown waits for outstanding OTP mail dispatches, then closes the store.
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

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.profile import router as profile_router
from auth.captcha import TurnstileVerifier
from auth.errors import AuthError
from auth.identity import GoogleIdentityProvider
from auth.mail import SmtpMailSender
from auth.otp import OtpManager
from auth.service import AccountService
from auth.spam import SpamFilter
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authcore.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(app: FastAPI, settings: Settings, store: AccountStore | None = None) -> None:
    """Construct the auth components and attach them to app.state.

    Tests call this with an in-memory store and then swap collaborators on
    app.state.account_service.
    """
    store = store or AccountStore(settings.database_url)
    issuer = TokenIssuer(settings)
    app.state.settings = settings
    app.state.account_store = store
    app.state.token_issuer = issuer
    app.state.account_service = AccountService(
        store=store,
        settings=settings,
        otp=OtpManager(store, settings),
        tokens=issuer,
        spam_filter=SpamFilter.from_settings(settings),
        mail=SmtpMailSender(settings),
        human_verifier=TurnstileVerifier(settings),
        identity_provider=GoogleIdentityProvider(settings),
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup; drain mail and close the store on shutdown."""
    settings = get_settings()
    logger.info("authcore API starting up (debug=%s)", settings.debug)
    build_components(app, settings)
    logger.info("Auth components initialized")

    yield

    await app.state.account_service.drain()
    app.state.account_store.close()
    logger.info("authcore API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authcore API",
    description="Account signup, email OTP verification, login, password reset and token renewal.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Service-Key"],
    max_age=3600,
)


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

app.include_router(profile_router, prefix="/api/v1", tags=["Profile"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly and switch on error.code.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Domain failures: stable code, client-facing message, mapped status."""
    logger.info("%s %s -> %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail or None)
        ).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTPException.

    Dependencies raise HTTPException with a dict detail; use it directly as
    the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for storage, signing and other internal failures.

    The exception is logged with its traceback; the client only sees a
    generic internal_error, distinct from every domain code.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database probe."""
    components = {"app": "ok"}
    try:
        request.app.state.account_store.ping()
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check database probe failed")
        components["database"] = "error"
    return HealthResponse(version=__version__, components=components)
