"""
api/main.py -- FastAPI application entry point for Authflow.

Run with:      uvicorn asgi:app --reload

Middleware: log_requests writes one log line per request with latency.

Rate limits: every /api route depends on api.limiter.enforce_api_limit (one
shared budget per IP); register and forgot-password add their own slowapi
route limits on top.

Lifespan builds every component once from Settings and injects it:
engine -> stores -> notifier -> AuthService / LoginGate, all on app.state.
It also starts the reaper task and, on shutdown, waits for it before the
engine is disposed.

Every response, success or failure, uses the envelope
{"success": bool, "message"?: str, "token"?: str, "data"?: object}.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from api.limiter import enforce_api_limit, limiter
from api.models import ApiResponse
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.db import create_auth_engine, utcnow
from auth.errors import AuthError
from auth.ledger import AttemptLedger
from auth.notifier import SmtpNotifier
from auth.policy import LoginGate
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authflow.api")

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(app: FastAPI, settings: Settings) -> None:
    """Construct stores, policy and service from one Settings object.

    Kept separate from lifespan so the wiring can be exercised without
    starting the reaper task.
    """
    engine = create_auth_engine(settings.database_url)
    app.state.settings = settings
    app.state.user_store = UserStore(engine)
    app.state.ledger = AttemptLedger(engine, retention_seconds=settings.login_attempt_window_seconds)
    app.state.sessions = SessionRegistry(engine, ttl_seconds=settings.active_session_ttl_seconds)
    app.state.notifier = SmtpNotifier(settings)
    app.state.auth_service = AuthService(settings, app.state.user_store, app.state.sessions, app.state.notifier)
    app.state.login_gate = LoginGate(settings, app.state.user_store, app.state.ledger, app.state.sessions)


# ---------------------------------------------------------------------------
# Background reaper
# ---------------------------------------------------------------------------


def reap_expired(app: FastAPI) -> dict[str, int]:
    """Physically delete expired attempts, sessions and token pairs.

    Reads already ignore expired rows; this keeps the tables small.
    """
    now = utcnow()
    counts = {
        "login_attempts": app.state.ledger.purge_expired(now),
        "sessions": app.state.sessions.purge_expired(now),
        "tokens": app.state.user_store.purge_expired_tokens(now),
    }
    if any(counts.values()):
        logger.info(
            "Reaper removed %d attempts, %d sessions, %d token pairs",
            counts["login_attempts"],
            counts["sessions"],
            counts["tokens"],
        )
    return counts


async def _reaper_loop(app: FastAPI, interval: float, stop: asyncio.Event) -> None:
    """Run reap_expired() every `interval` seconds until `stop` is set.

    The store calls are blocking, so each sweep runs in a worker thread. A
    sweep in progress when `stop` is set runs to completion before the loop
    returns, so the caller can dispose the engine once this coroutine is done.
    """
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
        else:
            break
        try:
            await asyncio.to_thread(reap_expired, app)
        except Exception:
            logger.exception("Reaper sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup; stop the reaper and dispose the engine on shutdown."""
    settings = get_settings()
    logger.info("Authflow API starting up")
    build_components(app, settings)
    logger.info("Auth stores initialized (%s)", app.state.user_store.engine.url.render_as_string(hide_password=True))
    app.state.reaper_stop = asyncio.Event()
    app.state.reaper_task = asyncio.create_task(
        _reaper_loop(app, settings.reaper_interval_seconds, app.state.reaper_stop)
    )

    yield

    app.state.reaper_stop.set()
    await app.state.reaper_task
    app.state.user_store.close()
    logger.info("Authflow API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Authflow API",
    description="Email-verified registration, bearer-token login, single active session and password reset.",
    version=__version__,
    lifespan=lifespan,
)

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

app.include_router(auth_router, prefix="/api", tags=["Auth"], dependencies=[Depends(enforce_api_limit)])
app.include_router(users_router, prefix="/api", tags=["Users"], dependencies=[Depends(enforce_api_limit)])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope so clients can parse failures
# uniformly. Messages are static strings; details stay in the server log.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ApiResponse(success=False, message=message).envelope())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with the route limit's message and a Retry-After header.

    Retry-After is the window length, an upper bound for a fixed window.
    """
    retry_after = int(exc.limit.limit.get_expiry())
    response = _error(429, str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrong field types. Missing fields never get here (all Optional)."""
    return _error(400, "Invalid request body")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Envelope for framework errors (404, 405) and the shared API limit's 429."""
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Server error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"], dependencies=[Depends(enforce_api_limit)])
async def health() -> JSONResponse:
    """Return API liveness and current version."""
    return JSONResponse(content=ApiResponse(success=True, message="API is running", data={"version": __version__}).envelope())
