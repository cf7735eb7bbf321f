"""
api/routes/auth.py -- Registration, login and password lifecycle endpoints.

Routes (mounted under /api):
  POST /auth/register              -- start registration or resend verification
  POST /auth/verify-registration   -- set the first password with the emailed token
  POST /auth/login                 -- password login; returns a bearer token
  POST /auth/forgot-password       -- email a password reset token
  POST /auth/reset-password        -- set a new password with the emailed token
  POST /auth/logout                -- drop the active session (requires auth)

Gates:
  every route      shared API budget per IP (router dependency in api/main.py)
  register         registration limiter (fixed window per IP)
  forgot-password  auth limiter (fixed window per IP)
  login            LoginGate (lockouts, already-logged-in conflict)
  logout           bearer guard

Handlers are plain `def` functions: the stores are synchronous SQLAlchemy,
so FastAPI runs them in its threadpool. Domain failures propagate as
auth.errors exceptions and are rendered by the handlers in api/main.py.

No `from __future__ import annotations` here: FastAPI reads the signature
through the slowapi wrapper, and string annotations would be resolved in
slowapi's module namespace.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import AUTH_LIMIT, AUTH_LIMIT_MESSAGE, REGISTRATION_LIMIT, REGISTRATION_LIMIT_MESSAGE, limiter
from api.models import ApiResponse, EmailRequest, LoginRequest, TokenPasswordRequest
from auth.dependencies import get_current_user
from auth.models import User
from auth.policy import LoginGate
from auth.service import AuthResult, AuthService

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _result_response(result: AuthResult) -> JSONResponse:
    body = ApiResponse(success=True, message=result.message, token=result.token)
    return JSONResponse(status_code=result.status_code, content=body.envelope())


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


# The route decorator must sit above @limiter.limit so the registered endpoint
# is the rate-limited wrapper.
@router.post("/auth/register", status_code=201)
@limiter.limit(REGISTRATION_LIMIT, error_message=REGISTRATION_LIMIT_MESSAGE, override_defaults=False)
def register(request: Request, body: EmailRequest) -> JSONResponse:
    """Create a pending account (201) or rotate an unverified one's token (200)."""
    return _result_response(_service(request).register(body.email))


@router.post("/auth/verify-registration")
def verify_registration(request: Request, body: TokenPasswordRequest) -> JSONResponse:
    return _result_response(_service(request).verify_registration(body.token, body.password))


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token.

    LoginGate.attempt() runs the lockout and session checks first, then the
    service's login, and records the attempt either way.
    """
    gate: LoginGate = request.app.state.login_gate
    result = gate.attempt(body.email, body.password, get_remote_address(request), _service(request).login)
    resp = _result_response(result)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    return _result_response(_service(request).logout(current_user))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password")
@limiter.limit(AUTH_LIMIT, error_message=AUTH_LIMIT_MESSAGE, override_defaults=False)
def forgot_password(request: Request, body: EmailRequest) -> JSONResponse:
    return _result_response(_service(request).forgot_password(body.email))


@router.post("/auth/reset-password")
def reset_password(request: Request, body: TokenPasswordRequest) -> JSONResponse:
    resp = _result_response(_service(request).reset_password(body.token, body.password))
    resp.headers["Cache-Control"] = "no-store"
    return resp
