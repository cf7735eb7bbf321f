"""
api/limiter.py -- Shared slowapi rate limiter instance (fixed windows per IP).

Import this in both api/main.py (to guard every /api route) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.

Budgets (from Settings):
  api_rate_limit           one budget per IP across all of /api, default 100 per 15 minutes
  auth_rate_limit          forgot-password, default 5 per 15 minutes
  registration_rate_limit  register, default 3 per hour

The API budget is enforced by enforce_api_limit(), a router-level dependency,
against a single "api" scope, so every route draws from the same counter.
The route budgets are slowapi decorators and count on top of it.

Strategy is fixed-window: the counter resets at window boundaries, so a
burst straddling a boundary can get up to twice the budget through. Counters
are incremented with the storage backend's atomic hit(), never with an
application-level read-modify-write.
"""

from fastapi import HTTPException, Request
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

API_LIMIT_MESSAGE = "Too many requests, please try again after 15 minutes"
AUTH_LIMIT_MESSAGE = "Too many authentication attempts, please try again after 15 minutes"
REGISTRATION_LIMIT_MESSAGE = "Too many registration attempts, please try again after 1 hour"

API_LIMIT = parse(_settings.api_rate_limit)
AUTH_LIMIT = _settings.auth_rate_limit
REGISTRATION_LIMIT = _settings.registration_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    strategy="fixed-window",
)


def enforce_api_limit(request: Request) -> None:
    """Count the request against the caller's shared API budget.

    Raises HTTPException(429) with a Retry-After header once the budget for
    the current window is spent.
    """
    if not limiter.limiter.hit(API_LIMIT, "api", get_remote_address(request)):
        raise HTTPException(
            status_code=429,
            detail=API_LIMIT_MESSAGE,
            headers={"Retry-After": str(API_LIMIT.get_expiry())},
        )
