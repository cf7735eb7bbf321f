"""
api/routes/users.py -- Endpoints for the authenticated user.

Routes (mounted under /api):
  GET /users/protected -- proves the bearer guard; returns the caller's profile
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.models import ApiResponse, UserPublic
from auth.dependencies import get_current_user
from auth.models import User

router = APIRouter()


@router.get("/users/protected")
async def protected(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the current user's public profile."""
    body = ApiResponse(
        success=True,
        message="You have access to protected data",
        data={"user": UserPublic.from_user(current_user).model_dump(by_alias=True)},
    )
    return JSONResponse(content=body.envelope())
