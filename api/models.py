"""
API request and response models for the Authflow REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request fields are all Optional: a missing field must reach the auth service
so it can answer with its own 400 message (and, on login, so the attempt is
still recorded) instead of FastAPI's generic 422.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EmailRequest(BaseModel):
    """Body of POST /register and POST /forgot-password."""

    email: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class TokenPasswordRequest(BaseModel):
    """Body of POST /verify-registration and POST /reset-password."""

    token: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """User fields safe to return to the account owner. Never the password."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    email: str
    is_verified: bool = Field(serialization_alias="isVerified")
    created_at: Optional[str] = Field(default=None, serialization_alias="createdAt")

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            email=user.email,
            is_verified=user.is_verified,
            created_at=user.created_at.isoformat() if user.created_at else None,
        )


class ApiResponse(BaseModel):
    """Envelope shared by every response, success or failure.

    Serialize with envelope() so absent optional keys are dropped rather than
    sent as null.
    """

    success: bool
    message: Optional[str] = None
    token: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    def envelope(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, by_alias=True)
