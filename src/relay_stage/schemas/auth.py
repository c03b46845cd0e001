"""Authentication and session Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

HANDLE_PATTERN = r"^[A-Za-z0-9_.-]+$"


class RegisterRequest(BaseModel):
    """Schema for registering a regular user."""

    handle: str = Field(..., min_length=3, max_length=64, pattern=HANDLE_PATTERN)
    login_key: str = Field(..., min_length=6, max_length=256, description="Opaque login secret")
    display_name: str | None = Field(None, max_length=100)
    avatar: str | None = Field(None, description="Avatar URL")
    device_fingerprint: str = Field(..., min_length=1, max_length=255)
    device_info: dict[str, Any] = Field(default_factory=dict)

    @field_validator("handle")
    @classmethod
    def normalize_handle(cls, value: str) -> str:
        return value.strip().lower()


class LoginRequest(BaseModel):
    """Schema for logging in from a device."""

    handle: str = Field(..., min_length=1, max_length=64)
    login_key: str = Field(..., min_length=1, max_length=256)
    device_fingerprint: str = Field(..., min_length=1, max_length=255)
    device_info: dict[str, Any] = Field(default_factory=dict)


class TokenResponse(BaseModel):
    """Bearer token bound to a device session."""

    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str
    session_replaced: bool = Field(
        False, description="True if a session on another device was ended"
    )


class SessionStatusResponse(BaseModel):
    valid: bool
    user_id: str
    role: str
    device_fingerprint: str
    issued_at: datetime
    active_sessions: int
