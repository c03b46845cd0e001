"""Security violation schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# multiple_login_attempt is recorded by the session guard only.
ClientViolationType = Literal[
    "screenshot_attempt",
    "copy_attempt",
    "forward_attempt",
    "unauthorized_access",
]


class ViolationReport(BaseModel):
    """Client-reported security anomaly."""

    type: ClientViolationType
    device_info: dict[str, Any] = Field(default_factory=dict)


class ViolationResponse(BaseModel):
    id: int
    user_id: str
    type: str
    device_info: dict[str, Any] | None
    notified_admin: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ViolationReportResponse(BaseModel):
    violation: ViolationResponse
    violation_count: int
    is_blocked: bool
    warning: str | None = None


class SecurityProfileResponse(BaseModel):
    user_id: str
    is_blocked: bool
    block_reason: str | None
    blocked_at: datetime | None
    violation_count: int
    screenshot_attempts: int
    copy_attempts: int
    forward_attempts: int
    violations: list[ViolationResponse]

    model_config = ConfigDict(from_attributes=True)


class BlockRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)
