"""Push device registration schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DeviceRegisterRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512, description="Push gateway device token")
    device_type: Literal["android", "ios", "web"] = "android"
    device_id: str | None = Field(None, max_length=255)


class DeviceResponse(BaseModel):
    token: str
    device_type: str
    device_id: str | None
    is_active: bool
    last_used: datetime | None

    model_config = ConfigDict(from_attributes=True)
