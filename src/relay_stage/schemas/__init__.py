"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .auth import LoginRequest, RegisterRequest, SessionStatusResponse, TokenResponse
from .device import DeviceRegisterRequest, DeviceResponse
from .message import (
    AttachmentPayload,
    DeliveryResponse,
    DirectMessageResponse,
    GroupMessageResponse,
    MessageCreate,
)
from .security import SecurityProfileResponse, ViolationReport, ViolationResponse
from .unread import UnreadCountsResponse

__all__ = [
    "LoginRequest", "RegisterRequest", "SessionStatusResponse", "TokenResponse",
    "DeviceRegisterRequest", "DeviceResponse",
    "AttachmentPayload", "DeliveryResponse", "DirectMessageResponse",
    "GroupMessageResponse", "MessageCreate",
    "SecurityProfileResponse", "ViolationReport", "ViolationResponse",
    "UnreadCountsResponse",
]
