"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .devices import router as devices_router
from .messages import router as messages_router
from .security import router as security_router
from .unread import router as unread_router

__all__ = [
    "auth_router",
    "devices_router",
    "messages_router",
    "security_router",
    "unread_router",
]
