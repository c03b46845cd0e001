"""Version 1 API endpoints."""

from .endpoints import (
    auth_router,
    devices_router,
    messages_router,
    security_router,
    unread_router,
)

__all__ = [
    "auth_router",
    "devices_router",
    "messages_router",
    "security_router",
    "unread_router",
]
