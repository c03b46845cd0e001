# src/relay_stage/models/__init__.py
"""SQLAlchemy models for the Relay Stage application."""

from .device import PushAddress
from .direct_message import DirectMessage, MessageRead
from .group import ChatGroup, ChatGroupMember, GroupMessage
from .security import SecurityViolation
from .session import DeviceSession
from .user import AdminUser, RegularUser, User

__all__ = [
    "PushAddress",
    "DirectMessage", "MessageRead",
    "ChatGroup", "ChatGroupMember", "GroupMessage",
    "SecurityViolation",
    "DeviceSession",
    "User", "AdminUser", "RegularUser",
]
