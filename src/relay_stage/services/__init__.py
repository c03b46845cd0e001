"""Business logic services for the Relay Stage application."""

from .conversations import ConversationService
from .delivery import DeliveryCoordinator, DeliveryReceipt
from .directory import UserDirectory
from .message_store import MessageStore
from .permissions import PermissionEngine
from .security import SecurityViolationTracker
from .sessions import SessionGuard
from .unread import UnreadCounterService

__all__ = [
    "ConversationService",
    "DeliveryCoordinator", "DeliveryReceipt",
    "UserDirectory",
    "MessageStore",
    "PermissionEngine",
    "SecurityViolationTracker",
    "SessionGuard",
    "UnreadCounterService",
]
