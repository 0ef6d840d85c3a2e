"""Domain models shared by the auth, persistence and real-time layers."""

from .messaging import Message, MessageType, Notification, NotificationType, SenderSummary
from .principal import Principal, Role

__all__ = [
    "Message",
    "MessageType",
    "Notification",
    "NotificationType",
    "Principal",
    "Role",
    "SenderSummary",
]
