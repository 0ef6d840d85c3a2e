"""Message and notification records produced through the persistence layer."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    SYSTEM = "SYSTEM"


class NotificationType(str, Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_DUE_SOON = "TASK_DUE_SOON"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_COMMENTED = "TASK_COMMENTED"
    TASK_MENTIONED = "TASK_MENTIONED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    GENERAL_NOTIFICATION = "GENERAL_NOTIFICATION"


class SenderSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    first_name: str | None = None
    last_name: str | None = None


class Message(BaseModel):
    """A persisted conversation message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    sender_id: int
    content: str
    message_type: MessageType = MessageType.TEXT
    mentions: list[int] = Field(default_factory=list)
    parent_id: int | None = None
    created_at: datetime
    sender: SenderSummary | None = None


class Notification(BaseModel):
    """A persisted notification addressed to one principal."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    principal_id: int
    type: NotificationType
    title: str
    content: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime
