"""
Real-time event schema.

Inbound frames are `{"type": <kind>, "data": {...}}` and are parsed into a
closed tagged union; anything that does not match exactly one variant is
rejected before dispatch. Outbound frames share one envelope built by
build_event().
"""

import itertools
import threading
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from ..models import MessageType
from .rooms import Room


class OutboundEvent(str, Enum):
    WELCOME = "welcome"
    JOINED_ROOM = "joined-room"
    LEFT_ROOM = "left-room"
    NEW_MESSAGE = "new-message"
    NOTIFICATION = "notification"
    PRESENCE_CHANGED = "presence-changed"
    TYPING_INDICATOR = "typing-indicator"
    TASK_UPDATED = "task-updated"
    ERROR = "error"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class _EventData(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class _RoomData(_EventData):
    room_id: str

    @field_validator("room_id")
    @classmethod
    def validate_room_id(cls, v: str) -> str:
        Room.parse(v)
        return v

    @property
    def room(self) -> Room:
        return Room.parse(self.room_id)


class SendMessageData(_RoomData):
    content: str = Field(..., min_length=1)
    message_type: MessageType = MessageType.TEXT
    mentions: list[int] = Field(default_factory=list)
    parent_id: int | None = None

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message content cannot be blank")
        return v


class UpdatePresenceData(_EventData):
    status: PresenceStatus


class TaskUpdateData(_EventData):
    task_id: int = Field(..., gt=0)
    updates: dict[str, Any]


class JoinRoomEvent(_EventData):
    type: Literal["join-room"]
    data: _RoomData


class LeaveRoomEvent(_EventData):
    type: Literal["leave-room"]
    data: _RoomData


class SendMessageEvent(_EventData):
    type: Literal["send-message"]
    data: SendMessageData


class TypingStartEvent(_EventData):
    type: Literal["typing-start"]
    data: _RoomData


class TypingStopEvent(_EventData):
    type: Literal["typing-stop"]
    data: _RoomData


class UpdatePresenceEvent(_EventData):
    type: Literal["update-presence"]
    data: UpdatePresenceData


class TaskUpdateEvent(_EventData):
    type: Literal["task-update"]
    data: TaskUpdateData


InboundEvent = Annotated[
    JoinRoomEvent
    | LeaveRoomEvent
    | SendMessageEvent
    | TypingStartEvent
    | TypingStopEvent
    | UpdatePresenceEvent
    | TaskUpdateEvent,
    Field(discriminator="type"),
]

inbound_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)

INBOUND_EVENT_TYPES = (
    "join-room",
    "leave-room",
    "send-message",
    "typing-start",
    "typing-stop",
    "update-presence",
    "task-update",
)


_sequence = itertools.count(1)
_sequence_lock = threading.Lock()


def _next_sequence() -> int:
    with _sequence_lock:
        return next(_sequence)


def build_event(
    event_type: OutboundEvent | str,
    data: dict[str, Any] | None = None,
    room_id: str | None = None,
    principal_id: int | None = None,
) -> dict[str, Any]:
    """
    Build an outbound event envelope.

    Args:
        event_type: Outbound event kind
        data: Event payload
        room_id: Room the event is scoped to, if any
        principal_id: Principal the event concerns, if any

    Returns:
        dict: `{event_type, timestamp, sequence_number, room_id, principal_id, data}`
    """
    return {
        "event_type": event_type.value if isinstance(event_type, OutboundEvent) else event_type,
        "timestamp": datetime.now(UTC).isoformat(),
        "sequence_number": _next_sequence(),
        "room_id": room_id,
        "principal_id": principal_id,
        "data": data or {},
    }
