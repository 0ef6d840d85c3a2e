"""
Room identifiers.

A room is a routing key, never a persisted entity: `user:<id>` is a
principal's personal room, `project:<id>`, `task:<id>` and
`conversation:<id>` are the shared channels.
"""

from dataclasses import dataclass
from enum import Enum


class RoomKind(str, Enum):
    USER = "user"
    PROJECT = "project"
    TASK = "task"
    CONVERSATION = "conversation"


@dataclass(frozen=True, slots=True)
class Room:
    kind: RoomKind
    key: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.key}"

    @property
    def is_personal(self) -> bool:
        return self.kind is RoomKind.USER

    @classmethod
    def for_user(cls, principal_id: int) -> "Room":
        return cls(RoomKind.USER, principal_id)

    @classmethod
    def parse(cls, raw: str) -> "Room":
        """
        Parse a `<kind>:<id>` room identifier.

        Raises:
            ValueError: If the kind is unknown or the id is not a positive integer
        """
        if not isinstance(raw, str) or ":" not in raw:
            raise ValueError(f"Malformed room id: {raw!r}")
        kind_part, _, key_part = raw.partition(":")
        try:
            kind = RoomKind(kind_part.strip().lower())
        except ValueError as e:
            raise ValueError(f"Unknown room kind: {kind_part!r}") from e
        key_part = key_part.strip()
        if not key_part.isdigit() or int(key_part) <= 0:
            raise ValueError(f"Room key must be a positive integer: {key_part!r}")
        return cls(kind, int(key_part))
