"""
Persistence collaborator protocol.

The real-time core depends on this protocol rather than a concrete store.
Lookups answer "absent" with None or False; only infrastructure failure
raises, as PersistenceUnavailableError.
"""

# pylint: disable=unnecessary-ellipsis  # Reason: Protocol method bodies use ... per typing.Protocol convention

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from taskhub.models import Message, MessageType, Notification, NotificationType, Principal
    from taskhub.realtime.rooms import Room


class PersistenceGateway(Protocol):
    """Operations the session, routing and notification components consume."""

    async def find_principal_by_id(self, principal_id: int) -> Principal | None:
        """Get a principal by ID."""
        ...

    async def find_principal_by_login(self, identifier: str) -> Principal | None:
        """Get a principal by username or email (case-insensitive)."""
        ...

    async def update_principal_presence(self, principal_id: int, online: bool, last_seen_at: datetime) -> None:
        """Set the online flag and last-seen timestamp."""
        ...

    async def create_principal(
        self,
        username: str,
        email: str,
        password_hash: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> Principal:
        """
        Store a new active MEMBER.

        Raises:
            ResourceConflictError: If the username or email is taken
        """
        ...

    async def update_principal_password(self, principal_id: int, password_hash: str) -> bool:
        """Replace the stored hash. False if the principal does not exist."""
        ...

    async def is_room_member(self, principal_id: int, room: Room) -> bool:
        """Whether the principal may join the room."""
        ...

    async def can_update_task(self, principal_id: int, task_id: int) -> bool:
        """Whether the principal is the task's assignee or creator."""
        ...

    async def create_message(
        self,
        room: Room,
        sender_id: int,
        content: str,
        message_type: MessageType,
        mentions: list[int],
        parent_id: int | None,
    ) -> Message:
        """Persist a message and return it with generated id and timestamp."""
        ...

    async def create_notification(
        self,
        principal_id: int,
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> Notification:
        """Persist one notification."""
        ...

    async def create_notifications(
        self,
        principal_ids: list[int],
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> list[Notification]:
        """Persist the same notification for many principals in one transaction."""
        ...

    async def list_notifications(
        self,
        principal_id: int,
        limit: int,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[Notification]:
        """A principal's notifications, newest first."""
        ...

    async def count_unread_notifications(self, principal_id: int) -> int:
        ...

    async def mark_notification_read(self, principal_id: int, notification_id: int) -> Notification | None:
        """Mark one of the principal's notifications read. None if it is not theirs."""
        ...

    async def mark_all_notifications_read(self, principal_id: int) -> int:
        """Returns the number of notifications that changed."""
        ...

    async def delete_notification(self, principal_id: int, notification_id: int) -> bool:
        ...

    async def list_room_participants(self, room: Room) -> list[int]:
        """Principal IDs with standing membership in the room."""
        ...

    async def list_active_principal_ids(self) -> list[int]:
        """IDs of every active principal."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
