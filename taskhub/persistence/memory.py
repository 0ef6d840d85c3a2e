"""
In-process persistence backend.

Backs the `memory://` database URL and the test suite. Records live in plain
dictionaries guarded by one asyncio.Lock; nothing survives a restart.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..error_types import ErrorMessages
from ..exceptions import ResourceConflictError
from ..models import Message, MessageType, Notification, NotificationType, Principal, Role, SenderSummary
from ..realtime.rooms import Room, RoomKind
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ConversationRecord:
    id: int
    participant_ids: set[int] = field(default_factory=set)
    name: str | None = None


@dataclass
class ProjectRecord:
    id: int
    owner_id: int
    is_public: bool = False


@dataclass
class TaskRecord:
    id: int
    creator_id: int
    assignee_id: int | None = None
    watcher_ids: set[int] = field(default_factory=set)


class InMemoryPersistence:
    """Dictionary-backed implementation of PersistenceGateway."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._principals: dict[int, Principal] = {}
        self._conversations: dict[int, ConversationRecord] = {}
        self._projects: dict[int, ProjectRecord] = {}
        self._tasks: dict[int, TaskRecord] = {}
        self.messages: list[Message] = []
        self.notifications: list[Notification] = []
        self._message_ids = itertools.count(1)
        self._notification_ids = itertools.count(1)

    # Seeding helpers

    def add_principal(
        self,
        principal_id: int,
        username: str | None = None,
        role: Role = Role.MEMBER,
        is_active: bool = True,
        first_name: str | None = None,
        email: str | None = None,
        password_hash: str | None = None,
    ) -> Principal:
        principal = Principal(
            id=principal_id,
            username=username or f"user{principal_id}",
            email=email,
            first_name=first_name,
            role=role,
            is_active=is_active,
            password_hash=password_hash,
        )
        self._principals[principal_id] = principal
        return principal

    def add_conversation(self, conversation_id: int, participant_ids: list[int], name: str | None = None) -> None:
        self._conversations[conversation_id] = ConversationRecord(conversation_id, set(participant_ids), name)

    def add_project(self, project_id: int, owner_id: int, is_public: bool = False) -> None:
        self._projects[project_id] = ProjectRecord(project_id, owner_id, is_public)

    def add_task(
        self,
        task_id: int,
        creator_id: int,
        assignee_id: int | None = None,
        watcher_ids: list[int] | None = None,
    ) -> None:
        self._tasks[task_id] = TaskRecord(task_id, creator_id, assignee_id, set(watcher_ids or []))

    def notifications_for(self, principal_id: int) -> list[Notification]:
        return [n for n in self.notifications if n.principal_id == principal_id]

    # PersistenceGateway

    async def find_principal_by_id(self, principal_id: int) -> Principal | None:
        principal = self._principals.get(principal_id)
        return principal.model_copy() if principal is not None else None

    async def find_principal_by_login(self, identifier: str) -> Principal | None:
        needle = identifier.strip().lower()
        for principal in self._principals.values():
            if principal.username.lower() == needle or (principal.email and principal.email.lower() == needle):
                return principal.model_copy()
        return None

    async def update_principal_presence(self, principal_id: int, online: bool, last_seen_at: datetime) -> None:
        async with self._lock:
            principal = self._principals.get(principal_id)
            if principal is None:
                logger.debug("Presence update for unknown principal ignored", principal_id=principal_id)
                return
            self._principals[principal_id] = principal.model_copy(
                update={"is_online": online, "last_seen_at": last_seen_at}
            )

    async def create_principal(
        self,
        username: str,
        email: str,
        password_hash: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> Principal:
        async with self._lock:
            for existing in self._principals.values():
                if existing.username.lower() == username.lower():
                    raise ResourceConflictError(ErrorMessages.USERNAME_TAKEN, field="username")
                if existing.email and existing.email.lower() == email.lower():
                    raise ResourceConflictError(ErrorMessages.EMAIL_TAKEN, field="email")
            principal = Principal(
                id=max(self._principals, default=0) + 1,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
            )
            self._principals[principal.id] = principal
        return principal.model_copy()

    async def update_principal_password(self, principal_id: int, password_hash: str) -> bool:
        async with self._lock:
            principal = self._principals.get(principal_id)
            if principal is None:
                return False
            self._principals[principal_id] = principal.model_copy(update={"password_hash": password_hash})
        return True

    async def is_room_member(self, principal_id: int, room: Room) -> bool:
        if room.kind is RoomKind.USER:
            return room.key == principal_id
        if room.kind is RoomKind.CONVERSATION:
            conversation = self._conversations.get(room.key)
            return conversation is not None and principal_id in conversation.participant_ids
        if room.kind is RoomKind.PROJECT:
            project = self._projects.get(room.key)
            return project is not None and (project.owner_id == principal_id or project.is_public)
        if room.kind is RoomKind.TASK:
            task = self._tasks.get(room.key)
            return task is not None and principal_id in self._task_members(task)
        return False

    async def can_update_task(self, principal_id: int, task_id: int) -> bool:
        task = self._tasks.get(task_id)
        return task is not None and principal_id in (task.creator_id, task.assignee_id)

    async def create_message(
        self,
        room: Room,
        sender_id: int,
        content: str,
        message_type: MessageType,
        mentions: list[int],
        parent_id: int | None,
    ) -> Message:
        if room.kind is not RoomKind.CONVERSATION:
            raise ValueError(f"Messages can only be stored in conversation rooms, got {room}")
        async with self._lock:
            sender = self._principals.get(sender_id)
            message = Message(
                id=next(self._message_ids),
                conversation_id=room.key,
                sender_id=sender_id,
                content=content,
                message_type=message_type,
                mentions=list(mentions),
                parent_id=parent_id,
                created_at=datetime.now(UTC),
                sender=SenderSummary.model_validate(sender) if sender is not None else None,
            )
            self.messages.append(message)
        return message

    async def create_notification(
        self,
        principal_id: int,
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> Notification:
        async with self._lock:
            return self._insert_notification(principal_id, notification_type, title, content, data)

    async def create_notifications(
        self,
        principal_ids: list[int],
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> list[Notification]:
        async with self._lock:
            return [
                self._insert_notification(principal_id, notification_type, title, content, data)
                for principal_id in principal_ids
            ]

    async def list_notifications(
        self,
        principal_id: int,
        limit: int,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[Notification]:
        owned = [n for n in self.notifications_for(principal_id) if not (unread_only and n.is_read)]
        owned.sort(key=lambda n: (n.created_at, n.id), reverse=True)
        return [n.model_copy() for n in owned[offset : offset + limit]]

    async def count_unread_notifications(self, principal_id: int) -> int:
        return sum(1 for n in self.notifications_for(principal_id) if not n.is_read)

    async def mark_notification_read(self, principal_id: int, notification_id: int) -> Notification | None:
        async with self._lock:
            for index, notification in enumerate(self.notifications):
                if notification.id == notification_id and notification.principal_id == principal_id:
                    updated = notification.model_copy(update={"is_read": True})
                    self.notifications[index] = updated
                    return updated.model_copy()
        return None

    async def mark_all_notifications_read(self, principal_id: int) -> int:
        changed = 0
        async with self._lock:
            for index, notification in enumerate(self.notifications):
                if notification.principal_id == principal_id and not notification.is_read:
                    self.notifications[index] = notification.model_copy(update={"is_read": True})
                    changed += 1
        return changed

    async def delete_notification(self, principal_id: int, notification_id: int) -> bool:
        async with self._lock:
            for index, notification in enumerate(self.notifications):
                if notification.id == notification_id and notification.principal_id == principal_id:
                    del self.notifications[index]
                    return True
        return False

    async def list_room_participants(self, room: Room) -> list[int]:
        if room.kind is RoomKind.USER:
            return [room.key] if room.key in self._principals else []
        if room.kind is RoomKind.CONVERSATION:
            conversation = self._conversations.get(room.key)
            return sorted(conversation.participant_ids) if conversation else []
        if room.kind is RoomKind.PROJECT:
            project = self._projects.get(room.key)
            return [project.owner_id] if project else []
        task = self._tasks.get(room.key)
        return sorted(self._task_members(task)) if task else []

    async def list_active_principal_ids(self) -> list[int]:
        return sorted(pid for pid, principal in self._principals.items() if principal.is_active)

    async def close(self) -> None:
        return None

    def _insert_notification(
        self,
        principal_id: int,
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> Notification:
        notification = Notification(
            id=next(self._notification_ids),
            principal_id=principal_id,
            type=notification_type,
            title=title,
            content=content,
            data=dict(data),
            created_at=datetime.now(UTC),
        )
        self.notifications.append(notification)
        return notification

    @staticmethod
    def _task_members(task: TaskRecord) -> set[int]:
        members = {task.creator_id, *task.watcher_ids}
        if task.assignee_id is not None:
            members.add(task.assignee_id)
        return members
