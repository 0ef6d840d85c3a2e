"""
SQLAlchemy implementation of PersistenceGateway.

Constraint violations surface as EventValidationError, which is not
retryable. Every other SQLAlchemyError is converted to
PersistenceUnavailableError so the real-time layer can tell "absent"
(None/False) from "unreachable" without inspecting driver exceptions.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...error_types import ErrorMessages
from ...exceptions import EventValidationError, PersistenceUnavailableError, ResourceConflictError
from ...models import Message, MessageType, Notification, NotificationType, Principal, Role, SenderSummary
from ...realtime.rooms import Room, RoomKind
from ...structured_logging.enhanced_logging_config import get_logger
from .database import DatabaseManager
from .models import (
    ConversationParticipantRow,
    MessageRow,
    NotificationRow,
    ProjectRow,
    TaskRow,
    TaskWatcherRow,
    UserRow,
)

logger = get_logger(__name__)


def _to_principal(row: UserRow) -> Principal:
    return Principal(
        id=row.id,
        username=row.username,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        is_active=row.is_active,
        is_online=row.is_online,
        last_seen_at=row.last_seen_at,
        password_hash=row.password_hash,
    )


def _to_notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        principal_id=row.user_id,
        type=NotificationType(row.type),
        title=row.title,
        content=row.content,
        data=row.data or {},
        is_read=row.is_read,
        created_at=row.created_at,
    )


class SqlPersistence:
    """PersistenceGateway over an async SQLAlchemy engine."""

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        session_maker = self._database.get_session_maker()
        try:
            async with session_maker() as session:
                yield session
        except IntegrityError as e:
            logger.warning("Persistence constraint violated", operation=operation, error=str(e.orig))
            raise EventValidationError(
                "Request references missing or duplicate data",
                details={"operation": operation},
            ) from e
        except SQLAlchemyError as e:
            logger.error("Persistence operation failed", operation=operation, error=str(e), exc_info=True)
            raise PersistenceUnavailableError(operation=operation, details={"error": str(e)}) from e

    async def find_principal_by_id(self, principal_id: int) -> Principal | None:
        async with self._session("find_principal_by_id") as session:
            row = await session.get(UserRow, principal_id)
            return _to_principal(row) if row is not None else None

    async def find_principal_by_login(self, identifier: str) -> Principal | None:
        needle = identifier.strip().lower()
        async with self._session("find_principal_by_login") as session:
            result = await session.execute(
                select(UserRow).where(or_(func.lower(UserRow.username) == needle, func.lower(UserRow.email) == needle))
            )
            row = result.scalars().first()
            return _to_principal(row) if row is not None else None

    async def update_principal_presence(self, principal_id: int, online: bool, last_seen_at: datetime) -> None:
        async with self._session("update_principal_presence") as session:
            await session.execute(
                update(UserRow).where(UserRow.id == principal_id).values(is_online=online, last_seen_at=last_seen_at)
            )
            await session.commit()

    async def create_principal(
        self,
        username: str,
        email: str,
        password_hash: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> Principal:
        async with self._session("create_principal") as session:
            taken = await session.execute(
                select(UserRow.username, UserRow.email).where(
                    or_(func.lower(UserRow.username) == username.lower(), func.lower(UserRow.email) == email.lower())
                )
            )
            existing = taken.first()
            if existing is not None:
                if existing.username.lower() == username.lower():
                    raise ResourceConflictError(ErrorMessages.USERNAME_TAKEN, field="username")
                raise ResourceConflictError(ErrorMessages.EMAIL_TAKEN, field="email")

            row = UserRow(
                username=username,
                email=email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                role="MEMBER",
                is_active=True,
                is_online=False,
            )
            session.add(row)
            await session.commit()
            return _to_principal(row)

    async def update_principal_password(self, principal_id: int, password_hash: str) -> bool:
        async with self._session("update_principal_password") as session:
            result = await session.execute(
                update(UserRow).where(UserRow.id == principal_id).values(password_hash=password_hash)
            )
            await session.commit()
            return result.rowcount > 0

    async def is_room_member(self, principal_id: int, room: Room) -> bool:
        if room.kind is RoomKind.USER:
            return room.key == principal_id
        async with self._session("is_room_member") as session:
            if room.kind is RoomKind.CONVERSATION:
                found = await session.get(ConversationParticipantRow, (room.key, principal_id))
                return found is not None
            if room.kind is RoomKind.PROJECT:
                project = await session.get(ProjectRow, room.key)
                return project is not None and (project.owner_id == principal_id or project.is_public)
            task = await session.get(TaskRow, room.key)
            if task is None:
                return False
            if principal_id in (task.creator_id, task.assignee_id):
                return True
            watcher = await session.get(TaskWatcherRow, (room.key, principal_id))
            return watcher is not None

    async def can_update_task(self, principal_id: int, task_id: int) -> bool:
        async with self._session("can_update_task") as session:
            task = await session.get(TaskRow, task_id)
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
        async with self._session("create_message") as session:
            row = MessageRow(
                conversation_id=room.key,
                sender_id=sender_id,
                content=content,
                message_type=message_type.value,
                mentions=list(mentions),
                parent_id=parent_id,
            )
            session.add(row)
            await session.commit()
            sender = await session.get(UserRow, sender_id)
            return Message(
                id=row.id,
                conversation_id=row.conversation_id,
                sender_id=row.sender_id,
                content=row.content,
                message_type=MessageType(row.message_type),
                mentions=list(row.mentions or []),
                parent_id=row.parent_id,
                created_at=row.created_at,
                sender=SenderSummary.model_validate(sender) if sender is not None else None,
            )

    async def create_notification(
        self,
        principal_id: int,
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> Notification:
        created = await self.create_notifications([principal_id], notification_type, title, content, data)
        return created[0]

    async def create_notifications(
        self,
        principal_ids: list[int],
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any],
    ) -> list[Notification]:
        if not principal_ids:
            return []
        async with self._session("create_notifications") as session:
            result = await session.execute(
                insert(NotificationRow).returning(NotificationRow, sort_by_parameter_order=True),
                [
                    {
                        "user_id": principal_id,
                        "type": notification_type.value,
                        "title": title,
                        "content": content,
                        "data": dict(data),
                    }
                    for principal_id in principal_ids
                ],
            )
            rows = list(result.scalars().all())
            await session.commit()
            return [_to_notification(row) for row in rows]

    async def list_notifications(
        self,
        principal_id: int,
        limit: int,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[Notification]:
        query = select(NotificationRow).where(NotificationRow.user_id == principal_id)
        if unread_only:
            query = query.where(NotificationRow.is_read.is_(False))
        query = query.order_by(NotificationRow.created_at.desc(), NotificationRow.id.desc()).offset(offset).limit(limit)
        async with self._session("list_notifications") as session:
            result = await session.execute(query)
            return [_to_notification(row) for row in result.scalars().all()]

    async def count_unread_notifications(self, principal_id: int) -> int:
        async with self._session("count_unread_notifications") as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationRow)
                .where(NotificationRow.user_id == principal_id, NotificationRow.is_read.is_(False))
            )
            return int(result.scalar_one())

    async def mark_notification_read(self, principal_id: int, notification_id: int) -> Notification | None:
        async with self._session("mark_notification_read") as session:
            row = await session.get(NotificationRow, notification_id)
            if row is None or row.user_id != principal_id:
                return None
            row.is_read = True
            await session.commit()
            return _to_notification(row)

    async def mark_all_notifications_read(self, principal_id: int) -> int:
        async with self._session("mark_all_notifications_read") as session:
            result = await session.execute(
                update(NotificationRow)
                .where(NotificationRow.user_id == principal_id, NotificationRow.is_read.is_(False))
                .values(is_read=True)
            )
            await session.commit()
            return result.rowcount

    async def delete_notification(self, principal_id: int, notification_id: int) -> bool:
        async with self._session("delete_notification") as session:
            result = await session.execute(
                delete(NotificationRow).where(
                    NotificationRow.id == notification_id, NotificationRow.user_id == principal_id
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def list_room_participants(self, room: Room) -> list[int]:
        async with self._session("list_room_participants") as session:
            if room.kind is RoomKind.USER:
                return [room.key] if await session.get(UserRow, room.key) is not None else []
            if room.kind is RoomKind.CONVERSATION:
                result = await session.execute(
                    select(ConversationParticipantRow.user_id)
                    .where(ConversationParticipantRow.conversation_id == room.key)
                    .order_by(ConversationParticipantRow.user_id)
                )
                return list(result.scalars().all())
            if room.kind is RoomKind.PROJECT:
                project = await session.get(ProjectRow, room.key)
                return [project.owner_id] if project is not None else []
            task = await session.get(TaskRow, room.key)
            if task is None:
                return []
            result = await session.execute(select(TaskWatcherRow.user_id).where(TaskWatcherRow.task_id == room.key))
            members = {task.creator_id, *result.scalars().all()}
            if task.assignee_id is not None:
                members.add(task.assignee_id)
            return sorted(members)

    async def list_active_principal_ids(self) -> list[int]:
        async with self._session("list_active_principal_ids") as session:
            result = await session.execute(select(UserRow.id).where(UserRow.is_active.is_(True)).order_by(UserRow.id))
            return list(result.scalars().all())

    async def close(self) -> None:
        await self._database.close()
