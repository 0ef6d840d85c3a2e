"""
Real-time event routing.

EventRouter receives typed inbound events from one connection and applies
them: room joins are authorized against the persistence layer, while
messages and typing indicators are gated on the membership the presence
registry already recorded. Every failure is answered with an `error` event
on the originating connection only; the connection stays open.

Handling is serialised per connection, so two events from one connection
never interleave their membership check and broadcast.
"""

from typing import TYPE_CHECKING, Any

from ..error_types import ErrorMessages, ErrorType, create_websocket_error_response
from ..exceptions import (
    ErrorContext,
    EventValidationError,
    PersistenceUnavailableError,
    RoomAccessDeniedError,
    TaskHubError,
)
from ..models import Message, NotificationType, Principal
from ..persistence.timeouts import bounded
from ..structured_logging.enhanced_logging_config import get_logger
from .connection import Connection, ConnectionState
from .events import (
    InboundEvent,
    JoinRoomEvent,
    LeaveRoomEvent,
    OutboundEvent,
    SendMessageEvent,
    TaskUpdateEvent,
    TypingStartEvent,
    TypingStopEvent,
    UpdatePresenceEvent,
    build_event,
)
from .rooms import Room, RoomKind

if TYPE_CHECKING:
    from ..persistence.protocols import PersistenceGateway
    from .messaging.message_broadcaster import MessageBroadcaster
    from .notification_dispatcher import NotificationDispatcher
    from .presence_registry import PresenceRegistry, PresenceService

logger = get_logger(__name__)


class EventRouter:
    """Applies inbound events for authenticated connections."""

    def __init__(
        self,
        registry: "PresenceRegistry",
        presence_service: "PresenceService",
        persistence: "PersistenceGateway",
        broadcaster: "MessageBroadcaster",
        dispatcher: "NotificationDispatcher",
        persistence_timeout: float = 10.0,
    ) -> None:
        self.registry = registry
        self.presence_service = presence_service
        self.persistence = persistence
        self.broadcaster = broadcaster
        self.dispatcher = dispatcher
        self.persistence_timeout = persistence_timeout

    async def dispatch(self, connection: Connection, event: InboundEvent) -> None:
        """Handle one event under the connection's dispatch lock."""
        async with connection.dispatch_lock:
            if connection.state in (ConnectionState.CONNECTING, ConnectionState.DISCONNECTED):
                logger.debug(
                    "Event dropped for inactive connection",
                    connection_id=connection.connection_id,
                    state=connection.state.value,
                )
                return
            try:
                await self._route(connection, event)
            except TaskHubError as e:
                await self.send_error(connection, e, event_kind=event.type)

    async def _route(self, connection: Connection, event: InboundEvent) -> None:
        match event:
            case JoinRoomEvent():
                await self.handle_join_room(connection, event.data.room)
            case LeaveRoomEvent():
                await self.handle_leave_room(connection, event.data.room)
            case SendMessageEvent():
                await self.handle_send_message(connection, event)
            case TypingStartEvent():
                await self.handle_typing(connection, event.data.room, is_typing=True)
            case TypingStopEvent():
                await self.handle_typing(connection, event.data.room, is_typing=False)
            case UpdatePresenceEvent():
                await self.presence_service.set_status(connection.principal_id, event.data.status)
            case TaskUpdateEvent():
                await self.handle_task_update(connection, event.data.task_id, event.data.updates)

    async def send_error(
        self,
        connection: Connection,
        error: TaskHubError,
        event_kind: str | None = None,
    ) -> None:
        details = dict(error.details)
        details["retryable"] = error.retryable
        if event_kind is not None:
            details["event"] = event_kind
        await self.send_error_payload(
            connection, error.error_type, error.message, user_friendly=error.user_friendly, details=details
        )

    async def send_error_payload(
        self,
        connection: Connection,
        error_type: ErrorType,
        message: str,
        user_friendly: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        event = build_event(
            OutboundEvent.ERROR,
            create_websocket_error_response(error_type, message, user_friendly, details),
            principal_id=connection.principal_id,
        )
        try:
            await connection.send(event)
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Reason: the client may already be gone; the error event is best-effort
            logger.warning(
                "Could not deliver error event",
                connection_id=connection.connection_id,
                error_type=error_type.value,
                error=str(e),
            )

    def _context(self, connection: Connection, room: Room | None = None) -> ErrorContext:
        return ErrorContext(
            user_id=connection.principal_id,
            room_id=str(room) if room is not None else None,
            connection_id=connection.connection_id,
        )

    async def handle_join_room(self, connection: Connection, room: Room) -> None:
        principal_id = connection.principal_id
        if room.is_personal and room.key != principal_id:
            allowed = False
        else:
            allowed = await bounded(
                self.persistence.is_room_member(principal_id, room), self.persistence_timeout, "is_room_member"
            )

        if not allowed:
            raise RoomAccessDeniedError(room_id=str(room), context=self._context(connection, room))

        await self.registry.join(connection.connection_id, room)
        await connection.send(
            build_event(
                OutboundEvent.JOINED_ROOM,
                {"room_id": str(room), "kind": room.kind.value},
                room_id=str(room),
                principal_id=principal_id,
            )
        )
        logger.info("Room joined", connection_id=connection.connection_id, principal_id=principal_id, room_id=str(room))

    async def handle_leave_room(self, connection: Connection, room: Room) -> None:
        removed = await self.registry.leave(connection.connection_id, room)
        await connection.send(
            build_event(
                OutboundEvent.LEFT_ROOM,
                {"room_id": str(room), "was_member": removed},
                room_id=str(room),
                principal_id=connection.principal_id,
            )
        )

    async def handle_send_message(self, connection: Connection, event: SendMessageEvent) -> Message:
        """
        Persist a message, fan it out, then notify the other participants.

        Nothing is broadcast unless the message was stored.
        """
        data = event.data
        room = data.room
        sender = connection.principal

        if room.kind is not RoomKind.CONVERSATION:
            raise EventValidationError(
                "Messages can only be sent to conversation rooms",
                field="data.room_id",
                context=self._context(connection, room),
            )
        if not self.registry.is_member(connection.connection_id, room):
            raise RoomAccessDeniedError(
                ErrorMessages.NOT_AUTHORIZED_TO_SEND, room_id=str(room), context=self._context(connection, room)
            )

        message = await bounded(
            self.persistence.create_message(
                room, sender.id, data.content, data.message_type, list(data.mentions), data.parent_id
            ),
            self.persistence_timeout,
            "create_message",
        )

        outbound = build_event(
            OutboundEvent.NEW_MESSAGE,
            message.model_dump(mode="json"),
            room_id=str(room),
            principal_id=sender.id,
        )
        stats = await self.broadcaster.broadcast_to_room(
            room, outbound, include_connections=self.registry.connections_for(sender.id)
        )
        logger.info(
            "Message delivered",
            message_id=message.id,
            room_id=str(room),
            sender_id=sender.id,
            recipients=stats["total_targets"],
        )

        try:
            await self._notify_participants(sender, room, message)
        except PersistenceUnavailableError:
            logger.error("Message notifications could not be stored", message_id=message.id, room_id=str(room))
        return message

    async def _notify_participants(self, sender: Principal, room: Room, message: Message) -> None:
        participants = await bounded(
            self.persistence.list_room_participants(room), self.persistence_timeout, "list_room_participants"
        )
        recipients = [principal_id for principal_id in participants if principal_id != sender.id]
        data = {"conversation_id": room.key, "message_id": message.id}

        if recipients:
            await self.dispatcher.notify_many(
                recipients,
                NotificationType.MESSAGE_RECEIVED,
                "New Message",
                f"{sender.display_name} sent you a message",
                data,
            )

        mentioned = [principal_id for principal_id in dict.fromkeys(message.mentions) if principal_id != sender.id]
        if mentioned:
            await self.dispatcher.notify_many(
                mentioned,
                NotificationType.TASK_MENTIONED,
                "You were mentioned",
                f"{sender.display_name} mentioned you in a message",
                data,
            )

    async def handle_typing(self, connection: Connection, room: Room, is_typing: bool) -> None:
        """Relay a typing indicator to the room. Never stored."""
        if not self.registry.is_member(connection.connection_id, room):
            raise RoomAccessDeniedError(
                ErrorMessages.NOT_A_ROOM_MEMBER, room_id=str(room), context=self._context(connection, room)
            )
        principal_id = connection.principal_id
        await self.broadcaster.broadcast_to_room(
            room,
            build_event(
                OutboundEvent.TYPING_INDICATOR,
                {"principal_id": principal_id, "room_id": str(room), "is_typing": is_typing},
                room_id=str(room),
                principal_id=principal_id,
            ),
            exclude_connections=self.registry.connections_for(principal_id),
        )

    async def handle_task_update(self, connection: Connection, task_id: int, updates: dict[str, Any]) -> None:
        """
        Relay a task change to the task room.

        The durable write has already happened through the CRUD API; this is
        a notification-only side channel.
        """
        principal_id = connection.principal_id
        room = Room(RoomKind.TASK, task_id)
        allowed = await bounded(
            self.persistence.can_update_task(principal_id, task_id), self.persistence_timeout, "can_update_task"
        )
        if not allowed:
            raise RoomAccessDeniedError(
                ErrorMessages.NOT_AUTHORIZED_TO_UPDATE_TASK,
                room_id=str(room),
                context=self._context(connection, room),
            )
        await self.broadcaster.broadcast_to_room(
            room,
            build_event(
                OutboundEvent.TASK_UPDATED,
                {"task_id": task_id, "updates": updates, "updated_by": principal_id},
                room_id=str(room),
                principal_id=principal_id,
            ),
        )
