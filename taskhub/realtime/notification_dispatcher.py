"""
Persist-then-push notification delivery.

Every notification is written through the persistence layer first,
regardless of whether the recipient is online. It is then pushed to the
recipient's personal room only if that room currently has a member. A failed
or skipped push is not retried; the stored record is the durable copy.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Literal

from ..models import Notification, NotificationType
from ..persistence.timeouts import bounded
from ..structured_logging.enhanced_logging_config import get_logger
from .events import OutboundEvent, build_event
from .rooms import Room

if TYPE_CHECKING:
    from ..persistence.protocols import PersistenceGateway
    from .messaging.message_broadcaster import MessageBroadcaster
    from .presence_registry import PresenceRegistry

logger = get_logger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        persistence: "PersistenceGateway",
        registry: "PresenceRegistry",
        broadcaster: "MessageBroadcaster",
        persistence_timeout: float = 10.0,
    ) -> None:
        self.persistence = persistence
        self.registry = registry
        self.broadcaster = broadcaster
        self.persistence_timeout = persistence_timeout

    async def push(self, notification: Notification) -> bool:
        """
        Push a stored notification if the recipient is online.

        Returns:
            bool: True if at least one connection received it
        """
        if not self.registry.is_online(notification.principal_id):
            logger.debug(
                "Recipient offline, notification left in storage",
                principal_id=notification.principal_id,
                notification_id=notification.id,
            )
            return False

        room = Room.for_user(notification.principal_id)
        event = build_event(
            OutboundEvent.NOTIFICATION,
            notification.model_dump(mode="json"),
            room_id=str(room),
            principal_id=notification.principal_id,
        )
        stats = await self.broadcaster.broadcast_to_room(room, event)
        return stats["successful_deliveries"] > 0

    async def notify(
        self,
        principal_id: int,
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        """
        Store one notification, then push it if the principal is online.

        Raises:
            PersistenceUnavailableError: If the record could not be stored (nothing is pushed)
        """
        notification = await bounded(
            self.persistence.create_notification(principal_id, notification_type, title, content, data or {}),
            self.persistence_timeout,
            "create_notification",
        )
        await self.push(notification)
        return notification

    async def notify_many(
        self,
        principal_ids: Iterable[int],
        notification_type: NotificationType,
        title: str,
        content: str,
        data: dict[str, Any] | None = None,
    ) -> list[Notification]:
        """Bulk-store the same notification for many principals, then push individually."""
        recipients = list(dict.fromkeys(principal_ids))
        if not recipients:
            return []
        notifications = await bounded(
            self.persistence.create_notifications(recipients, notification_type, title, content, data or {}),
            self.persistence_timeout,
            "create_notifications",
        )
        pushed = 0
        for notification in notifications:
            if await self.push(notification):
                pushed += 1
        logger.info(
            "Notifications dispatched",
            notification_type=notification_type.value,
            stored=len(notifications),
            pushed=pushed,
        )
        return notifications

    async def broadcast_system_notification(
        self,
        target: Literal["all"] | list[int],
        title: str,
        content: str,
        created_by: int,
        notification_type: NotificationType = NotificationType.GENERAL_NOTIFICATION,
    ) -> list[Notification]:
        """Administrator broadcast to every active principal or an explicit list."""
        if target == "all":
            recipients = await bounded(
                self.persistence.list_active_principal_ids(),
                self.persistence_timeout,
                "list_active_principal_ids",
            )
        else:
            recipients = list(target)

        data = {"is_system_notification": True, "created_by": created_by}
        return await self.notify_many(recipients, notification_type, title, content, data)
