"""
Concurrent fan-out of outbound events to live connections.

Targets are always a snapshot of connection ids taken from the presence
registry when the broadcast starts. Delivery is at-most-once: a failed send
is logged and counted, never retried and never raised to the caller.
"""

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from ...structured_logging.enhanced_logging_config import get_logger
from ..rooms import Room

if TYPE_CHECKING:
    from ..presence_registry import PresenceRegistry

logger = get_logger(__name__)


class MessageBroadcaster:
    """
    Broadcasts events to rooms, principals and every connected client.

    Each call returns delivery statistics:
    `total_targets`, `excluded`, `successful_deliveries`, `failed_deliveries`
    and per-connection `delivery_details`.
    """

    def __init__(self, registry: "PresenceRegistry") -> None:
        self.registry = registry

    async def send_to_connection(self, connection_id: str, event: dict[str, Any]) -> dict[str, Any]:
        connection = self.registry.get_connection(connection_id)
        if connection is None:
            return {"success": False, "error": "connection_not_found"}
        await connection.send(event)
        return {"success": True}

    async def deliver(
        self,
        connection_ids: Iterable[str],
        event: dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> dict[str, Any]:
        """Send one event to each distinct connection id once."""
        candidates = set(connection_ids)
        excluded = candidates.intersection(exclude)
        targets = sorted(candidates - excluded)

        stats: dict[str, Any] = {
            "event_type": event.get("event_type"),
            "total_targets": len(targets),
            "excluded": len(excluded),
            "successful_deliveries": 0,
            "failed_deliveries": 0,
            "delivery_details": {},
        }
        if not targets:
            return stats

        results = await asyncio.gather(
            *[self.send_to_connection(connection_id, event) for connection_id in targets],
            return_exceptions=True,
        )
        for connection_id, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Event delivery failed",
                    connection_id=connection_id,
                    event_type=event.get("event_type"),
                    error=str(result),
                    error_type=type(result).__name__,
                )
                stats["delivery_details"][connection_id] = {"success": False, "error": str(result)}
                stats["failed_deliveries"] += 1
                continue
            stats["delivery_details"][connection_id] = result
            if result["success"]:
                stats["successful_deliveries"] += 1
            else:
                stats["failed_deliveries"] += 1

        logger.debug(
            "Broadcast delivered",
            event_type=event.get("event_type"),
            total_targets=stats["total_targets"],
            failed=stats["failed_deliveries"],
        )
        return stats

    async def broadcast_to_room(
        self,
        room: Room,
        event: dict[str, Any],
        exclude_connections: Iterable[str] = (),
        include_connections: Iterable[str] = (),
    ) -> dict[str, Any]:
        """
        Deliver to every connection joined to `room`, plus any extra
        connections, minus the excluded ones. Duplicates collapse to one send.
        """
        targets = set(self.registry.room_members(room)).union(include_connections)
        stats = await self.deliver(targets, event, exclude=exclude_connections)
        stats["room_id"] = str(room)
        return stats

    async def send_to_principal(self, principal_id: int, event: dict[str, Any]) -> dict[str, Any]:
        """Deliver through the principal's personal room."""
        return await self.broadcast_to_room(Room.for_user(principal_id), event)

    async def broadcast_global(self, event: dict[str, Any], exclude_principal: int | None = None) -> dict[str, Any]:
        """Deliver to every live connection, optionally skipping one principal's connections."""
        exclude = self.registry.connections_for(exclude_principal) if exclude_principal is not None else frozenset()
        return await self.deliver(self.registry.all_connection_ids(), event, exclude=exclude)
