"""
Session and presence tracking.

PresenceRegistry is the in-process record of which principal owns which
live connection and which rooms each connection has joined. It is
constructed by the application container and injected; there is no module
state. PresenceService layers the persistence and broadcast side effects of
connect, disconnect and status changes on top of it.

A principal is online while at least one of its connections is registered.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..exceptions import PersistenceUnavailableError
from ..persistence.timeouts import bounded
from ..structured_logging.enhanced_logging_config import get_logger
from .connection import Connection, ConnectionState
from .events import OutboundEvent, PresenceStatus, build_event
from .rooms import Room

if TYPE_CHECKING:
    from ..persistence.protocols import PersistenceGateway
    from .messaging.message_broadcaster import MessageBroadcaster

logger = get_logger(__name__)


@dataclass(frozen=True)
class DisconnectOutcome:
    connection: Connection
    rooms: frozenset[Room]
    went_offline: bool

    @property
    def principal_id(self) -> int:
        return self.connection.principal_id


class PresenceRegistry:
    """
    Connection ownership and room membership.

    Mutations are serialised by one asyncio.Lock. Read accessors return
    immutable snapshots, so a broadcast iterates the membership as it was at
    the moment it asked.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._connections: dict[str, Connection] = {}
        self._connection_rooms: dict[str, set[Room]] = {}
        self._room_members: dict[Room, set[str]] = {}
        self._principal_connections: dict[int, set[str]] = {}

    async def register(self, connection: Connection) -> bool:
        """
        Register an authenticated connection and join it to its personal room.

        Returns:
            bool: True if this is the principal's first live connection
        """
        personal = Room.for_user(connection.principal_id)
        async with self._lock:
            if connection.connection_id in self._connections:
                raise ValueError(f"Connection {connection.connection_id} already registered")
            owned = self._principal_connections.setdefault(connection.principal_id, set())
            first_connection = not owned
            owned.add(connection.connection_id)
            self._connections[connection.connection_id] = connection
            self._connection_rooms[connection.connection_id] = {personal}
            self._room_members.setdefault(personal, set()).add(connection.connection_id)
            connection.state = ConnectionState.AUTHENTICATED

        logger.info(
            "Connection registered",
            connection_id=connection.connection_id,
            principal_id=connection.principal_id,
            live_connections=len(owned),
        )
        return first_connection

    async def join(self, connection_id: str, room: Room) -> bool:
        """
        Record membership. The caller has already authorized the join.

        Returns:
            bool: False if the connection is not registered
        """
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            self._connection_rooms[connection_id].add(room)
            self._room_members.setdefault(room, set()).add(connection_id)
            if not room.is_personal:
                connection.state = ConnectionState.JOINED
        logger.debug("Connection joined room", connection_id=connection_id, room_id=str(room))
        return True

    async def leave(self, connection_id: str, room: Room) -> bool:
        """
        Drop membership. Leaving a room never joined is a no-op, and the
        personal room is only released by unregister().

        Returns:
            bool: True if a membership was removed
        """
        if room.is_personal:
            return False
        async with self._lock:
            rooms = self._connection_rooms.get(connection_id)
            if rooms is None or room not in rooms:
                return False
            rooms.discard(room)
            self._discard_member(room, connection_id)
            connection = self._connections[connection_id]
            if not any(not r.is_personal for r in rooms):
                connection.state = ConnectionState.AUTHENTICATED
        logger.debug("Connection left room", connection_id=connection_id, room_id=str(room))
        return True

    async def unregister(self, connection_id: str) -> DisconnectOutcome | None:
        """
        Remove a connection and every membership it held.

        Returns:
            DisconnectOutcome, or None if the connection was not registered
        """
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return None
            rooms = self._connection_rooms.pop(connection_id, set())
            for room in rooms:
                self._discard_member(room, connection_id)
            owned = self._principal_connections.get(connection.principal_id, set())
            owned.discard(connection_id)
            went_offline = not owned
            if went_offline:
                self._principal_connections.pop(connection.principal_id, None)
            connection.state = ConnectionState.DISCONNECTED

        logger.info(
            "Connection unregistered",
            connection_id=connection_id,
            principal_id=connection.principal_id,
            rooms_released=len(rooms),
            went_offline=went_offline,
        )
        return DisconnectOutcome(connection=connection, rooms=frozenset(rooms), went_offline=went_offline)

    def _discard_member(self, room: Room, connection_id: str) -> None:
        members = self._room_members.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._room_members[room]

    def get_connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def is_member(self, connection_id: str, room: Room) -> bool:
        return room in self._connection_rooms.get(connection_id, ())

    def room_members(self, room: Room) -> frozenset[str]:
        """Snapshot of connection ids currently joined to the room."""
        return frozenset(self._room_members.get(room, ()))

    def rooms_for(self, connection_id: str) -> frozenset[Room]:
        return frozenset(self._connection_rooms.get(connection_id, ()))

    def connections_for(self, principal_id: int) -> frozenset[str]:
        return frozenset(self._principal_connections.get(principal_id, ()))

    def is_online(self, principal_id: int) -> bool:
        """Whether the principal's personal room currently has a member."""
        return bool(self._room_members.get(Room.for_user(principal_id)))

    def all_connection_ids(self) -> frozenset[str]:
        return frozenset(self._connections)

    def online_principal_ids(self) -> frozenset[int]:
        return frozenset(self._principal_connections)

    def stats(self) -> dict[str, Any]:
        return {
            "connections": len(self._connections),
            "online_principals": len(self._principal_connections),
            "rooms": len(self._room_members),
        }


class PresenceService:
    """
    Connect/disconnect lifecycle with presence persistence and broadcast.

    Side effects for one principal run under that principal's lock, from the
    registry change through the presence write and the broadcast, so the last
    stored and announced state matches the registry.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        persistence: "PersistenceGateway",
        broadcaster: "MessageBroadcaster",
        persistence_timeout: float = 10.0,
    ) -> None:
        self.registry = registry
        self.persistence = persistence
        self.broadcaster = broadcaster
        self.persistence_timeout = persistence_timeout
        self._principal_locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    @asynccontextmanager
    async def _principal_lock(self, principal_id: int) -> AsyncIterator[None]:
        lock = self._principal_locks.setdefault(principal_id, asyncio.Lock())
        self._lock_users[principal_id] = self._lock_users.get(principal_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[principal_id] -= 1
            if not self._lock_users[principal_id]:
                del self._lock_users[principal_id]
                del self._principal_locks[principal_id]

    async def _persist_presence(self, principal_id: int, online: bool, stamp: datetime) -> bool:
        try:
            await bounded(
                self.persistence.update_principal_presence(principal_id, online, stamp),
                self.persistence_timeout,
                "update_principal_presence",
            )
        except PersistenceUnavailableError:
            logger.error("Presence update could not be persisted", principal_id=principal_id, online=online)
            return False
        return True

    async def _broadcast_presence(self, principal_id: int, status: PresenceStatus, stamp: datetime) -> dict[str, Any]:
        event = build_event(
            OutboundEvent.PRESENCE_CHANGED,
            {"principal_id": principal_id, "status": status.value, "last_seen_at": stamp.isoformat()},
            principal_id=principal_id,
        )
        return await self.broadcaster.broadcast_global(event, exclude_principal=principal_id)

    async def on_connect(self, connection: Connection) -> None:
        """Register, join the personal room, mark online and stamp last-seen."""
        async with self._principal_lock(connection.principal_id):
            first_connection = await self.registry.register(connection)
            stamp = datetime.now(UTC)
            await self._persist_presence(connection.principal_id, True, stamp)
            connection.principal = connection.principal.model_copy(update={"is_online": True, "last_seen_at": stamp})
            if first_connection:
                await self._broadcast_presence(connection.principal_id, PresenceStatus.ONLINE, stamp)

    async def on_disconnect(self, connection_id: str) -> DisconnectOutcome | None:
        """
        Release the connection. When it was the principal's last one, mark
        the principal offline, stamp last-seen and tell everyone else.
        """
        connection = self.registry.get_connection(connection_id)
        if connection is None:
            return None

        async with self._principal_lock(connection.principal_id):
            outcome = await self.registry.unregister(connection_id)
            if outcome is None or not outcome.went_offline:
                return outcome

            stamp = datetime.now(UTC)
            await self._persist_presence(outcome.principal_id, False, stamp)
            await self._broadcast_presence(outcome.principal_id, PresenceStatus.OFFLINE, stamp)
        return outcome

    async def set_status(self, principal_id: int, status: PresenceStatus) -> datetime:
        """
        Persist a client-reported status and broadcast it.

        Raises:
            PersistenceUnavailableError: If the status could not be stored
        """
        async with self._principal_lock(principal_id):
            stamp = datetime.now(UTC)
            await bounded(
                self.persistence.update_principal_presence(principal_id, status is not PresenceStatus.OFFLINE, stamp),
                self.persistence_timeout,
                "update_principal_presence",
            )
            await self._broadcast_presence(principal_id, status, stamp)
        return stamp
