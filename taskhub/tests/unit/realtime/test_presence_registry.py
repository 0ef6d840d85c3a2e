"""
Tests for connection ownership, room membership and presence lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from taskhub.exceptions import PersistenceUnavailableError
from taskhub.models import Principal
from taskhub.realtime.connection import ConnectionState
from taskhub.realtime.events import PresenceStatus
from taskhub.realtime.presence_registry import PresenceRegistry
from taskhub.realtime.rooms import Room, RoomKind

from ...fixtures.realtime import ALICE, BOB, CAROL, make_connection

PROJECT = Room(RoomKind.PROJECT, 21)


def _principal(principal_id: int) -> Principal:
    return Principal(id=principal_id, username=f"user{principal_id}")


class TestPresenceRegistry:
    """Test the in-process registry."""

    @pytest.mark.asyncio
    async def test_register_joins_personal_room(self):
        """Test that registration joins the personal room and authenticates."""
        registry = PresenceRegistry()
        connection = make_connection(_principal(ALICE))

        assert await registry.register(connection) is True

        assert connection.state is ConnectionState.AUTHENTICATED
        assert registry.is_online(ALICE)
        assert registry.rooms_for(connection.connection_id) == {Room.for_user(ALICE)}

    @pytest.mark.asyncio
    async def test_second_connection_is_not_first(self):
        """Test that only the first connection of a principal is reported as first."""
        registry = PresenceRegistry()
        await registry.register(make_connection(_principal(ALICE)))
        assert await registry.register(make_connection(_principal(ALICE))) is False
        assert len(registry.connections_for(ALICE)) == 2

    @pytest.mark.asyncio
    async def test_duplicate_registration_rejected(self):
        """Test that a connection id cannot be registered twice."""
        registry = PresenceRegistry()
        connection = make_connection(_principal(ALICE))
        await registry.register(connection)
        with pytest.raises(ValueError):
            await registry.register(connection)

    @pytest.mark.asyncio
    async def test_join_and_leave_state_transitions(self):
        """Test AUTHENTICATED -> JOINED -> AUTHENTICATED as shared rooms come and go."""
        registry = PresenceRegistry()
        connection = make_connection(_principal(ALICE))
        await registry.register(connection)

        assert await registry.join(connection.connection_id, PROJECT) is True
        assert connection.state is ConnectionState.JOINED
        assert registry.room_members(PROJECT) == {connection.connection_id}

        assert await registry.leave(connection.connection_id, PROJECT) is True
        assert connection.state is ConnectionState.AUTHENTICATED
        assert registry.room_members(PROJECT) == frozenset()

    @pytest.mark.asyncio
    async def test_leave_unjoined_room_is_noop(self):
        """Test that leaving a room never joined changes nothing."""
        registry = PresenceRegistry()
        connection = make_connection(_principal(ALICE))
        await registry.register(connection)
        assert await registry.leave(connection.connection_id, PROJECT) is False

    @pytest.mark.asyncio
    async def test_personal_room_cannot_be_left(self):
        """Test that the personal room is only released by unregister."""
        registry = PresenceRegistry()
        connection = make_connection(_principal(ALICE))
        await registry.register(connection)
        assert await registry.leave(connection.connection_id, Room.for_user(ALICE)) is False
        assert registry.is_online(ALICE)

    @pytest.mark.asyncio
    async def test_join_unknown_connection(self):
        """Test that joining with an unregistered connection id fails."""
        assert await PresenceRegistry().join("nope", PROJECT) is False

    @pytest.mark.asyncio
    async def test_unregister_releases_every_room(self):
        """Test that unregister removes all memberships and marks the connection disconnected."""
        registry = PresenceRegistry()
        connection = make_connection(_principal(ALICE))
        await registry.register(connection)
        await registry.join(connection.connection_id, PROJECT)

        outcome = await registry.unregister(connection.connection_id)

        assert outcome is not None and outcome.went_offline is True
        assert outcome.rooms == {Room.for_user(ALICE), PROJECT}
        assert connection.state is ConnectionState.DISCONNECTED
        assert registry.room_members(PROJECT) == frozenset()
        assert not registry.is_online(ALICE)
        assert await registry.unregister(connection.connection_id) is None

    @pytest.mark.asyncio
    async def test_online_until_last_connection_closes(self):
        """Test that a principal stays online while any connection remains."""
        registry = PresenceRegistry()
        first = make_connection(_principal(ALICE))
        second = make_connection(_principal(ALICE))
        await registry.register(first)
        await registry.register(second)

        outcome = await registry.unregister(first.connection_id)
        assert outcome.went_offline is False
        assert registry.is_online(ALICE)

        outcome = await registry.unregister(second.connection_id)
        assert outcome.went_offline is True
        assert registry.online_principal_ids() == frozenset()

    @pytest.mark.asyncio
    async def test_snapshot_is_immutable(self):
        """Test that room_members returns a snapshot unaffected by later joins."""
        registry = PresenceRegistry()
        first = make_connection(_principal(ALICE))
        second = make_connection(_principal(BOB))
        await registry.register(first)
        await registry.register(second)
        await registry.join(first.connection_id, PROJECT)

        snapshot = registry.room_members(PROJECT)
        await registry.join(second.connection_id, PROJECT)

        assert snapshot == {first.connection_id}
        assert registry.stats() == {"connections": 2, "online_principals": 2, "rooms": 3}


class TestPresenceService:
    """Test connect/disconnect side effects."""

    @pytest.mark.asyncio
    async def test_connect_persists_online(self, realtime):
        """Test that connecting marks the principal online with a last-seen stamp."""
        principal = await realtime.store.find_principal_by_id(ALICE)
        connection = make_connection(principal)

        await realtime.presence.on_connect(connection)

        stored = await realtime.store.find_principal_by_id(ALICE)
        assert stored.is_online is True
        assert stored.last_seen_at is not None
        assert connection.principal.is_online is True

    @pytest.mark.asyncio
    async def test_first_connection_announces_online(self, realtime):
        """Test that others see presence-changed online only for the first connection."""
        watcher = make_connection(await realtime.store.find_principal_by_id(BOB))
        await realtime.presence.on_connect(watcher)

        await realtime.presence.on_connect(make_connection(await realtime.store.find_principal_by_id(ALICE)))
        await realtime.presence.on_connect(make_connection(await realtime.store.find_principal_by_id(ALICE)))

        announcements = watcher.transport.events("presence-changed")
        assert len(announcements) == 1
        assert announcements[0]["data"]["principal_id"] == ALICE
        assert announcements[0]["data"]["status"] == "online"

    @pytest.mark.asyncio
    async def test_sole_connection_disconnect_goes_offline(self, realtime):
        """Test that the last disconnect persists offline and broadcasts presence-changed."""
        watcher = make_connection(await realtime.store.find_principal_by_id(BOB))
        await realtime.presence.on_connect(watcher)
        leaving = make_connection(await realtime.store.find_principal_by_id(CAROL))
        await realtime.presence.on_connect(leaving)

        outcome = await realtime.presence.on_disconnect(leaving.connection_id)

        assert outcome.went_offline is True
        stored = await realtime.store.find_principal_by_id(CAROL)
        assert stored.is_online is False
        assert stored.last_seen_at is not None
        offline = [e for e in watcher.transport.events("presence-changed") if e["data"]["status"] == "offline"]
        assert len(offline) == 1
        assert offline[0]["data"]["principal_id"] == CAROL
        assert offline[0]["data"]["last_seen_at"] == stored.last_seen_at.isoformat()

    @pytest.mark.asyncio
    async def test_non_final_disconnect_keeps_online(self, realtime):
        """Test that closing one of two connections changes no presence."""
        watcher = make_connection(await realtime.store.find_principal_by_id(BOB))
        await realtime.presence.on_connect(watcher)
        first = make_connection(await realtime.store.find_principal_by_id(ALICE))
        second = make_connection(await realtime.store.find_principal_by_id(ALICE))
        await realtime.presence.on_connect(first)
        await realtime.presence.on_connect(second)

        await realtime.presence.on_disconnect(first.connection_id)

        assert (await realtime.store.find_principal_by_id(ALICE)).is_online is True
        assert all(e["data"]["status"] == "online" for e in watcher.transport.events("presence-changed"))

    @pytest.mark.asyncio
    async def test_disconnect_unknown_connection(self, realtime):
        """Test that disconnecting an unknown id is a no-op."""
        assert await realtime.presence.on_disconnect("unknown") is None

    @pytest.mark.asyncio
    async def test_presence_persistence_failure_does_not_block_disconnect(self, realtime):
        """Test that an unreachable store still lets the connection be released."""
        connection = make_connection(await realtime.store.find_principal_by_id(ALICE))
        await realtime.presence.on_connect(connection)
        realtime.store.update_principal_presence = AsyncMock(side_effect=PersistenceUnavailableError(operation="x"))

        outcome = await realtime.presence.on_disconnect(connection.connection_id)

        assert outcome.went_offline is True
        assert not realtime.registry.is_online(ALICE)

    @pytest.mark.asyncio
    async def test_set_status_persists_and_broadcasts(self, realtime):
        """Test that a reported status is stored and announced to others."""
        watcher = make_connection(await realtime.store.find_principal_by_id(BOB))
        await realtime.presence.on_connect(watcher)

        await realtime.presence.set_status(ALICE, PresenceStatus.AWAY)

        assert watcher.transport.events("presence-changed")[-1]["data"]["status"] == "away"
        assert (await realtime.store.find_principal_by_id(ALICE)).is_online is True

    @pytest.mark.asyncio
    async def test_reconnect_during_offline_write_stays_online(self, realtime):
        """Test that a reconnect racing a slow offline write ends stored and announced online."""
        watcher = make_connection(await realtime.store.find_principal_by_id(BOB))
        await realtime.presence.on_connect(watcher)
        first = make_connection(await realtime.store.find_principal_by_id(ALICE))
        await realtime.presence.on_connect(first)

        store_presence = realtime.store.update_principal_presence
        offline_write_started = asyncio.Event()

        async def slow_offline(principal_id, online, last_seen_at):
            if not online:
                offline_write_started.set()
                await asyncio.sleep(0.05)
            await store_presence(principal_id, online, last_seen_at)

        realtime.store.update_principal_presence = slow_offline

        disconnect = asyncio.create_task(realtime.presence.on_disconnect(first.connection_id))
        await offline_write_started.wait()
        second = make_connection(await realtime.store.find_principal_by_id(ALICE))
        await realtime.presence.on_connect(second)
        await disconnect

        assert realtime.registry.is_online(ALICE)
        assert (await realtime.store.find_principal_by_id(ALICE)).is_online is True
        statuses = [e["data"]["status"] for e in watcher.transport.events("presence-changed")]
        assert statuses[-1] == "online"
