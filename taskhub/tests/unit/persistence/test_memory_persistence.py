"""
Tests for the in-memory persistence backend.
"""

from datetime import UTC, datetime

import pytest

from taskhub.exceptions import ResourceConflictError
from taskhub.models import MessageType, NotificationType
from taskhub.realtime.rooms import Room, RoomKind

from ...fixtures.realtime import (
    ALICE,
    BOB,
    CAROL,
    CONVERSATION_AB,
    DAVE,
    PRIVATE_PROJECT,
    PUBLIC_PROJECT,
    TASK,
)


class TestMembership:
    """Test room membership rules per room kind."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("principal_id", "room", "expected"),
        [
            (ALICE, Room(RoomKind.USER, ALICE), True),
            (ALICE, Room(RoomKind.USER, BOB), False),
            (BOB, Room(RoomKind.CONVERSATION, CONVERSATION_AB), True),
            (CAROL, Room(RoomKind.CONVERSATION, CONVERSATION_AB), False),
            (ALICE, Room(RoomKind.PROJECT, PRIVATE_PROJECT), True),
            (BOB, Room(RoomKind.PROJECT, PRIVATE_PROJECT), False),
            (BOB, Room(RoomKind.PROJECT, PUBLIC_PROJECT), True),
            (CAROL, Room(RoomKind.TASK, TASK), True),
            (DAVE, Room(RoomKind.TASK, TASK), False),
            (ALICE, Room(RoomKind.CONVERSATION, 999), False),
        ],
    )
    async def test_is_room_member(self, store, principal_id, room, expected):
        """Test owner, participant, public and watcher membership."""
        assert await store.is_room_member(principal_id, room) is expected

    @pytest.mark.asyncio
    async def test_task_update_rights(self, store):
        """Test that creator and assignee may update a task but a watcher may not."""
        assert await store.can_update_task(ALICE, TASK) is True
        assert await store.can_update_task(BOB, TASK) is True
        assert await store.can_update_task(CAROL, TASK) is False
        assert await store.can_update_task(ALICE, 999) is False

    @pytest.mark.asyncio
    async def test_participants(self, store):
        """Test participant listing for conversations and tasks."""
        assert await store.list_room_participants(Room(RoomKind.CONVERSATION, CONVERSATION_AB)) == [ALICE, BOB]
        assert await store.list_room_participants(Room(RoomKind.TASK, TASK)) == [ALICE, BOB, CAROL]
        assert await store.list_room_participants(Room(RoomKind.TASK, 999)) == []


class TestRecords:
    """Test principal, message and notification records."""

    @pytest.mark.asyncio
    async def test_find_by_login_is_case_insensitive(self, store):
        """Test lookup by username or email regardless of case."""
        assert (await store.find_principal_by_login("ALICE")).id == ALICE
        assert (await store.find_principal_by_login("bob@example.com")).id == BOB
        assert await store.find_principal_by_login("nobody") is None

    @pytest.mark.asyncio
    async def test_returned_principal_is_a_copy(self, store):
        """Test that mutating a returned principal does not change the store."""
        principal = await store.find_principal_by_id(ALICE)
        principal.is_online = True
        assert (await store.find_principal_by_id(ALICE)).is_online is False

    @pytest.mark.asyncio
    async def test_presence_update(self, store):
        """Test that presence fields are persisted."""
        stamp = datetime.now(UTC)
        await store.update_principal_presence(ALICE, True, stamp)
        stored = await store.find_principal_by_id(ALICE)
        assert stored.is_online is True
        assert stored.last_seen_at == stamp

    @pytest.mark.asyncio
    async def test_create_message(self, store):
        """Test that messages get ids and a sender summary."""
        room = Room(RoomKind.CONVERSATION, CONVERSATION_AB)
        first = await store.create_message(room, ALICE, "one", MessageType.TEXT, [], None)
        second = await store.create_message(room, BOB, "two", MessageType.TEXT, [ALICE], first.id)

        assert second.id > first.id
        assert second.parent_id == first.id
        assert second.sender.first_name == "Bob"

    @pytest.mark.asyncio
    async def test_message_outside_conversation_rejected(self, store):
        """Test that only conversation rooms store messages."""
        with pytest.raises(ValueError):
            await store.create_message(Room(RoomKind.TASK, TASK), ALICE, "x", MessageType.TEXT, [], None)

    @pytest.mark.asyncio
    async def test_bulk_notifications(self, store):
        """Test that bulk creation stores one record per recipient."""
        created = await store.create_notifications(
            [ALICE, BOB], NotificationType.TASK_ASSIGNED, "t", "c", {"task_id": TASK}
        )
        assert [n.principal_id for n in created] == [ALICE, BOB]
        assert created[0].id != created[1].id
        assert store.notifications_for(BOB)[0].data == {"task_id": TASK}

    @pytest.mark.asyncio
    async def test_active_principals(self, store):
        """Test that deactivated principals are excluded."""
        assert DAVE not in await store.list_active_principal_ids()


class TestAccounts:
    """Test principal creation and password replacement."""

    @pytest.mark.asyncio
    async def test_create_principal(self, store):
        """Test that a new principal gets a fresh id and is found by login."""
        principal = await store.create_principal("erin", "erin@example.com", "hash", last_name="Example")
        assert principal.id > DAVE
        assert principal.is_active is True
        assert (await store.find_principal_by_login("Erin")).id == principal.id

    @pytest.mark.asyncio
    async def test_create_principal_conflicts(self, store):
        """Test case-insensitive username and email conflicts."""
        with pytest.raises(ResourceConflictError) as exc_info:
            await store.create_principal("BOB", "someone@example.com", "hash")
        assert exc_info.value.details["field"] == "username"

        with pytest.raises(ResourceConflictError) as exc_info:
            await store.create_principal("someone", "Bob@Example.com", "hash")
        assert exc_info.value.details["field"] == "email"

    @pytest.mark.asyncio
    async def test_update_password(self, store):
        """Test that the hash is replaced and unknown ids report False."""
        assert await store.update_principal_password(ALICE, "new-hash") is True
        assert (await store.find_principal_by_id(ALICE)).password_hash == "new-hash"
        assert await store.update_principal_password(999, "new-hash") is False


class TestInbox:
    """Test notification listing and read state."""

    @pytest.mark.asyncio
    async def test_listing_and_read_state(self, store):
        """Test ordering, paging, the unread filter and ownership checks."""
        created = [
            await store.create_notification(ALICE, NotificationType.GENERAL_NOTIFICATION, title, "c", {})
            for title in ("first", "second", "third")
        ]
        await store.create_notification(BOB, NotificationType.GENERAL_NOTIFICATION, "bob only", "c", {})

        assert [n.title for n in await store.list_notifications(ALICE, limit=10)] == ["third", "second", "first"]
        assert [n.title for n in await store.list_notifications(ALICE, limit=1, offset=1)] == ["second"]

        assert await store.mark_notification_read(BOB, created[2].id) is None
        assert (await store.mark_notification_read(ALICE, created[2].id)).is_read is True
        assert await store.count_unread_notifications(ALICE) == 2
        unread = await store.list_notifications(ALICE, limit=10, unread_only=True)
        assert [n.title for n in unread] == ["second", "first"]

        assert await store.mark_all_notifications_read(ALICE) == 2
        assert await store.count_unread_notifications(ALICE) == 0
        assert await store.count_unread_notifications(BOB) == 1

    @pytest.mark.asyncio
    async def test_delete_is_owner_only(self, store):
        """Test that a principal can only delete their own notifications."""
        notification = await store.create_notification(ALICE, NotificationType.GENERAL_NOTIFICATION, "t", "c", {})
        assert await store.delete_notification(BOB, notification.id) is False
        assert await store.delete_notification(ALICE, notification.id) is True
        assert store.notifications_for(ALICE) == []
