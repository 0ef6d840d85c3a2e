"""
Tests for the notification inbox and the administrator system notification endpoints.
"""

import pytest

from ...fixtures.realtime import ADMIN, ALICE, BOB, CAROL

URL = "/api/notifications/system"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSystemNotification:
    """Test POST /api/notifications/system."""

    def test_admin_broadcast_to_all(self, client, container, token_for):
        """Test that an administrator reaches every active principal."""
        response = client.post(
            URL, json={"title": "Maintenance", "content": "Tonight"}, headers=_bearer(token_for(ADMIN))
        )

        assert response.status_code == 200
        assert response.json() == {"message": "System notification sent", "recipients": 4}
        stored = container.persistence.notifications
        assert {n.principal_id for n in stored} == {ALICE, BOB, CAROL, ADMIN}
        assert stored[0].data["created_by"] == ADMIN

    def test_admin_broadcast_to_list(self, client, token_for):
        """Test that an explicit target list limits the recipients."""
        response = client.post(
            URL,
            json={"title": "Hi", "content": "Just you two", "target": [BOB, CAROL], "type": "TASK_DUE_SOON"},
            headers=_bearer(token_for(ADMIN)),
        )
        assert response.json()["recipients"] == 2

    def test_member_forbidden(self, client, container, token_for):
        """Test that a non-admin is refused with authorization_denied and nothing is stored."""
        response = client.post(URL, json={"title": "Hi", "content": "x"}, headers=_bearer(token_for(ALICE)))

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["type"] == "authorization_denied"
        assert error["details"]["required"] == ["ADMIN"]
        assert container.persistence.notifications == []

    def test_unauthenticated(self, client):
        """Test that the endpoint requires a credential."""
        assert client.post(URL, json={"title": "Hi", "content": "x"}).status_code == 401

    def test_empty_target_list_rejected(self, client, token_for):
        """Test body validation of the target list."""
        response = client.post(
            URL, json={"title": "Hi", "content": "x", "target": []}, headers=_bearer(token_for(ADMIN))
        )
        assert response.status_code == 422


INBOX = "/api/notifications"


@pytest.fixture
def inbox(client, token_for):
    """Three notifications queued for Alice while she is offline, one for Bob."""
    admin = _bearer(token_for(ADMIN))
    for title in ("first", "second", "third"):
        client.post(URL, json={"title": title, "content": "x", "target": [ALICE]}, headers=admin)
    client.post(URL, json={"title": "bob only", "content": "x", "target": [BOB]}, headers=admin)
    return _bearer(token_for(ALICE))


class TestNotificationInbox:
    """Test listing, reading and deleting one's own notifications."""

    def test_list_newest_first(self, client, inbox):
        """Test that notifications stored while offline are listed newest first with the unread count."""
        body = client.get(INBOX, headers=inbox).json()

        assert [n["title"] for n in body["notifications"]] == ["third", "second", "first"]
        assert all(n["principal_id"] == ALICE for n in body["notifications"])
        assert body["unread_count"] == 3
        assert body["pagination"] == {"page": 1, "limit": 20, "count": 3}

    def test_pagination(self, client, inbox):
        """Test page and limit."""
        body = client.get(INBOX, params={"page": 2, "limit": 2}, headers=inbox).json()

        assert [n["title"] for n in body["notifications"]] == ["first"]
        assert body["pagination"] == {"page": 2, "limit": 2, "count": 1}

    def test_limit_bounds(self, client, inbox):
        """Test query validation."""
        assert client.get(INBOX, params={"limit": 0}, headers=inbox).status_code == 422
        assert client.get(INBOX, params={"page": 0}, headers=inbox).status_code == 422

    def test_mark_one_read(self, client, inbox):
        """Test that a read notification drops out of the unread filter."""
        newest = client.get(INBOX, headers=inbox).json()["notifications"][0]

        response = client.patch(f"{INBOX}/{newest['id']}/read", headers=inbox)

        assert response.status_code == 200
        assert response.json()["is_read"] is True
        unread = client.get(INBOX, params={"unread_only": "true"}, headers=inbox).json()
        assert [n["title"] for n in unread["notifications"]] == ["second", "first"]
        assert unread["unread_count"] == 2

    def test_someone_elses_notification_not_found(self, client, container, inbox):
        """Test that another principal's notification cannot be touched."""
        [bobs] = container.persistence.notifications_for(BOB)

        response = client.patch(f"{INBOX}/{bobs.id}/read", headers=inbox)

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["type"] == "resource_not_found"
        assert error["details"] == {"resource_type": "notification", "resource_id": bobs.id}
        assert container.persistence.notifications_for(BOB)[0].is_read is False

    def test_mark_all_read(self, client, container, inbox):
        """Test that read-all only touches the caller's unread notifications."""
        first = client.patch(f"{INBOX}/read-all", headers=inbox).json()
        second = client.patch(f"{INBOX}/read-all", headers=inbox).json()

        assert first["updated"] == 3
        assert second["updated"] == 0
        assert client.get(INBOX, headers=inbox).json()["unread_count"] == 0
        assert container.persistence.notifications_for(BOB)[0].is_read is False

    def test_delete(self, client, inbox):
        """Test that a deleted notification is gone and a second delete is 404."""
        oldest = client.get(INBOX, headers=inbox).json()["notifications"][-1]

        assert client.delete(f"{INBOX}/{oldest['id']}", headers=inbox).status_code == 200
        assert client.delete(f"{INBOX}/{oldest['id']}", headers=inbox).status_code == 404
        assert [n["title"] for n in client.get(INBOX, headers=inbox).json()["notifications"]] == ["third", "second"]

    def test_requires_credential(self, client):
        """Test that the inbox is authenticated."""
        assert client.get(INBOX).status_code == 401
