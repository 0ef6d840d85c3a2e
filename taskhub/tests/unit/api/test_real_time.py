"""
Tests for the WebSocket event channel and the connection info endpoint.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from taskhub.app.factory import create_app
from taskhub.container import ApplicationContainer

from ...fixtures.realtime import ADMIN, ALICE, BOB, CONVERSATION_AB, DAVE, PRIVATE_PROJECT


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _receive_until(websocket, event_type: str) -> dict:
    while True:
        frame = websocket.receive_json()
        if frame["event_type"] == event_type:
            return frame


class TestHandshake:
    """Test authentication at the WebSocket handshake."""

    def test_query_token_welcome(self, client, token_for):
        """Test that a valid token receives a welcome event with the principal."""
        with client.websocket_connect(f"/api/ws?token={token_for(ALICE)}") as websocket:
            welcome = websocket.receive_json()

        assert welcome["event_type"] == "welcome"
        assert welcome["data"]["principal"]["id"] == ALICE
        assert welcome["data"]["connection_id"]

    def test_header_token(self, client, token_for):
        """Test that the Authorization header is accepted at handshake."""
        with client.websocket_connect("/api/ws", headers=_bearer(token_for(ALICE))) as websocket:
            assert websocket.receive_json()["event_type"] == "welcome"

    def test_subprotocol_token(self, client, token_for):
        """Test that the bearer subprotocol pair is accepted and echoed."""
        with client.websocket_connect("/api/ws", subprotocols=["bearer", token_for(ALICE)]) as websocket:
            assert websocket.accepted_subprotocol == "bearer"
            assert websocket.receive_json()["event_type"] == "welcome"

    def test_missing_token_closes_4401(self, client):
        """Test that a handshake without a credential is closed unauthorized."""
        with client.websocket_connect("/api/ws") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_json()
        assert exc_info.value.code == 4401

    def test_invalid_token_closes_4401(self, client):
        """Test that a bad credential is closed unauthorized and creates no connection."""
        with client.websocket_connect("/api/ws?token=garbage") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_json()
        assert exc_info.value.code == 4401
        assert exc_info.value.reason == "unauthorized"

    def test_inactive_principal_closes_4403(self, client, container, token_for):
        """Test that a deactivated principal is closed forbidden."""
        with client.websocket_connect(f"/api/ws?token={token_for(DAVE)}") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_json()
        assert exc_info.value.code == 4403
        assert container.presence_registry.stats()["connections"] == 0

    def test_uninitialized_service_closes_1013(self, app_config):
        """Test that the channel refuses connections before startup completes."""
        client = TestClient(create_app(ApplicationContainer(config=app_config)))
        with client.websocket_connect("/api/ws?token=anything") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_json()
        assert exc_info.value.code == 1013


class TestSession:
    """Test a live session end to end."""

    def test_join_and_send(self, client, container, token_for):
        """Test joining a conversation and sending a message over the socket."""
        room_id = f"conversation:{CONVERSATION_AB}"
        with (
            client.websocket_connect(f"/api/ws?token={token_for(ALICE)}") as alice,
            client.websocket_connect(f"/api/ws?token={token_for(BOB)}") as bob,
        ):
            alice.receive_json()
            bob.receive_json()
            alice.send_json({"type": "join-room", "data": {"room_id": room_id}})
            assert _receive_until(alice, "joined-room")["data"]["room_id"] == room_id

            alice.send_json({"type": "send-message", "data": {"room_id": room_id, "content": "hello"}})
            message = _receive_until(alice, "new-message")
            notification = _receive_until(bob, "notification")

        assert message["data"]["content"] == "hello"
        assert container.persistence.messages[0].content == "hello"
        assert notification["data"]["type"] == "MESSAGE_RECEIVED"
        assert container.persistence.notifications_for(BOB)[0].id == notification["data"]["id"]

    def test_denied_join_keeps_connection_open(self, client, token_for):
        """Test that an error event is sent and the session continues."""
        with client.websocket_connect(f"/api/ws?token={token_for(BOB)}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "join-room", "data": {"room_id": f"project:{PRIVATE_PROJECT}"}})
            error = _receive_until(websocket, "error")
            assert error["data"]["error_type"] == "room_access_denied"

            websocket.send_json({"type": "join-room", "data": {"room_id": f"conversation:{CONVERSATION_AB}"}})
            assert _receive_until(websocket, "joined-room")["data"]["kind"] == "conversation"

    def test_malformed_frame_answered_with_error(self, client, token_for):
        """Test that undecodable and unknown frames yield error events."""
        with client.websocket_connect(f"/api/ws?token={token_for(ALICE)}") as websocket:
            websocket.receive_json()
            websocket.send_text("{not json")
            assert _receive_until(websocket, "error")["data"]["error_type"] == "invalid_format"

            websocket.send_json({"type": "launch-rockets", "data": {}})
            assert _receive_until(websocket, "error")["data"]["error_type"] == "validation_failed"

    def test_binary_frames(self, client, token_for):
        """Test that UTF-8 binary frames are handled and other bytes get an error without ending the session."""
        room_id = f"conversation:{CONVERSATION_AB}"
        with client.websocket_connect(f"/api/ws?token={token_for(ALICE)}") as websocket:
            websocket.receive_json()
            websocket.send_bytes(b"\xff\xfe\x00")
            error = _receive_until(websocket, "error")
            assert error["data"]["error_type"] == "invalid_format"

            websocket.send_bytes(f'{{"type": "join-room", "data": {{"room_id": "{room_id}"}}}}'.encode())
            assert _receive_until(websocket, "joined-room")["data"]["room_id"] == room_id

    def test_rate_limit(self, client, container, token_for):
        """Test that frames over the per-connection limit are refused with a retryable error."""
        container.rate_limiter.max_messages_per_minute = 1
        with client.websocket_connect(f"/api/ws?token={token_for(ALICE)}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "update-presence", "data": {"status": "away"}})
            websocket.send_json({"type": "update-presence", "data": {"status": "online"}})
            error = _receive_until(websocket, "error")

        assert error["data"]["error_type"] == "rate_limit_exceeded"
        assert error["data"]["details"]["retryable"] is True

    def test_disconnect_marks_offline(self, client, container, token_for):
        """Test that closing the only socket releases the connection."""
        with client.websocket_connect(f"/api/ws?token={token_for(ALICE)}") as websocket:
            websocket.receive_json()
            assert container.presence_registry.is_online(ALICE)

        assert not container.presence_registry.is_online(ALICE)


class TestConnectionInfo:
    """Test GET /api/connections/{user_id}."""

    def test_owner_sees_live_connection(self, client, token_for):
        """Test that a principal sees their own connection and rooms."""
        token = token_for(ALICE)
        with client.websocket_connect(f"/api/ws?token={token}") as websocket:
            websocket.receive_json()
            response = client.get(f"/api/connections/{ALICE}", headers=_bearer(token))

        body = response.json()
        assert response.status_code == 200
        assert body["online"] is True
        assert body["connections"][0]["rooms"] == [f"user:{ALICE}"]
        assert body["connections"][0]["state"] == "authenticated"

    def test_other_principal_forbidden(self, client, token_for):
        """Test that a member cannot inspect someone else's connections."""
        response = client.get(f"/api/connections/{BOB}", headers=_bearer(token_for(ALICE)))
        assert response.status_code == 403
        assert response.json()["error"]["type"] == "authorization_denied"

    def test_admin_may_inspect_anyone(self, client, token_for):
        """Test that administrators bypass the ownership check."""
        response = client.get(f"/api/connections/{BOB}", headers=_bearer(token_for(ADMIN)))
        assert response.status_code == 200
        assert response.json() == {"user_id": BOB, "online": False, "connections": []}


class TestHealth:
    """Test GET /api/health."""

    def test_healthy_after_startup(self, client):
        """Test that the health endpoint reports the wired services."""
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["persistence"] == "InMemoryPersistence"
        assert body["realtime"]["connections"] == 0
        assert body["tasks"]["active_tasks"] == 1
