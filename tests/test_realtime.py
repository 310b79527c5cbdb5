from datetime import datetime, timedelta, timezone

import pytest
from starlette.websockets import WebSocketDisconnect

from careconnect.models.presence import ActiveSession

from .conftest import auth_headers


def presence_url(token):
    return f"/api/ws/presence?token={token}"


def heartbeat(user_id):
    return {"event": "practitioner:heartbeat", "data": {"userId": user_id}}


class TestPresenceSocket:

    def test_connect_without_token(self, client):
        """Test anonymous sockets are refused."""
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/ws/presence"):
                pass
        assert exc_info.value.code == 1008

    def test_connect_with_invalid_token(self, client):
        """Test sockets with a bad token are refused."""
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(presence_url("invalid_token")):
                pass
        assert exc_info.value.code == 1008

    def test_snapshot_on_connect(self, client, signup, login):
        """Test a new viewer immediately learns who is active."""
        signup("practitioner", "active@example.com")
        signup("practitioner", "idle@example.com")
        patient_token, _ = signup("patient")
        _, practitioner = login("active@example.com")

        with client.websocket_connect(presence_url(patient_token)) as websocket:
            message = websocket.receive_json()

        assert message["event"] == "practitioner:snapshot"
        [entry] = message["data"]["practitioners"]
        assert entry["userId"] == practitioner["id"]
        assert entry["isActive"] is True
        assert entry["lastActivity"]

    def test_practitioner_login_is_pushed(self, client, signup, broadcaster):
        """Test viewers are told when a practitioner signs in."""
        _, practitioner = signup("practitioner")
        patient_token, _ = signup("patient")

        with client.websocket_connect(presence_url(patient_token)) as websocket:
            assert websocket.receive_json()["data"]["practitioners"] == []

            client.post(
                "/api/auth/login",
                json={"email": "practitioner@example.com", "password": "TestPassword123"},
            )
            message = websocket.receive_json()

        assert message["event"] == "practitioner:status"
        assert message["data"]["userId"] == practitioner["id"]
        assert message["data"]["isActive"] is True
        assert message["data"]["practitioner"]["email"] == "practitioner@example.com"
        assert broadcaster.subscriber_count == 0

    def test_practitioner_logout_is_pushed(self, client, signup, login):
        """Test viewers are told when a practitioner signs out."""
        signup("practitioner")
        patient_token, _ = signup("patient")
        token, practitioner = login("practitioner@example.com")

        with client.websocket_connect(presence_url(patient_token)) as websocket:
            websocket.receive_json()
            client.post("/api/auth/logout", headers=auth_headers(token))
            message = websocket.receive_json()

        assert message["data"] == {
            "userId": practitioner["id"], "isActive": False, "lastActivity": None,
        }

    def test_heartbeat_over_socket(self, client, signup, db):
        """Test a practitioner can keep themselves active over the socket."""
        token, practitioner = signup("practitioner")

        with client.websocket_connect(presence_url(token)) as websocket:
            websocket.receive_json()
            websocket.send_json(heartbeat(practitioner["id"]))
            message = websocket.receive_json()

        assert message["event"] == "practitioner:status"
        assert message["data"]["userId"] == practitioner["id"]
        assert message["data"]["isActive"] is True
        assert "practitioner" not in message["data"]
        assert db.query(ActiveSession).filter(
            ActiveSession.user_id == practitioner["id"]
        ).count() == 1

    def test_heartbeat_for_someone_else_is_rejected(self, client, signup, db):
        """Test a connection cannot keep another user alive."""
        token, practitioner = signup("practitioner", "p1@example.com")
        _, other = signup("practitioner", "p2@example.com")

        with client.websocket_connect(presence_url(token)) as websocket:
            websocket.receive_json()
            websocket.send_json(heartbeat(other["id"]))
            message = websocket.receive_json()

        assert message["event"] == "error"
        assert message["data"]["error"] == "AUTHORIZATION_ERROR"
        assert db.query(ActiveSession).count() == 0

    def test_patient_heartbeat_is_rejected(self, client, signup):
        """Test only practitioners may send heartbeats."""
        token, patient = signup("patient")

        with client.websocket_connect(presence_url(token)) as websocket:
            websocket.receive_json()
            websocket.send_json(heartbeat(patient["id"]))
            message = websocket.receive_json()

        assert message["data"]["error"] == "AUTHORIZATION_ERROR"

    @pytest.mark.parametrize("payload", [
        "not json",
        '{"data": {}}',
        '{"event": "practitioner:dance", "data": {}}',
        '{"event": "practitioner:heartbeat", "data": {}}',
    ])
    def test_bad_messages_get_error_events(self, client, signup, payload):
        """Test malformed or unknown messages are answered, not fatal."""
        token, practitioner = signup("practitioner")

        with client.websocket_connect(presence_url(token)) as websocket:
            websocket.receive_json()
            websocket.send_text(payload)
            error = websocket.receive_json()

            # The connection stays usable
            websocket.send_json(heartbeat(practitioner["id"]))
            status = websocket.receive_json()

        assert error["event"] == "error"
        assert error["data"]["error"] == "VALIDATION_ERROR"
        assert status["event"] == "practitioner:status"

    def test_binary_message_gets_error_event(self, client, signup):
        """Test binary frames are answered and the connection stays open."""
        token, practitioner = signup("practitioner")

        with client.websocket_connect(presence_url(token)) as websocket:
            websocket.receive_json()
            websocket.send_bytes(b"\x00\x01")
            error = websocket.receive_json()

            websocket.send_json(heartbeat(practitioner["id"]))
            status = websocket.receive_json()

        assert error["event"] == "error"
        assert error["data"]["error"] == "VALIDATION_ERROR"
        assert status["event"] == "practitioner:status"

    def test_expired_token_closes_socket(self, client, signup, clock, db):
        """Test heartbeats stop counting once the session token has expired."""
        token, practitioner = signup("practitioner")

        with client.websocket_connect(presence_url(token)) as websocket:
            websocket.receive_json()

            clock.now = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=2)
            websocket.send_json(heartbeat(practitioner["id"]))
            error = websocket.receive_json()

            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_json()

        assert error["data"]["error"] == "AUTH_ERROR"
        assert exc_info.value.code == 1008
        assert db.query(ActiveSession).count() == 0
