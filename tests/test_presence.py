from __future__ import annotations

import asyncio

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from towdesk.main import app
from towdesk.presence import PresenceChannel, PresenceRoster
from towdesk.security import create_access_token


def test_roster_keeps_user_until_last_connection_released():
    roster = PresenceRoster()
    roster.track("u1", "Maya")
    roster.track("u1", "Maya")
    roster.track("u2", "")
    assert roster.count() == 2
    assert {entry["name"] for entry in roster.snapshot()} == {"Maya", "Unknown"}

    roster.release("u1")
    assert roster.count() == 2
    roster.release("u1")
    assert [entry["user_id"] for entry in roster.snapshot()] == ["u2"]

    roster.untrack("u2")
    assert roster.count() == 0


def test_socket_syncs_roster(client: TestClient, employee):
    token = create_access_token(employee.user_id, employee.role)
    with client.websocket_connect(f"/presence/ws?token={token}") as websocket:
        message = websocket.receive_json()
        assert message["event"] == "sync"
        assert message["online_count"] == 1
        assert message["online_users"][0]["name"] == "Eve Employee"

        resp = client.get("/presence", headers={"Authorization": f"Bearer {token}"})
        assert resp.json()["online_count"] == 1
    assert app.state.presence.roster.count() == 0


def test_socket_rejects_bad_token(client: TestClient):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/presence/ws?token=garbage") as websocket:
            websocket.receive_json()


def test_logout_drops_presence(client: TestClient, employee, employee_headers):
    app.state.presence.roster.track(employee.user_id, employee.name)
    assert client.post("/auth/logout", headers=employee_headers).status_code == 204
    assert app.state.presence.roster.count() == 0


def test_unexpected_frame_still_releases_presence(client: TestClient, employee):
    token = create_access_token(employee.user_id, employee.role)
    with client.websocket_connect(f"/presence/ws?token={token}") as websocket:
        websocket.receive_json()
        websocket.send_bytes(b"\x00\x01")
        websocket.send_text("ping")
    assert app.state.presence.roster.count() == 0


class _RecordingSocket:
    def __init__(self, channel=None):
        self.channel = channel
        self.messages = []

    async def send_json(self, message):
        self.messages.append(message)
        if self.channel is not None:
            # Leaves mid-broadcast, as a concurrent disconnect would.
            self.channel.active_connections.remove(self)


def test_broadcast_reaches_every_socket_when_list_changes():
    channel = PresenceChannel(PresenceRoster())
    leaving = _RecordingSocket(channel)
    staying = _RecordingSocket()
    channel.active_connections.extend([leaving, staying])

    asyncio.run(channel.broadcast())

    assert len(leaving.messages) == 1
    assert len(staying.messages) == 1
    assert channel.active_connections == [staying]
