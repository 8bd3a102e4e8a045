from __future__ import annotations

import datetime as dt
import logging
from threading import RLock
from typing import Dict, List

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class PresenceRoster:
    """Who is online right now, keyed by user id.

    A user may hold several connections; they stay online until the last one
    is released.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._entries: Dict[str, Dict[str, str]] = {}
        self._connections: Dict[str, int] = {}

    def track(self, user_id: str, name: str) -> None:
        with self._lock:
            if user_id not in self._entries:
                self._entries[user_id] = {
                    "user_id": user_id,
                    "name": name or "Unknown",
                    "online_at": dt.datetime.now(dt.timezone.utc).isoformat(),
                }
            self._connections[user_id] = self._connections.get(user_id, 0) + 1

    def release(self, user_id: str) -> None:
        with self._lock:
            remaining = self._connections.get(user_id, 0) - 1
            if remaining > 0:
                self._connections[user_id] = remaining
                return
            self._connections.pop(user_id, None)
            self._entries.pop(user_id, None)

    def untrack(self, user_id: str) -> None:
        with self._lock:
            self._connections.pop(user_id, None)
            self._entries.pop(user_id, None)

    def snapshot(self) -> List[Dict[str, str]]:
        with self._lock:
            entries = [dict(entry) for entry in self._entries.values()]
        return sorted(entries, key=lambda entry: entry["online_at"])

    def count(self) -> int:
        with self._lock:
            return len(self._entries)


class PresenceChannel:
    """Fan-out of roster updates to connected websockets."""

    def __init__(self, roster: PresenceRoster) -> None:
        self.roster = roster
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket, user_id: str, name: str) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        self.roster.track(user_id, name)
        await self.broadcast()

    async def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        self.roster.release(user_id)
        await self.broadcast()

    async def broadcast(self) -> None:
        message = {"event": "sync", "online_users": self.roster.snapshot(), "online_count": self.roster.count()}
        stale: List[WebSocket] = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                stale.append(connection)
        for connection in stale:
            logger.debug("Dropping stale presence connection")
            if connection in self.active_connections:
                self.active_connections.remove(connection)
