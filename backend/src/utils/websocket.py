"""
WebSocket connection manager for per-user real-time delivery.

Each signed-in user has one channel. Two kinds of messages go out on it:
- live sync snapshots ({"type": "snapshot", "collection": ..., "items": [...]})
- local (in-browser) notifications raised by the push dispatcher when no
  provider delivery is possible ({"type": "local_notification", ...})

Usage:
    from backend.src.utils.websocket import get_connection_manager

    manager = get_connection_manager()

    # In WebSocket endpoint
    await manager.connect(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(user_id, websocket)

    # From services
    await manager.send_to_user(user_id, {"type": "local_notification", ...})
"""

import asyncio
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from backend.src.utils.logging_config import get_logger

logger = get_logger("sync")


class ConnectionManager:
    """
    Manages WebSocket connections keyed by user channel.

    Multiple connections per user are supported (several tabs). A failed
    send drops that connection and continues with the rest.
    """

    USER_CHANNEL_PREFIX = "__user_"

    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def user_channel(cls, user_id: int) -> str:
        return f"{cls.USER_CHANNEL_PREFIX}{user_id}__"

    async def connect(self, user_id: int, websocket: WebSocket) -> None:
        """
        Accept and register a WebSocket connection for a user.

        Args:
            user_id: Internal ID of the authenticated user
            websocket: WebSocket connection to register
        """
        await websocket.accept()
        channel = self.user_channel(user_id)
        async with self._lock:
            self._connections.setdefault(channel, set()).add(websocket)
            logger.debug(
                f"WebSocket registered for channel {channel}. "
                f"Total connections: {len(self._connections[channel])}"
            )

    def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        """
        Unregister a WebSocket connection.

        Synchronous so it can be called from exception handlers.
        """
        channel = self.user_channel(user_id)
        if channel in self._connections:
            self._connections[channel].discard(websocket)
            if not self._connections[channel]:
                del self._connections[channel]

    async def send_to_user(self, user_id: int, data: Dict[str, Any]) -> int:
        """
        Send a JSON message to every connection of a user.

        Args:
            user_id: Target user's internal ID
            data: JSON-serializable payload

        Returns:
            Number of connections the message was delivered to
        """
        channel = self.user_channel(user_id)
        if channel not in self._connections:
            return 0

        connections = self._connections[channel].copy()
        disconnected: Set[WebSocket] = set()
        delivered = 0

        for connection in connections:
            try:
                await connection.send_json(data)
                delivered += 1
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(user_id, conn)
        return delivered

    async def close_all_for_user(self, user_id: int, reason: str = "Signed out") -> None:
        """Close every connection of a user (on sign-out)."""
        channel = self.user_channel(user_id)
        connections = self._connections.pop(channel, set())
        for connection in connections:
            try:
                await connection.close(reason=reason)
            except RuntimeError:
                # Already closed by the client
                continue
        if connections:
            logger.debug(f"Closed {len(connections)} WebSocket connections for user {user_id}")


# Singleton instance
_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """
    Get the singleton ConnectionManager instance.

    Creates the instance on first call.
    """
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager
