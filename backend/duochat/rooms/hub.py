"""Live connections and per-room subscriber lists.

Thread Safety:
    Designed for a single asyncio event loop. It is NOT thread-safe.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent delivery
    - Each send is bounded by ``send_timeout`` so one stalled socket
      cannot hold up a room
    - Failed connections are removed from the room during broadcast
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class Connection:
    """One client socket, possibly joined to several rooms.

    The first successful join binds ``account_id``; the connection may only
    act as that account afterwards.
    """

    def __init__(self, websocket: Any, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.id = connection_id or str(uuid.uuid4())
        self.account_id: Optional[str] = None
        self.rooms: Set[str] = set()

    async def send_json(self, message: dict) -> None:
        await self.websocket.send_json(message)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, account_id={self.account_id!r})"


class ConnectionHub:
    """Tracks which connections are subscribed to which rooms."""

    def __init__(self, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        # room_id -> subscribed connections, in subscription order
        self.subscribers: Dict[str, List[Connection]] = {}

    def subscribe(self, room_id: str, connection: Connection) -> None:
        """Subscribe ``connection`` to ``room_id``; no-op if already subscribed."""
        members = self.subscribers.setdefault(room_id, [])
        if connection not in members:
            members.append(connection)
        connection.rooms.add(room_id)

    def unsubscribe_all(self, connection: Connection) -> None:
        for room_id in list(connection.rooms):
            members = self.subscribers.get(room_id)
            if members and connection in members:
                members.remove(connection)
            if not members:
                self.subscribers.pop(room_id, None)
        connection.rooms.clear()

    def is_subscribed(self, room_id: str, connection: Connection) -> bool:
        return connection in self.subscribers.get(room_id, [])

    def get_room_size(self, room_id: str) -> int:
        """Get the number of live connections subscribed to a room."""
        return len(self.subscribers.get(room_id, []))

    async def send_to(self, connection: Connection, message: dict) -> bool:
        return await self._safe_send(connection, message)

    async def broadcast(self, message: dict, room_id: str) -> None:
        """Send ``message`` to every connection subscribed to ``room_id``."""
        await self._deliver(message, room_id, list(self.subscribers.get(room_id, [])))

    async def broadcast_except(
        self, message: dict, room_id: str, exclude: Connection
    ) -> None:
        """Broadcast to a room, skipping one connection (typing indicators)."""
        connections = [conn for conn in self.subscribers.get(room_id, []) if conn is not exclude]
        await self._deliver(message, room_id, connections)

    async def _deliver(self, message: dict, room_id: str, connections: List[Connection]) -> None:
        if not connections:
            return

        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        self._cleanup_connections(room_id, failed_connections)

    async def _safe_send(self, connection: Connection, message: dict) -> bool:
        """Send with a timeout. Returns False if the connection failed."""
        try:
            await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {connection.id}: {e!r}")
            return False

    def _cleanup_connections(self, room_id: str, failed_connections: List[Connection]) -> None:
        if not failed_connections or room_id not in self.subscribers:
            return

        for conn in failed_connections:
            if conn in self.subscribers[room_id]:
                self.subscribers[room_id].remove(conn)
                conn.rooms.discard(room_id)
                logger.debug(f"Removed dead connection {conn.id} from room {room_id}")
        if not self.subscribers[room_id]:
            self.subscribers.pop(room_id, None)
