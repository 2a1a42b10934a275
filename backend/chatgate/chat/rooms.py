"""WebSocket connection registry and room-scoped fan-out.

Every live connection gets a backend-generated connection id. An
authenticated connection belongs to exactly one room at a time; message
traffic is delivered only to the room it belongs to, while presence and
typing signals go to every admitted connection.

Frames are JSON objects of the form ``{"event": <name>, "data": <payload>}``.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent delivery
    - Connections whose send fails are dropped from the registry

Thread Safety:
    Designed for a single event loop. Registry mutations are synchronous,
    so they are atomic with respect to other coroutines.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from chatgate.messages.schemas import Room

logger = logging.getLogger(__name__)


class RoomRouter:
    """Tracks connections and their room membership.

    Attributes:
        connections: connection_id -> WebSocket for every live connection.
        rooms: room -> set of connection ids currently in it.
        membership: connection_id -> the room it is in.
    """

    def __init__(self) -> None:
        self.connections: Dict[str, WebSocket] = {}
        self.rooms: Dict[Room, Set[str]] = {room: set() for room in Room}
        self.membership: Dict[str, Room] = {}

    # =========================================================================
    # Connections
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket and return its backend-assigned connection id."""
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = websocket
        logger.info("[Rooms] Connection %s accepted (%d live)", connection_id, len(self.connections))
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """Forget a connection and its room membership."""
        self.leave(connection_id)
        self.connections.pop(connection_id, None)
        logger.info("[Rooms] Connection %s removed (%d live)", connection_id, len(self.connections))

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.connections

    # =========================================================================
    # Membership
    # =========================================================================

    def join(self, connection_id: str, room: Room) -> None:
        """Place a connection in ``room``, leaving its previous room first."""
        if connection_id not in self.connections:
            return
        self.leave(connection_id)
        self.rooms[room].add(connection_id)
        self.membership[connection_id] = room

    def leave(self, connection_id: str) -> None:
        room = self.membership.pop(connection_id, None)
        if room is not None:
            self.rooms[room].discard(connection_id)

    def room_of(self, connection_id: str) -> Optional[Room]:
        return self.membership.get(connection_id)

    def members(self, room: Room) -> List[str]:
        return list(self.rooms[room])

    # =========================================================================
    # Delivery
    # =========================================================================

    async def emit_to(self, connection_id: str, event: str, data: Any = None) -> bool:
        """Send one event to a single connection.

        Returns:
            False if the connection is unknown or the send failed.
        """
        if connection_id not in self.connections:
            logger.debug("[Rooms] emit_to unknown connection %s dropped", connection_id)
            return False
        await self._deliver([connection_id], event, data)
        return connection_id in self.connections

    async def emit_to_room(self, room: Room, event: str, data: Any = None) -> None:
        """Send an event to every connection currently in ``room``."""
        await self._deliver(self.members(room), event, data)

    async def emit_global(self, event: str, data: Any = None) -> None:
        """Send an event to every connection in any room.

        Connections that have not been admitted to a room yet (still
        unauthenticated) are skipped.
        """
        await self._deliver(list(self.membership), event, data)

    async def emit_except(self, connection_id: str, event: str, data: Any = None) -> None:
        """Like ``emit_global`` but skipping ``connection_id``."""
        await self._deliver(
            [cid for cid in self.membership if cid != connection_id], event, data
        )

    async def _deliver(self, connection_ids: Iterable[str], event: str, data: Any) -> None:
        targets = [
            (cid, self.connections[cid]) for cid in connection_ids if cid in self.connections
        ]
        if not targets:
            return

        frame = {"event": event, "data": {} if data is None else data}
        results = await asyncio.gather(
            *[self._safe_send(ws, frame) for _, ws in targets],
            return_exceptions=True
        )

        failed = [cid for (cid, _), ok in zip(targets, results) if ok is not True]
        for cid in failed:
            logger.debug("[Rooms] Removed dead connection %s", cid)
            self.disconnect(cid)

    async def _safe_send(self, connection: WebSocket, frame: dict) -> bool:
        """Send a frame, reporting failure instead of raising."""
        try:
            await connection.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def clear(self) -> None:
        """Drop every connection. Used by tests."""
        self.connections.clear()
        self.membership.clear()
        for members in self.rooms.values():
            members.clear()
