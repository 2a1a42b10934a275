"""Presence tracking: who is online right now.

Presence is keyed by connection, not by identity, so one identity signed
in from two devices is listed once and stays online until its last
connection goes away. Every change is broadcast to all admitted
connections as a ``presence-update`` carrying the sorted list of distinct
identities.
"""
import logging
from typing import Dict, List

from .rooms import RoomRouter

logger = logging.getLogger(__name__)

PRESENCE_EVENT = "presence-update"


class PresenceTracker:
    """Owns the connection -> identity map for the whole process."""

    def __init__(self, rooms: RoomRouter) -> None:
        self._rooms = rooms
        self._online: Dict[str, str] = {}

    def online(self) -> List[str]:
        """Distinct identities currently connected, sorted."""
        return sorted(set(self._online.values()))

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._online

    async def register(self, connection_id: str, identity: str) -> List[str]:
        self._online[connection_id] = identity
        logger.info("[Presence] %s online via %s", identity, connection_id)
        return await self._publish()

    async def unregister(self, connection_id: str) -> List[str]:
        identity = self._online.pop(connection_id, None)
        if identity is None:
            return self.online()
        logger.info("[Presence] %s dropped connection %s", identity, connection_id)
        return await self._publish()

    async def _publish(self) -> List[str]:
        users = self.online()
        await self._rooms.emit_global(PRESENCE_EVENT, users)
        return users

    def clear(self) -> None:
        self._online.clear()
