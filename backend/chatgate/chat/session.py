"""Per-connection session state and the passcode gate.

A session starts unauthenticated. The only way out of that state is a
``join`` carrying the configured passcode; after that the session stays
authenticated until the connection closes. Every other operation checks
``session.authenticated`` first and silently does nothing when it is false.
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from chatgate.messages.lifecycle import MessageLifecycleManager
from chatgate.messages.schemas import DEFAULT_ROOM, JoinPayload, Room

from .presence import PresenceTracker
from .rooms import RoomRouter

logger = logging.getLogger(__name__)

ANONYMOUS = "Anonymous"


@dataclass
class Session:
    """Runtime state for one live connection. Never persisted."""
    connection_id: str
    username: Optional[str] = None
    room: Room = DEFAULT_ROOM

    @property
    def authenticated(self) -> bool:
        return self.username is not None


class SessionGate:
    """Checks the shared passcode and admits a session to the chat."""

    def __init__(
        self,
        rooms: RoomRouter,
        presence: PresenceTracker,
        lifecycle: MessageLifecycleManager,
        secret: Callable[[], str],
    ) -> None:
        self._rooms = rooms
        self._presence = presence
        self._lifecycle = lifecycle
        self._secret = secret

    def check(self, code: str) -> bool:
        return hmac.compare_digest(code.encode("utf-8"), self._secret().encode("utf-8"))

    async def authenticate(self, session: Session, payload: JoinPayload) -> bool:
        """Handle a ``join`` event.

        On success the requester receives ``auth-success`` and the latest
        page of the default room, then everyone receives the new presence
        list. On failure only the requester hears ``auth-fail``.

        Returns:
            True if the session is authenticated after the call.
        """
        if session.authenticated:
            logger.debug("[Gate] %s already authenticated; join ignored", session.connection_id)
            return True

        if not self.check(payload.code):
            logger.info("[Gate] Rejected passcode from %s", session.connection_id)
            await self._rooms.emit_to(session.connection_id, "auth-fail")
            return False

        session.username = payload.username.strip() or ANONYMOUS
        session.room = DEFAULT_ROOM
        self._rooms.join(session.connection_id, DEFAULT_ROOM)
        logger.info("[Gate] %s authenticated as %s", session.connection_id, session.username)

        await self._rooms.emit_to(session.connection_id, "auth-success")
        history = await self._lifecycle.history(DEFAULT_ROOM)
        await self._rooms.emit_to(
            session.connection_id,
            "load-history",
            [m.model_dump(mode="json") for m in history],
        )
        await self._presence.register(session.connection_id, session.username)
        return True
