"""Message lifecycle: send, edit, unsend and react.

Every operation follows the same shape: check the session is
authenticated, validate, persist through the MessageStore, then broadcast
the resulting state to the room the message belongs to. The room comes from
the message itself (expiry present -> ephemeral), never from the sender's
current room, so a sender switching rooms mid-flight cannot misroute it.

Failure handling:
    - Unauthenticated session: silent no-op
    - Missing message or non-author edit/unsend: silent no-op, so a
      requester cannot probe which ids exist
    - StoreUnavailable: logged, event dropped, nothing broadcast
"""
import logging
import time
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from chatgate.chat.rooms import RoomRouter

from .schemas import (
    ChatMessageInput,
    EditMessagePayload,
    Message,
    MessageDraft,
    ReactPayload,
    Room,
    UnsendMessagePayload,
    toggle_reaction,
)
from .store import MessageStore, StoreUnavailable

if TYPE_CHECKING:
    from chatgate.chat.session import Session

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_EPHEMERAL_TTL_SECONDS = 24 * 60 * 60


class MessageLifecycleManager:
    """Validates, persists and broadcasts message state changes."""

    def __init__(
        self,
        store: MessageStore,
        rooms: RoomRouter,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        ephemeral_ttl_seconds: float = DEFAULT_EPHEMERAL_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._rooms = rooms
        self.history_limit = history_limit
        self.ephemeral_ttl_seconds = ephemeral_ttl_seconds

    # =========================================================================
    # Queries
    # =========================================================================

    async def history(self, room: Room, limit: Optional[int] = None) -> List[Message]:
        """Latest page of a room, newest last. Empty if the store is down."""
        try:
            return await self._store.find(room, limit or self.history_limit)
        except StoreUnavailable as exc:
            logger.error("[Lifecycle] History for %s unavailable: %s", room.value, exc)
            return []

    # =========================================================================
    # Mutations
    # =========================================================================

    async def send(self, session: "Session", payload: ChatMessageInput) -> Optional[Message]:
        """Store a new message and broadcast it to its room."""
        if not session.authenticated:
            return None

        now = time.time()
        draft = MessageDraft(
            username=session.username,
            text=payload.text,
            fileName=payload.fileName,
            type=payload.type,
            timestamp=now,
            expiresAt=now + self.ephemeral_ttl_seconds if payload.isTemp else None,
        )
        try:
            message = await self._store.insert(draft)
        except StoreUnavailable as exc:
            logger.error("[Lifecycle] Dropped message from %s: %s", session.username, exc)
            return None

        logger.info(
            "[Lifecycle] %s sent %s message %s to %s",
            message.username, message.type.value, message.id, message.room.value,
        )
        await self._rooms.emit_to_room(
            message.room, "chat message", message.model_dump(mode="json")
        )
        return message

    async def edit(self, session: "Session", payload: EditMessagePayload) -> bool:
        """Replace the text of one of the requester's own messages."""
        if not session.authenticated:
            return False

        def apply(message: Message) -> Optional[Message]:
            if message.username != session.username:
                return None
            message.text = payload.newText
            message.edited = True
            return message

        updated = await self._mutate(session, payload.messageId, apply, "edit")
        if updated is None:
            return False

        await self._rooms.emit_to_room(
            updated.room,
            "message-edited",
            {"messageId": updated.id, "newText": updated.text},
        )
        return True

    async def unsend(self, session: "Session", payload: UnsendMessagePayload) -> bool:
        """Delete one of the requester's own messages."""
        if not session.authenticated:
            return False

        try:
            message = await self._store.get(payload.messageId)
            if message is None or message.username != session.username:
                logger.info(
                    "[Lifecycle] unsend of %s by %s ignored", payload.messageId, session.username
                )
                return False
            deleted = await self._store.delete(message.id)
        except StoreUnavailable as exc:
            logger.error("[Lifecycle] unsend of %s failed: %s", payload.messageId, exc)
            return False

        if not deleted:
            # Already gone (expired or unsent concurrently).
            return False

        await self._rooms.emit_to_room(message.room, "message-unsent", {"messageId": message.id})
        return True

    async def react(
        self, session: "Session", payload: ReactPayload
    ) -> Optional[Dict[str, str]]:
        """Toggle the requester's reaction and broadcast the full map."""
        if not session.authenticated:
            return None

        def apply(message: Message) -> Message:
            message.reactions = toggle_reaction(
                message.reactions, session.username, payload.reaction
            )
            return message

        updated = await self._mutate(session, payload.messageId, apply, "react")
        if updated is None:
            return None

        await self._rooms.emit_to_room(
            updated.room,
            "update-reaction",
            {"messageId": updated.id, "reactions": updated.reactions},
        )
        return updated.reactions

    async def _mutate(
        self,
        session: "Session",
        message_id: str,
        apply: Callable[[Message], Optional[Message]],
        action: str,
    ) -> Optional[Message]:
        try:
            updated = await self._store.update(message_id, apply)
        except StoreUnavailable as exc:
            logger.error("[Lifecycle] %s of %s failed: %s", action, message_id, exc)
            return None
        if updated is None:
            logger.info("[Lifecycle] %s of %s by %s ignored", action, message_id, session.username)
        return updated
