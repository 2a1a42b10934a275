"""Chat WebSocket endpoint: the per-connection orchestrator.

    WebSocket /ws: real-time chat

Every frame in either direction is ``{"event": <name>, "data": <payload>}``.

Protocol Flow:
    1. Client connects -> server assigns a connection id (no frame sent)
    2. Client sends join{code, username}
       -> auth-fail{}                            (wrong passcode)
       -> auth-success{}, load-history[...]      (to the requester)
       -> presence-update[...]                   (to everyone)
    3. Authenticated clients may then send:
       switch-mode{mode}                 -> load-history[...] (requester)
       chat message{text, fileName?, type?, isTemp?}
                                         -> chat message{...} (message's room)
       edit-message{messageId, newText}  -> message-edited{...} (message's room)
       unsend-message{messageId}         -> message-unsent{...} (message's room)
       react{messageId, reaction}        -> update-reaction{...} (message's room)
       typing{} / stop-typing{}          -> display-typing / hide-typing (others)
       call-offer{offer}                 -> call-made{offer, from} (others)
       call-answer{to, answer}           -> answer-made{from, answer} (to)
       ice-candidate{to, candidate}      -> ice-candidate{candidate, from} (to)
       hang-up{}                         -> call-ended{} (others)
    4. On disconnect -> presence-update[...] (everyone)

Anything sent before a successful join, any unknown event and any malformed
payload is dropped without a reply, except that an unreadable ``join`` is
answered with auth-fail. Binary frames are dropped too.
"""
import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chatgate.config import get_config
from chatgate.messages.lifecycle import MessageLifecycleManager
from chatgate.messages.schemas import (
    ChatMessageInput,
    EditMessagePayload,
    JoinPayload,
    ReactPayload,
    SwitchModePayload,
    UnsendMessagePayload,
)
from chatgate.messages.store import MessageStore

from .indicators import start_typing, stop_typing
from .presence import PresenceTracker
from .rooms import RoomRouter
from .session import Session, SessionGate
from .signaling import (
    CallAnswerPayload,
    CallOfferPayload,
    IceCandidatePayload,
    SignalingRelay,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Process-wide state shared by every connection handler
rooms = RoomRouter()
presence = PresenceTracker(rooms)


def build_lifecycle() -> MessageLifecycleManager:
    """Wire a lifecycle manager to the current store and settings."""
    config = get_config()
    store = MessageStore.get_instance(
        config.require_store_url(), config.store.sweep_interval_seconds
    )
    return MessageLifecycleManager(
        store,
        rooms,
        history_limit=config.chat.history_limit,
        ephemeral_ttl_seconds=config.chat.ephemeral_ttl_hours * 3600,
    )


class ConnectionHandler:
    """Routes one connection's events to the components that own them."""

    def __init__(self, session: Session, lifecycle: MessageLifecycleManager) -> None:
        self.session = session
        self.lifecycle = lifecycle
        self.gate = SessionGate(
            rooms, presence, lifecycle, secret=lambda: get_config().auth.secret_code
        )
        self.relay = SignalingRelay(rooms)
        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "join": self.on_join,
            "switch-mode": self.on_switch_mode,
            "chat message": self.on_chat_message,
            "edit-message": self.on_edit_message,
            "unsend-message": self.on_unsend_message,
            "react": self.on_react,
            "typing": self.on_typing,
            "stop-typing": self.on_stop_typing,
            "call-offer": self.on_call_offer,
            "call-answer": self.on_call_answer,
            "ice-candidate": self.on_ice_candidate,
            "hang-up": self.on_hang_up,
        }

    async def dispatch(self, frame: Any) -> None:
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            logger.debug("[WS] %s sent a malformed frame", self.session.connection_id)
            return

        event = frame["event"]
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("[WS] %s sent unknown event %r", self.session.connection_id, event)
            return
        if event != "join" and not self.session.authenticated:
            logger.debug("[WS] %s before join ignored", event)
            return

        data = frame.get("data")
        try:
            await handler({} if data is None else data)
        except ValidationError as exc:
            logger.debug(
                "[WS] Invalid %s payload from %s: %s",
                event, self.session.connection_id, exc.errors(include_url=False),
            )

    # --- Session ---

    async def on_join(self, data: Any) -> None:
        try:
            payload = JoinPayload.model_validate(data)
        except ValidationError:
            # An unreadable passcode is a wrong passcode.
            if not self.session.authenticated:
                logger.info("[WS] Malformed join from %s", self.session.connection_id)
                await rooms.emit_to(self.session.connection_id, "auth-fail")
            return
        await self.gate.authenticate(self.session, payload)

    async def on_switch_mode(self, data: Any) -> None:
        target = SwitchModePayload.model_validate(data).mode
        rooms.join(self.session.connection_id, target)
        self.session.room = target
        logger.info("[WS] %s switched to %s", self.session.username, target.value)
        history = await self.lifecycle.history(target)
        await rooms.emit_to(
            self.session.connection_id,
            "load-history",
            [m.model_dump(mode="json") for m in history],
        )

    # --- Messages ---

    async def on_chat_message(self, data: Any) -> None:
        await self.lifecycle.send(self.session, ChatMessageInput.model_validate(data))

    async def on_edit_message(self, data: Any) -> None:
        await self.lifecycle.edit(self.session, EditMessagePayload.model_validate(data))

    async def on_unsend_message(self, data: Any) -> None:
        await self.lifecycle.unsend(self.session, UnsendMessagePayload.model_validate(data))

    async def on_react(self, data: Any) -> None:
        await self.lifecycle.react(self.session, ReactPayload.model_validate(data))

    # --- Typing ---

    async def on_typing(self, data: Any) -> None:
        await start_typing(rooms, self.session)

    async def on_stop_typing(self, data: Any) -> None:
        await stop_typing(rooms, self.session)

    # --- Signaling ---

    async def on_call_offer(self, data: Any) -> None:
        await self.relay.offer(self.session.connection_id, CallOfferPayload.model_validate(data))

    async def on_call_answer(self, data: Any) -> None:
        await self.relay.answer(self.session.connection_id, CallAnswerPayload.model_validate(data))

    async def on_ice_candidate(self, data: Any) -> None:
        await self.relay.ice_candidate(
            self.session.connection_id, IceCandidatePayload.model_validate(data)
        )

    async def on_hang_up(self, data: Any) -> None:
        await self.relay.hang_up(self.session.connection_id)

    # --- Teardown ---

    async def close(self) -> None:
        rooms.disconnect(self.session.connection_id)
        await presence.unregister(self.session.connection_id)


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for the chat.

    Events from one connection are handled one at a time, each to
    completion, so a client's own operations are applied in the order it
    sent them. Different connections interleave only while waiting on
    the store.
    """
    lifecycle = build_lifecycle()
    connection_id = await rooms.connect(websocket)
    handler = ConnectionHandler(Session(connection_id), lifecycle)

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except (KeyError, ValueError):
                # KeyError: binary frame, there is no "text" to decode
                logger.debug("[WS] %s sent a non-JSON frame", connection_id)
                continue
            await handler.dispatch(frame)
    except WebSocketDisconnect:
        logger.info("[WS] %s disconnected (user=%s)", connection_id, handler.session.username)
    finally:
        await handler.close()
