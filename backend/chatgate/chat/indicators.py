"""Typing indicators.

Not room-scoped and not debounced: the client that starts typing is
expected to send ``stop-typing`` itself.
"""
from .rooms import RoomRouter
from .session import Session


async def start_typing(rooms: RoomRouter, session: Session) -> None:
    if session.authenticated:
        await rooms.emit_except(session.connection_id, "display-typing", session.username)


async def stop_typing(rooms: RoomRouter, session: Session) -> None:
    if session.authenticated:
        await rooms.emit_except(session.connection_id, "hide-typing")
