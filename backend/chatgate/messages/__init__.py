"""Chat message model, storage and lifecycle."""

from .schemas import Message, MessageDraft, MessageKind, Room, toggle_reaction
from .store import MessageStore, StoreUnavailable

__all__ = [
    "Message",
    "MessageDraft",
    "MessageKind",
    "Room",
    "toggle_reaction",
    "MessageStore",
    "StoreUnavailable",
]
