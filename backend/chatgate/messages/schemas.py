"""Pydantic schemas for chat messages.

This module defines the stored message record, the client payloads that
create or mutate messages, and the two logical rooms a message can live in.

These schemas are used by:
    - MessageStore: DuckDB storage layer
    - MessageLifecycleManager: send / edit / unsend / react
    - The WebSocket orchestrator: payload validation
"""
import time
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator


class Room(str, Enum):
    """Logical broadcast scope.

    Attributes:
        PERMANENT: Default room; messages never expire.
        EPHEMERAL: Temporary room; messages carry an expiry timestamp.
    """
    PERMANENT = "permanent"
    EPHEMERAL = "ephemeral"


DEFAULT_ROOM = Room.PERMANENT


class MessageKind(str, Enum):
    """What a message carries.

    Attributes:
        TEXT: Plain text, no attachment.
        IMAGE: Image attachment.
        AUDIO: Audio attachment (voice notes).
        DOCUMENT: Any other file.
    """
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    DOCUMENT = "document"


ATTACHMENT_KINDS = frozenset({MessageKind.IMAGE, MessageKind.AUDIO, MessageKind.DOCUMENT})


class MessageDraft(BaseModel):
    """A validated message that has not been stored yet.

    The store assigns ``id`` on insert; everything else is decided by the
    lifecycle manager before persisting.
    """
    username: str
    text: str = ""
    fileName: Optional[str] = None
    type: MessageKind = MessageKind.TEXT
    timestamp: float = Field(default_factory=time.time)
    expiresAt: Optional[float] = None


class Message(MessageDraft):
    """A stored chat message as broadcast to clients.

    Attributes:
        id: Unique identifier assigned by the store.
        username: Author identity.
        text: Body text (may be empty for attachments).
        fileName: Attachment reference, if any.
        type: Message kind.
        timestamp: Creation time in seconds since epoch.
        expiresAt: Expiry time in seconds since epoch; None means permanent.
        edited: True once the author has edited the text.
        reactions: identity -> reaction symbol, at most one per identity.
    """
    id: str = Field(..., description="Store-assigned message ID")
    edited: bool = Field(default=False, description="Whether the text was edited")
    reactions: Dict[str, str] = Field(
        default_factory=dict,
        description="Reaction symbol keyed by identity"
    )

    @property
    def room(self) -> Room:
        """The room this message belongs to, derived from its permanence."""
        return Room.PERMANENT if self.expiresAt is None else Room.EPHEMERAL


def toggle_reaction(
    reactions: Dict[str, str], identity: str, symbol: str
) -> Dict[str, str]:
    """Apply one identity's reaction to a reaction map.

    Reacting again with the same symbol removes the reaction; any other
    symbol replaces it. Returns a new dict, the input is left untouched.
    """
    updated = dict(reactions)
    if updated.get(identity) == symbol:
        del updated[identity]
    else:
        updated[identity] = symbol
    return updated


# =============================================================================
# Client payloads
# =============================================================================


class JoinPayload(BaseModel):
    code: str = ""
    username: str = ""


class SwitchModePayload(BaseModel):
    mode: Room


class ChatMessageInput(BaseModel):
    """Payload of a ``chat message`` event.

    Text is required unless an attachment is present. An attachment is a
    ``fileName`` plus a ``type`` of image, audio or document.
    """
    text: str = ""
    fileName: Optional[str] = None
    type: MessageKind = MessageKind.TEXT
    isTemp: bool = False

    @model_validator(mode="after")
    def _check_content(self) -> "ChatMessageInput":
        if self.fileName:
            if self.type not in ATTACHMENT_KINDS:
                raise ValueError("attachment type must be image, audio or document")
        else:
            if self.type is not MessageKind.TEXT:
                raise ValueError("attachment type given without fileName")
            if not self.text.strip():
                raise ValueError("text is required when there is no attachment")
        return self


class EditMessagePayload(BaseModel):
    messageId: str = Field(..., min_length=1)
    newText: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _not_blank(self) -> "EditMessagePayload":
        if not self.newText.strip():
            raise ValueError("newText cannot be blank")
        return self


class UnsendMessagePayload(BaseModel):
    messageId: str = Field(..., min_length=1)


class ReactPayload(BaseModel):
    messageId: str = Field(..., min_length=1)
    reaction: str = Field(..., min_length=1)
