"""Call-setup signaling relay (WebRTC offer / answer / ICE).

The server never looks inside offers, answers or candidates; it only adds
the sender's connection id and forwards. Nothing is kept between signals.
Offers and hang-ups go to everyone but the sender, answers and candidates
go to the connection named in ``to``.
"""
import logging
from typing import Any

from pydantic import BaseModel, Field

from .rooms import RoomRouter

logger = logging.getLogger(__name__)


class CallOfferPayload(BaseModel):
    offer: Any = None


class CallAnswerPayload(BaseModel):
    to: str = Field(..., min_length=1)
    answer: Any = None


class IceCandidatePayload(BaseModel):
    to: str = Field(..., min_length=1)
    candidate: Any = None


class SignalingRelay:
    def __init__(self, rooms: RoomRouter) -> None:
        self._rooms = rooms

    async def offer(self, sender_id: str, payload: CallOfferPayload) -> None:
        await self._rooms.emit_except(
            sender_id, "call-made", {"offer": payload.offer, "from": sender_id}
        )

    async def answer(self, sender_id: str, payload: CallAnswerPayload) -> bool:
        return await self._targeted(
            payload.to, "answer-made", {"from": sender_id, "answer": payload.answer}
        )

    async def ice_candidate(self, sender_id: str, payload: IceCandidatePayload) -> bool:
        return await self._targeted(
            payload.to, "ice-candidate", {"candidate": payload.candidate, "from": sender_id}
        )

    async def hang_up(self, sender_id: str) -> None:
        await self._rooms.emit_except(sender_id, "call-ended")

    async def _targeted(self, target: str, event: str, data: dict) -> bool:
        # Only admitted connections can be called.
        delivered = (
            self._rooms.room_of(target) is not None
            and await self._rooms.emit_to(target, event, data)
        )
        if not delivered:
            logger.debug("[Signaling] %s for %s not delivered", event, target)
        return delivered
