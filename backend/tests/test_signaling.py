"""Tests for the call-setup signaling relay."""
import pytest
from fastapi.testclient import TestClient

from chatgate.chat.rooms import RoomRouter
from chatgate.chat.signaling import (
    CallAnswerPayload,
    CallOfferPayload,
    IceCandidatePayload,
    SignalingRelay,
)
from chatgate.main import app
from chatgate.messages.schemas import Room

from conftest import PASSCODE


async def _admitted(router, ws, room=Room.PERMANENT):
    connection_id = await router.connect(ws)
    router.join(connection_id, room)
    return connection_id


class TestRelay:
    @pytest.mark.asyncio
    async def test_offer_goes_to_everyone_else(self, make_ws):
        router = RoomRouter()
        relay = SignalingRelay(router)
        ws_a, ws_b, ws_c = make_ws(), make_ws(), make_ws()
        a = await _admitted(router, ws_a)
        await _admitted(router, ws_b)
        await _admitted(router, ws_c, Room.EPHEMERAL)

        await relay.offer(a, CallOfferPayload(offer={"sdp": "v=0"}))

        assert ws_a.sent == []
        expected = {"offer": {"sdp": "v=0"}, "from": a}
        assert ws_b.last("call-made") == expected
        assert ws_c.last("call-made") == expected

    @pytest.mark.asyncio
    async def test_answer_goes_only_to_target(self, make_ws):
        router = RoomRouter()
        relay = SignalingRelay(router)
        ws_a, ws_b, ws_c = make_ws(), make_ws(), make_ws()
        a = await _admitted(router, ws_a)
        b = await _admitted(router, ws_b)
        await _admitted(router, ws_c)

        delivered = await relay.answer(b, CallAnswerPayload(to=a, answer={"sdp": "ok"}))

        assert delivered is True
        assert ws_a.sent == [{"event": "answer-made", "data": {"from": b, "answer": {"sdp": "ok"}}}]
        assert ws_b.sent == []
        assert ws_c.sent == []

    @pytest.mark.asyncio
    async def test_ice_candidate_forwarded(self, make_ws):
        router = RoomRouter()
        relay = SignalingRelay(router)
        ws_a, ws_b = make_ws(), make_ws()
        a = await _admitted(router, ws_a)
        b = await _admitted(router, ws_b)

        await relay.ice_candidate(a, IceCandidatePayload(to=b, candidate="cand-1"))

        assert ws_b.last("ice-candidate") == {"candidate": "cand-1", "from": a}

    @pytest.mark.asyncio
    async def test_unknown_target_dropped(self, make_ws):
        router = RoomRouter()
        relay = SignalingRelay(router)
        a = await _admitted(router, make_ws())

        assert await relay.answer(a, CallAnswerPayload(to="ghost", answer=None)) is False

    @pytest.mark.asyncio
    async def test_unadmitted_target_dropped(self, make_ws):
        router = RoomRouter()
        relay = SignalingRelay(router)
        a = await _admitted(router, make_ws())
        pending_ws = make_ws()
        pending = await router.connect(pending_ws)

        assert await relay.ice_candidate(a, IceCandidatePayload(to=pending, candidate="c")) is False
        assert pending_ws.sent == []

    @pytest.mark.asyncio
    async def test_hang_up(self, make_ws):
        router = RoomRouter()
        relay = SignalingRelay(router)
        ws_a, ws_b = make_ws(), make_ws()
        a = await _admitted(router, ws_a)
        await _admitted(router, ws_b)

        await relay.hang_up(a)

        assert ws_a.sent == []
        assert ws_b.sent == [{"event": "call-ended", "data": {}}]

    def test_answer_requires_target(self):
        with pytest.raises(ValueError):
            CallAnswerPayload(to="", answer={})


# =============================================================================
# Over the WebSocket
# =============================================================================

client = TestClient(app)


def send(ws, event, data=None):
    ws.send_json({"event": event, "data": {} if data is None else data})


def expect(ws, event):
    frame = ws.receive_json()
    assert frame["event"] == event, frame
    return frame["data"]


def join(ws, username):
    send(ws, "join", {"code": PASSCODE, "username": username})
    expect(ws, "auth-success")
    expect(ws, "load-history")
    expect(ws, "presence-update")


def test_call_setup_round_trip():
    with client.websocket_connect("/ws") as alice, \
         client.websocket_connect("/ws") as bob:
        join(alice, "alice")
        join(bob, "bob")
        expect(alice, "presence-update")

        send(alice, "call-offer", {"offer": {"type": "offer", "sdp": "a"}})
        made = expect(bob, "call-made")
        alice_id = made["from"]
        assert made["offer"] == {"type": "offer", "sdp": "a"}

        send(bob, "call-answer", {"to": alice_id, "answer": {"type": "answer", "sdp": "b"}})
        answered = expect(alice, "answer-made")
        bob_id = answered["from"]
        assert answered["answer"] == {"type": "answer", "sdp": "b"}
        assert bob_id != alice_id

        send(alice, "ice-candidate", {"to": bob_id, "candidate": {"candidate": "c1"}})
        assert expect(bob, "ice-candidate") == {"candidate": {"candidate": "c1"}, "from": alice_id}

        send(bob, "hang-up")
        assert expect(alice, "call-ended") == {}


def test_unauthenticated_signals_ignored():
    with client.websocket_connect("/ws") as alice, \
         client.websocket_connect("/ws") as stranger:
        join(alice, "alice")

        send(stranger, "call-offer", {"offer": "sneaky"})
        send(stranger, "hang-up")

        # alice's next frame is the reply to her own request
        send(alice, "switch-mode", {"mode": "permanent"})
        assert expect(alice, "load-history") == []
