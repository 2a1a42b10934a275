"""Tests for the DuckDB message store, including TTL expiry."""
import os
import tempfile
import time

import pytest

from chatgate.messages.schemas import MessageDraft, MessageKind, Room
from chatgate.messages.store import MessageStore, StoreUnavailable


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    db_path = tempfile.mktemp(suffix=".duckdb")

    yield db_path

    for path in (db_path, db_path + ".wal"):
        if os.path.exists(path):
            os.remove(path)


def _draft(text="hello", username="alice", **kwargs) -> MessageDraft:
    return MessageDraft(username=username, text=text, **kwargs)


class TestInsertAndGet:
    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, store):
        message = await store.insert(_draft())
        assert message.id
        assert message.username == "alice"
        assert message.edited is False
        assert message.reactions == {}

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, store):
        first = await store.insert(_draft("one"))
        second = await store.insert(_draft("two"))
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_get_round_trips_attachment(self, store):
        stored = await store.insert(
            _draft("", fileName="memo.m4a", type=MessageKind.AUDIO)
        )
        fetched = await store.get(stored.id)
        assert fetched == stored

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get("does-not-exist") is None


class TestFind:
    @pytest.mark.asyncio
    async def test_permanent_and_ephemeral_are_separate(self, store):
        permanent = await store.insert(_draft("keep"))
        ephemeral = await store.insert(_draft("fleeting", expiresAt=time.time() + 3600))

        permanent_ids = [m.id for m in await store.find(Room.PERMANENT)]
        ephemeral_ids = [m.id for m in await store.find(Room.EPHEMERAL)]

        assert permanent_ids == [permanent.id]
        assert ephemeral_ids == [ephemeral.id]

    @pytest.mark.asyncio
    async def test_oldest_first(self, store):
        for i in range(3):
            await store.insert(_draft(f"m{i}", timestamp=1000.0 + i))
        texts = [m.text for m in await store.find(Room.PERMANENT)]
        assert texts == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_limit_keeps_newest(self, store):
        for i in range(5):
            await store.insert(_draft(f"m{i}", timestamp=1000.0 + i))
        texts = [m.text for m in await store.find(Room.PERMANENT, limit=2)]
        assert texts == ["m3", "m4"]

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_insertion_order(self, store):
        for i in range(3):
            await store.insert(_draft(f"m{i}", timestamp=1000.0))
        texts = [m.text for m in await store.find(Room.PERMANENT)]
        assert texts == ["m0", "m1", "m2"]


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_message_unreachable_at_expiry(self, store):
        expiry = time.time() + 3600
        message = await store.insert(_draft("bye", expiresAt=expiry))

        assert [m.id for m in await store.find(Room.EPHEMERAL, now=expiry - 1)] == [message.id]
        assert await store.find(Room.EPHEMERAL, now=expiry) == []

    @pytest.mark.asyncio
    async def test_get_hides_expired(self, store):
        message = await store.insert(_draft("bye", expiresAt=time.time() - 1))
        assert await store.get(message.id) is None

    @pytest.mark.asyncio
    async def test_purge_removes_only_expired(self, store):
        await store.insert(_draft("old", expiresAt=time.time() - 10))
        live = await store.insert(_draft("new", expiresAt=time.time() + 3600))
        permanent = await store.insert(_draft("forever"))

        removed = await store.purge_expired()

        assert removed == 1
        assert [m.id for m in await store.find(Room.EPHEMERAL)] == [live.id]
        assert [m.id for m in await store.find(Room.PERMANENT)] == [permanent.id]

    @pytest.mark.asyncio
    async def test_purge_with_explicit_clock(self, store):
        expiry = time.time() + 100
        await store.insert(_draft("later", expiresAt=expiry))
        assert await store.purge_expired(now=expiry - 1) == 0
        assert await store.purge_expired(now=expiry) == 1

    @pytest.mark.asyncio
    async def test_sweep_task_starts_and_stops(self, store):
        await store.start()
        assert store._sweep_task is not None
        await store.stop()
        assert store._sweep_task is None


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_persists_changes(self, store):
        message = await store.insert(_draft("hi"))

        def apply(current):
            current.text = "hi!"
            current.edited = True
            return current

        updated = await store.update(message.id, apply)
        assert updated.text == "hi!"
        fetched = await store.get(message.id)
        assert fetched.text == "hi!"
        assert fetched.edited is True

    @pytest.mark.asyncio
    async def test_update_returning_none_leaves_record(self, store):
        message = await store.insert(_draft("hi"))
        assert await store.update(message.id, lambda current: None) is None
        assert (await store.get(message.id)).text == "hi"

    @pytest.mark.asyncio
    async def test_update_missing_is_none(self, store):
        calls = []
        assert await store.update("nope", calls.append) is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_reactions_round_trip(self, store):
        message = await store.insert(_draft("hi"))

        def apply(current):
            current.reactions["bob"] = "👍"
            return current

        await store.update(message.id, apply)
        assert (await store.get(message.id)).reactions == {"bob": "👍"}


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_existing(self, store):
        message = await store.insert(_draft("hi"))
        assert await store.delete(message.id) is True
        assert await store.get(message.id) is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_idempotent(self, store):
        assert await store.delete("nope") is False
        assert await store.delete("nope") is False


class TestSingletonAndErrors:
    def test_get_instance_returns_same_object(self):
        assert MessageStore.get_instance() is MessageStore.get_instance()

    def test_file_backed_store_persists(self, temp_db):
        import asyncio

        async def scenario():
            first = MessageStore(db_path=temp_db)
            stored = await first.insert(_draft("durable"))
            first.close()
            second = MessageStore(db_path=temp_db)
            fetched = await second.get(stored.id)
            second.close()
            return fetched

        fetched = asyncio.run(scenario())
        assert fetched.text == "durable"

    @pytest.mark.asyncio
    async def test_closed_store_raises_unavailable(self):
        closed = MessageStore(db_path=":memory:")
        closed.close()
        with pytest.raises(StoreUnavailable):
            await closed.insert(_draft())

    def test_unopenable_path_raises_unavailable(self, tmp_path):
        with pytest.raises(StoreUnavailable):
            MessageStore(db_path=str(tmp_path / "missing-dir" / "x.duckdb"))
