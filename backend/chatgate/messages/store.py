"""DuckDB-backed message store with TTL-based auto-expiry.

This is the only durable state in chatgate. The service implements the
singleton pattern so every connection handler shares one database
connection.

Database Schema:
    messages table:
        - id: UUID assigned on insert
        - seq: Insertion order (ties on timestamp are broken by seq)
        - username: Author identity
        - text: Body text
        - file_name: Attachment reference (nullable)
        - type: text / image / audio / document
        - timestamp: Creation time, seconds since epoch
        - expires_at: Expiry time, seconds since epoch (NULL = permanent)
        - edited: Whether the text was edited
        - reactions: JSON object, identity -> symbol

Expiry:
    A background task deletes rows whose expires_at has passed. Queries
    also filter them out, so an expired message is unreachable even
    between sweeps.

Thread Safety:
    DuckDB calls run in the default executor so they don't block the event
    loop. A lock serializes use of the connection, which also makes
    ``update`` an atomic read-modify-write per call.

Usage:
    store = MessageStore.get_instance(db_path=":memory:")
    message = await store.insert(draft)
    history = await store.find(Room.PERMANENT, limit=50)
"""
import asyncio
import json
import logging
import threading
import time
import uuid
from typing import Any, Callable, List, Optional

import duckdb

from .schemas import Message, MessageDraft, MessageKind, Room

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id          VARCHAR PRIMARY KEY,
    seq         BIGINT DEFAULT nextval('messages_seq'),
    username    VARCHAR NOT NULL,
    text        VARCHAR NOT NULL DEFAULT '',
    file_name   VARCHAR,
    type        VARCHAR NOT NULL DEFAULT 'text',
    timestamp   DOUBLE NOT NULL,
    expires_at  DOUBLE,
    edited      BOOLEAN NOT NULL DEFAULT FALSE,
    reactions   VARCHAR NOT NULL DEFAULT '{}'
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_expires ON messages(expires_at)"

_COLUMNS = "id, username, text, file_name, type, timestamp, expires_at, edited, reactions"


class StoreUnavailable(RuntimeError):
    """Raised when the underlying database call fails."""


class MessageStore:
    """Singleton service for storing chat messages in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _default_db_path: Database path used when none is given.
    """

    _instance: Optional["MessageStore"] = None
    _default_db_path: str = "messages.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        sweep_interval_seconds: int = 60,
    ) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to the DuckDB file, or ":memory:".
            sweep_interval_seconds: How often expired messages are purged.

        Raises:
            StoreUnavailable: If the database cannot be opened.
        """
        self._db_path = db_path or self._default_db_path
        self._sweep_interval = sweep_interval_seconds
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        try:
            self._conn = duckdb.connect(self._db_path)
            self._conn.execute(_CREATE_SEQUENCE)
            self._conn.execute(_CREATE_TABLE)
            self._conn.execute(_INDEX)
        except duckdb.Error as exc:
            raise StoreUnavailable(f"Cannot open message store {self._db_path}: {exc}") from exc
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(
        cls,
        db_path: Optional[str] = None,
        sweep_interval_seconds: int = 60,
    ) -> "MessageStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
            sweep_interval_seconds: Sweep interval (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path, sweep_interval_seconds)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton. Primarily used for testing."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background expiry sweep."""
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("MessageStore sweep task started (interval=%ss)", self._sweep_interval)

    async def stop(self) -> None:
        """Cancel the sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("MessageStore stopped")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def insert(self, draft: MessageDraft) -> Message:
        """Persist a new message and return it with its assigned id."""
        return await self._run(self._insert, draft)

    async def get(self, message_id: str) -> Optional[Message]:
        """Return the message if it exists and has not expired."""
        return await self._run(self._get, message_id, time.time())

    async def find(
        self, room: Room, limit: int = 50, now: Optional[float] = None
    ) -> List[Message]:
        """Return the newest ``limit`` live messages of a room, oldest first.

        Permanent messages are those without an expiry; ephemeral ones have
        one later than ``now``.
        """
        return await self._run(self._find, room, limit, time.time() if now is None else now)

    async def update(
        self, message_id: str, mutate: Callable[[Message], Optional[Message]]
    ) -> Optional[Message]:
        """Atomically apply ``mutate`` to a stored message.

        The current row is read and passed to ``mutate``; whatever it returns
        is written back. Returning None leaves the record untouched.

        Returns:
            The updated message, or None if it was missing or not changed.
        """
        return await self._run(self._update, message_id, mutate, time.time())

    async def delete(self, message_id: str) -> bool:
        """Delete a message. Returns False if there was nothing to delete."""
        return await self._run(self._delete, message_id)

    async def purge_expired(self, now: Optional[float] = None) -> int:
        """Physically remove every message whose expiry has passed."""
        return await self._run(self._purge_expired, time.time() if now is None else now)

    # ------------------------------------------------------------------
    # Blocking implementations (run in the executor)
    # ------------------------------------------------------------------

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.get_event_loop().run_in_executor(
            None, self._locked, fn, *args
        )

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            if self._conn is None:
                raise StoreUnavailable("Message store is closed")
            try:
                return fn(*args)
            except duckdb.Error as exc:
                raise StoreUnavailable(str(exc)) from exc

    def _insert(self, draft: MessageDraft) -> Message:
        message = Message(id=str(uuid.uuid4()), **draft.model_dump())
        self._conn.execute(
            f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                message.id,
                message.username,
                message.text,
                message.fileName,
                message.type.value,
                message.timestamp,
                message.expiresAt,
                message.edited,
                json.dumps(message.reactions),
            ],
        )
        return message

    def _get(self, message_id: str, now: float) -> Optional[Message]:
        row = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE id = ? AND (expires_at IS NULL OR expires_at > ?)
            """,
            [message_id, now],
        ).fetchone()
        return self._row_to_message(row) if row else None

    def _find(self, room: Room, limit: int, now: float) -> List[Message]:
        if room == Room.PERMANENT:
            where, params = "expires_at IS NULL", []
        else:
            where, params = "expires_at IS NOT NULL AND expires_at > ?", [now]
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM (
                SELECT {_COLUMNS}, seq FROM messages
                WHERE {where}
                ORDER BY timestamp DESC, seq DESC
                LIMIT ?
            ) ORDER BY timestamp ASC, seq ASC
            """,
            params + [limit],
        ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def _update(
        self,
        message_id: str,
        mutate: Callable[[Message], Optional[Message]],
        now: float,
    ) -> Optional[Message]:
        current = self._get(message_id, now)
        if current is None:
            return None
        updated = mutate(current.model_copy(deep=True))
        if updated is None:
            return None
        self._conn.execute(
            """
            UPDATE messages SET text = ?, edited = ?, reactions = ?
            WHERE id = ?
            """,
            [updated.text, updated.edited, json.dumps(updated.reactions), message_id],
        )
        return updated

    def _delete(self, message_id: str) -> bool:
        existing = self._conn.execute(
            "SELECT COUNT(*) FROM messages WHERE id = ?", [message_id]
        ).fetchone()[0]
        if existing:
            self._conn.execute("DELETE FROM messages WHERE id = ?", [message_id])
        return bool(existing)

    def _purge_expired(self, now: float) -> int:
        expired = self._conn.execute(
            "SELECT COUNT(*) FROM messages WHERE expires_at IS NOT NULL AND expires_at <= ?",
            [now],
        ).fetchone()[0]
        if expired:
            self._conn.execute(
                "DELETE FROM messages WHERE expires_at IS NOT NULL AND expires_at <= ?",
                [now],
            )
        return expired

    @staticmethod
    def _row_to_message(row: tuple) -> Message:
        return Message(
            id=row[0],
            username=row[1],
            text=row[2],
            fileName=row[3],
            type=MessageKind(row[4]),
            timestamp=row[5],
            expiresAt=row[6],
            edited=row[7],
            reactions=json.loads(row[8] or "{}"),
        )

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                removed = await self.purge_expired()
            except StoreUnavailable as exc:
                logger.error("MessageStore sweep failed: %s", exc)
                continue
            if removed:
                logger.info("MessageStore sweep: removed %d expired messages", removed)
