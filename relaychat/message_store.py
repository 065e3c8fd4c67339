"""Conversation-partitioned message history with bounded retention.

Every conversation keeps at most ``max_messages`` entries; appending past the
cap evicts the oldest entries of that conversation in the same transaction.
"""

import asyncio
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path

import aiosqlite

from .config import MAX_MESSAGES_PER_CONVERSATION

GROUP_CONVERSATION = "__NULL_GROUP__"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender TEXT NOT NULL,
        payload TEXT NOT NULL,
        conversation_id TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        is_unread INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_messages_unread ON messages(is_unread)",
)

_COLUMNS = "id, sender, payload, conversation_id, timestamp, is_unread"


class MessageStoreError(Exception):
    pass


class StoreNotInitializedError(MessageStoreError):
    pass


@dataclass(frozen=True)
class Message:
    sender: str
    payload: str
    conversation_id: str = GROUP_CONVERSATION


@dataclass(frozen=True)
class StoredMessage:
    id: int
    sender: str
    payload: str
    conversation_id: str
    timestamp: int
    unread: bool

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row["id"],
            sender=row["sender"],
            payload=row["payload"],
            conversation_id=row["conversation_id"],
            timestamp=row["timestamp"],
            unread=bool(row["is_unread"]),
        )


class MessageStore:
    def __init__(self, db_path, max_messages=MAX_MESSAGES_PER_CONVERSATION):
        if max_messages < 1:
            raise ValueError("max_messages must be positive")
        self.db_path = Path(db_path)
        self.max_messages = max_messages
        self._db = None
        self._write_lock = asyncio.Lock()
        self._last_ts = 0

    @property
    def initialized(self):
        return self._db is not None

    async def init(self):
        if self._db is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            db = await aiosqlite.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise MessageStoreError(f"Cannot open message store: {e}") from e
        db.row_factory = aiosqlite.Row
        try:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
            async with db.execute("SELECT MAX(timestamp) FROM messages") as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            await db.close()
            raise MessageStoreError(f"Cannot initialize message store: {e}") from e
        self._last_ts = row[0] or 0
        self._db = db

    async def close(self):
        if self._db is None:
            return
        db, self._db = self._db, None
        await db.close()

    def _ensure_db(self):
        if self._db is None:
            raise StoreNotInitializedError("Message store not initialized. Call init() first.")
        return self._db

    def _now_ms(self):
        # Strictly increasing so that insertion order is also timestamp order.
        ts = max(int(time.time() * 1000), self._last_ts + 1)
        self._last_ts = ts
        return ts

    async def append(self, message, mark_unread=False):
        db = self._ensure_db()
        async with self._write_lock:
            try:
                async with db.execute(
                    "SELECT COUNT(*) FROM messages WHERE conversation_id=?",
                    (message.conversation_id,),
                ) as cur:
                    (count,) = await cur.fetchone()
                excess = count - self.max_messages + 1
                if excess > 0:
                    await db.execute(
                        "DELETE FROM messages WHERE id IN ("
                        " SELECT id FROM messages WHERE conversation_id=?"
                        " ORDER BY timestamp ASC, id ASC LIMIT ?)",
                        (message.conversation_id, excess),
                    )
                cur = await db.execute(
                    "INSERT INTO messages(sender, payload, conversation_id, timestamp, is_unread) "
                    "VALUES(?,?,?,?,?)",
                    (
                        message.sender,
                        message.payload,
                        message.conversation_id,
                        self._now_ms(),
                        1 if mark_unread else 0,
                    ),
                )
                msg_id = cur.lastrowid
                await cur.close()
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise MessageStoreError(f"Failed to append message: {e}") from e
        return msg_id

    async def _fetch(self, sql, params=()):
        db = self._ensure_db()
        try:
            async with db.execute(sql, params) as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            raise MessageStoreError(f"Failed to read messages: {e}") from e
        return [StoredMessage.from_row(r) for r in rows]

    async def list_by_conversation(self, conversation_id):
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM messages WHERE conversation_id=? ORDER BY timestamp ASC, id ASC",
            (conversation_id,),
        )

    async def list_all(self):
        return await self._fetch(f"SELECT {_COLUMNS} FROM messages ORDER BY timestamp ASC, id ASC")

    async def _write(self, sql, params=()):
        db = self._ensure_db()
        async with self._write_lock:
            try:
                await db.execute(sql, params)
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise MessageStoreError(f"Failed to update messages: {e}") from e

    async def mark_read(self, conversation_id):
        await self._write(
            "UPDATE messages SET is_unread=0 WHERE conversation_id=? AND is_unread=1",
            (conversation_id,),
        )

    async def has_unread(self, conversation_id):
        db = self._ensure_db()
        try:
            async with db.execute(
                "SELECT 1 FROM messages WHERE conversation_id=? AND is_unread=1 LIMIT 1",
                (conversation_id,),
            ) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise MessageStoreError(f"Failed to read messages: {e}") from e
        return row is not None

    async def unread_conversations(self):
        db = self._ensure_db()
        try:
            async with db.execute(
                "SELECT DISTINCT conversation_id FROM messages WHERE is_unread=1"
            ) as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            raise MessageStoreError(f"Failed to read messages: {e}") from e
        return {r[0] for r in rows}

    async def conversation_ids(self):
        db = self._ensure_db()
        try:
            async with db.execute("SELECT DISTINCT conversation_id FROM messages") as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            raise MessageStoreError(f"Failed to read messages: {e}") from e
        return {r[0] for r in rows}

    async def clear_conversation(self, conversation_id):
        await self._write("DELETE FROM messages WHERE conversation_id=?", (conversation_id,))

    async def clear_all(self):
        await self._write("DELETE FROM messages")
