from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from support_bot.errors import PersistenceError
from support_bot.types import Sender, Turn, turn_from_dict

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        conversation_id TEXT NOT NULL
            REFERENCES conversations(id) ON DELETE CASCADE,
        sender TEXT NOT NULL,
        text TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS messages_conversation_idx
        ON messages (conversation_id, seq)
    """,
)


class ChatStore(Protocol):
    async def init(self) -> None: ...

    async def create_conversation_if_absent(self, conversation_id: str) -> None: ...

    async def save_turn(
        self,
        turn_id: str,
        conversation_id: str,
        sender: Sender,
        text: str,
    ) -> None: ...

    async def list_turns(self, conversation_id: str) -> tuple[Turn, ...]: ...

    async def close(self) -> None: ...


class SQLiteChatStore:
    """Durable conversation history in a single SQLite file.

    The connection is shared by all requests; every statement runs in a worker
    thread under one lock so the event loop never blocks on disk I/O.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._lock = asyncio.Lock()
        self._conn: sqlite3.Connection | None = None

    async def init(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._init_sync)
        logger.info("chat_store_ready path=%s", self._path)

    async def create_conversation_if_absent(self, conversation_id: str) -> None:
        await self._run(
            "INSERT OR IGNORE INTO conversations (id, created_at) VALUES (?, ?)",
            (conversation_id, _utcnow()),
        )

    async def save_turn(
        self,
        turn_id: str,
        conversation_id: str,
        sender: Sender,
        text: str,
    ) -> None:
        await self._run(
            """
            INSERT INTO messages (id, conversation_id, sender, text, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (turn_id, conversation_id, sender, text, _utcnow()),
        )

    async def list_turns(self, conversation_id: str) -> tuple[Turn, ...]:
        rows = await self._run(
            """
            SELECT sender, text
            FROM messages
            WHERE conversation_id = ?
            ORDER BY seq ASC
            """,
            (conversation_id,),
            fetch=True,
        )

        turns: list[Turn] = []
        for row in rows:
            turn = turn_from_dict(dict(row))
            if turn is not None:
                turns.append(turn)
        return tuple(turns)

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                await asyncio.to_thread(self._conn.close)
                self._conn = None

    async def _run(
        self,
        query: str,
        params: tuple[object, ...],
        *,
        fetch: bool = False,
    ) -> list[sqlite3.Row]:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._execute_sync, query, params, fetch)
            except (sqlite3.Error, UnicodeError) as exc:
                raise PersistenceError(f"Chat store query failed: {exc}") from exc

    def _init_sync(self) -> None:
        try:
            conn = self._connect()
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()
        except (sqlite3.Error, UnicodeError) as exc:
            raise PersistenceError(f"Chat store init failed: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._conn = conn
        return self._conn

    def _execute_sync(
        self,
        query: str,
        params: tuple[object, ...],
        fetch: bool,
    ) -> list[sqlite3.Row]:
        conn = self._connect()
        cursor = conn.execute(query, params)
        rows = cursor.fetchall() if fetch else []
        conn.commit()
        return rows


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()
