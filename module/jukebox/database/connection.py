"""
Cache database connection - SQLite async

One shared aiosqlite connection. Reads run freely; writes go through a lock
so a multi-statement transaction is never interleaved with another writer.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Iterable, Optional

import aiosqlite
from loguru import logger

SCHEMA = """
CREATE TABLE IF NOT EXISTS cached_audio (
    id TEXT PRIMARY KEY,
    source_url TEXT NOT NULL,
    title TEXT,
    duration INTEGER,
    cached_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS cached_audio_queries (
    audio_id TEXT NOT NULL REFERENCES cached_audio(id) ON DELETE CASCADE,
    query TEXT NOT NULL,
    PRIMARY KEY (audio_id, query)
);

CREATE INDEX IF NOT EXISTS idx_cached_audio_queries_query
    ON cached_audio_queries(query);
"""


class DatabaseManager:
    """Async SQLite database connection manager."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @classmethod
    async def create(cls, db_path: Path) -> "DatabaseManager":
        """Create and initialize the database manager."""
        manager = cls(db_path)
        await manager._init_db()
        return manager

    async def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.executescript(SCHEMA)
            await db.commit()

        logger.info(f"[Database] schema ready at {self.db_path}")

    async def _get_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA foreign_keys = ON")
            await self._connection.execute("PRAGMA journal_mode=WAL")
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Exclusive write transaction; commits on success, rolls back on error."""
        async with self._write_lock:
            db = await self._get_connection()
            try:
                yield db
                await db.commit()
            except BaseException:
                # cancellation included: the connection is shared with the next writer
                await db.rollback()
                raise

    async def execute(self, query: str, params: Iterable = ()) -> int:
        """Run one write statement and return the number of affected rows."""
        async with self.transaction() as db:
            cursor = await db.execute(query, tuple(params))
            return cursor.rowcount

    async def fetch_one(self, query: str, params: Iterable = ()) -> Optional[dict]:
        """Fetch a single row as a dictionary."""
        db = await self._get_connection()
        async with db.execute(query, tuple(params)) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def fetch_all(self, query: str, params: Iterable = ()) -> list[dict]:
        """Fetch all rows as a list of dictionaries."""
        db = await self._get_connection()
        async with db.execute(query, tuple(params)) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("[Database] connection closed")
