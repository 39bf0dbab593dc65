"""
Content-addressed audio cache

Each downloaded track is stored as ``<cache_dir>/<content hash>``, where the
content hash is the SHA-256 of the canonical source URL. The database keeps
one record per hash along with every user query known to resolve to it, so
a later ``/play`` with the same text finds the file without a network call.

Records and files are written in separate steps: a record can exist while
its file is missing. Callers check has_file() before serving from disk.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Set

from loguru import logger

from ..database import DatabaseManager
from ..utils.errors import CacheWriteError


def content_hash(value: str) -> str:
    """Stable digest of a URL or query (SHA-256 hex of its UTF-8 bytes)"""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass
class CacheRecord:
    """One cached track"""
    id: str                              # content_hash(source_url)
    source_url: str
    title: Optional[str] = None
    duration: Optional[int] = None       # seconds
    cached_at: Optional[datetime] = None
    possible_queries: Set[str] = field(default_factory=set)


class ContentCache:
    """
    Cache record store plus on-disk file layout

    Usage:
        cache = ContentCache(db, cache_dir="./temp/music")

        record = await cache.lookup("never gonna give you up")
        if record and cache.has_file(record.id):
            path = cache.get_path(record.id)
    """

    def __init__(self, db: DatabaseManager, cache_dir: str):
        self.db = db
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        logger.debug(f"[Cache] ContentCache ready: cache_dir={cache_dir}")

    # === Paths ===

    def get_path(self, content_id: str) -> Path:
        return self.cache_dir / content_id

    def has_file(self, content_id: str) -> bool:
        return self.get_path(content_id).is_file()

    def get_cache_count(self) -> int:
        """Number of cached files on disk"""
        return sum(1 for file in self.cache_dir.iterdir() if file.is_file())

    # === Lookup ===

    async def lookup(self, query: str) -> Optional[CacheRecord]:
        """
        Find the record for a query

        Tries the record whose id is the hash of the query first (the query
        is itself a cached URL), then any record listing the query among its
        possible queries.
        """
        record = await self.get(content_hash(query))
        if record:
            return record

        row = await self.db.fetch_one(
            "SELECT audio_id FROM cached_audio_queries WHERE query = ? LIMIT 1",
            (query,),
        )
        if row is None:
            return None
        return await self.get(row["audio_id"])

    async def get(self, content_id: str) -> Optional[CacheRecord]:
        row = await self.db.fetch_one(
            "SELECT id, source_url, title, duration, cached_at FROM cached_audio WHERE id = ?",
            (content_id,),
        )
        if row is None:
            return None

        queries = await self.db.fetch_all(
            "SELECT query FROM cached_audio_queries WHERE audio_id = ?",
            (content_id,),
        )
        return CacheRecord(
            id=row["id"],
            source_url=row["source_url"],
            title=row["title"],
            duration=row["duration"],
            cached_at=_parse_timestamp(row["cached_at"]),
            possible_queries={q["query"] for q in queries},
        )

    async def is_cached(self, url: str) -> bool:
        row = await self.db.fetch_one(
            "SELECT 1 AS found FROM cached_audio WHERE id = ?",
            (content_hash(url),),
        )
        return row is not None

    # === Writes ===

    async def commit(
        self,
        url: str,
        query: str,
        title: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> CacheRecord:
        """
        Write the record for a freshly downloaded URL

        Re-committing an existing id (re-download after a lost file) keeps the
        known queries and refreshes title, duration and timestamp.

        Raises:
            CacheWriteError: the database rejected the write
        """
        content_id = content_hash(url)
        cached_at = datetime.now(timezone.utc)

        try:
            async with self.db.transaction() as db:
                await db.execute(
                    """
                    INSERT INTO cached_audio (id, source_url, title, duration, cached_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = COALESCE(excluded.title, cached_audio.title),
                        duration = COALESCE(excluded.duration, cached_audio.duration),
                        cached_at = excluded.cached_at
                    """,
                    (content_id, url, title, duration, cached_at.isoformat()),
                )
                await db.execute(
                    "INSERT OR IGNORE INTO cached_audio_queries (audio_id, query) VALUES (?, ?)",
                    (content_id, query),
                )
        except Exception as e:
            raise CacheWriteError(f"Failed to write cache record {content_id}: {e}") from e

        logger.info(f"[Cache] cached {title or url} as {content_id}")
        return CacheRecord(
            id=content_id,
            source_url=url,
            title=title,
            duration=duration,
            cached_at=cached_at,
            possible_queries={query},
        )

    async def link_query(self, url: str, query: str) -> bool:
        """
        Remember that query resolves to the cached url

        Returns:
            True if the query was new, False if it was already linked or the
            url has no record
        """
        content_id = content_hash(url)
        try:
            added = await self.db.execute(
                """
                INSERT OR IGNORE INTO cached_audio_queries (audio_id, query)
                SELECT id, ? FROM cached_audio WHERE id = ?
                """,
                (query, content_id),
            )
        except Exception as e:
            raise CacheWriteError(f"Failed to link query to {content_id}: {e}") from e

        if added:
            logger.debug(f"[Cache] linked query {query!r} to {content_id}")
        return added > 0


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
