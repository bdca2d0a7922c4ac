"""Durable key-value caches for normalized text and query answers."""

from __future__ import annotations

from docqa.config import config
from docqa.database.base import BaseSQLiteStore, utc_now

logger = config.get_logger(__name__)


class CacheStore(BaseSQLiteStore):
    """Insert-if-absent caches; entries are immutable once written."""

    async def get_semantic(self, raw_hash: str) -> str | None:
        row = await self._run(
            self._fetch_one,
            "SELECT semantic_text FROM semantic_cache WHERE raw_hash = ?",
            (raw_hash,),
        )
        return row["semantic_text"] if row is not None else None

    async def put_semantic(self, raw_hash: str, semantic_text: str) -> bool:
        """Store normalized text; a duplicate key is a successful no-op.

        Returns:
            True if a new entry was written.
        """
        inserted = await self._run(
            self._execute,
            "INSERT OR IGNORE INTO semantic_cache (raw_hash, semantic_text, created_at) "
            "VALUES (?, ?, ?)",
            (raw_hash, semantic_text, utc_now()),
        )
        return inserted == 1

    async def get_answer(self, cache_key: str) -> str | None:
        row = await self._run(
            self._fetch_one,
            "SELECT answer FROM query_cache WHERE cache_key = ?",
            (cache_key,),
        )
        return row["answer"] if row is not None else None

    async def put_answer(self, cache_key: str, answer: str) -> bool:
        """Store a final answer; a duplicate key is a successful no-op.

        Returns:
            True if a new entry was written.
        """
        inserted = await self._run(
            self._execute,
            "INSERT OR IGNORE INTO query_cache (cache_key, answer, created_at) "
            "VALUES (?, ?, ?)",
            (cache_key, answer, utc_now()),
        )
        return inserted == 1
