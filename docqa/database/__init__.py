"""sqlite-backed stores and factory."""

from __future__ import annotations

from pathlib import Path

from docqa.config import config

from .cache import CacheStore
from .chunks import ChunkStore
from .conversations import ConversationStore
from .documents import DocumentStore


class Database:
    """Bundle of stores sharing one sqlite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.documents = DocumentStore(self.db_path)
        self.chunks = ChunkStore(self.db_path)
        self.conversations = ConversationStore(self.db_path)
        self.cache = CacheStore(self.db_path)


def get_database(db_path: Path | None = None) -> Database:
    """Return a database rooted at ``db_path`` (defaults to config)."""  # noqa: DOC201
    return Database(db_path if db_path is not None else config.DATABASE_PATH)


__all__ = [
    "CacheStore",
    "ChunkStore",
    "ConversationStore",
    "Database",
    "DocumentStore",
    "get_database",
]
