"""Shared schema management and helpers for the sqlite-backed stores."""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import numpy as np

from docqa.config import config
from docqa.models import Document, DocumentStatus, FileType

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

P = ParamSpec("P")
R = TypeVar("R")

logger = config.get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        file_type TEXT NOT NULL CHECK(file_type IN ('pdf','csv')),
        status TEXT NOT NULL CHECK(
            status IN ('uploading','processing','ready','failed')
        ),
        storage_path TEXT,
        processing_started_at TEXT,
        processing_attempts INTEGER NOT NULL DEFAULT 0,
        error_reason TEXT,
        deleted_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS document_chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL,
        conversation_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        content TEXT NOT NULL,
        embedding BLOB,
        page_number INTEGER,
        row_index INTEGER,
        created_at TEXT NOT NULL,
        UNIQUE (document_id, chunk_index),
        CHECK (page_number IS NULL OR row_index IS NULL),
        FOREIGN KEY (document_id) REFERENCES documents (id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK(role IN ('user','assistant')),
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS semantic_cache (
        raw_hash TEXT PRIMARY KEY,
        semantic_text TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS query_cache (
        cache_key TEXT PRIMARY KEY,
        answer TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
)

INDEXES = (
    # At most one live document per conversation.
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_documents_active_conversation "
    "ON documents(conversation_id) WHERE deleted_at IS NULL",
    "CREATE INDEX IF NOT EXISTS idx_documents_conversation_status "
    "ON documents(conversation_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON document_chunks(document_id)",
    "CREATE INDEX IF NOT EXISTS idx_chunks_conversation "
    "ON document_chunks(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
    "ON messages(conversation_id, created_at)",
)


def utc_now() -> str:
    """Current UTC time in a lexicographically sortable ISO format."""  # noqa: DOC201
    return datetime.now(tz=UTC).isoformat(timespec="microseconds")


def utc_before(seconds: float) -> str:
    """ISO timestamp ``seconds`` in the past."""  # noqa: DOC201
    moment = datetime.now(tz=UTC) - timedelta(seconds=seconds)
    return moment.isoformat(timespec="microseconds")


def encode_embedding(embedding: np.ndarray | list[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def decode_embedding(blob: bytes | None) -> np.ndarray | None:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32)


def row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        conversation_id=row["conversation_id"],
        filename=row["filename"],
        file_type=FileType(row["file_type"]),
        status=DocumentStatus(row["status"]),
        created_at=row["created_at"],
        storage_path=row["storage_path"],
        processing_started_at=row["processing_started_at"],
        processing_attempts=int(row["processing_attempts"]),
        error_reason=row["error_reason"],
        deleted_at=row["deleted_at"],
    )


class BaseSQLiteStore:
    """Common schema management and connection handling for sqlite stores.

    Blocking sqlite calls are pushed to a worker thread via :meth:`_run`, so
    every storage access is an await point for the caller's event loop.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        """Initialize the store and ensure the schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self.timeout = timeout
        self._create_tables()

    def _create_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            for statement in SCHEMA:
                conn.execute(statement)
            for statement in INDEXES:
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection whose block runs as a single transaction.

        Yields:
            Connection committed on success and rolled back on error.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @staticmethod
    async def _run(func: Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> R:
        return await asyncio.to_thread(partial(func, *args, **kwargs))

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> sqlite3.Row | None:
        with self._connect() as conn:
            return conn.execute(query, params).fetchone()

    def _fetch_all(self, query: str, params: tuple[Any, ...]) -> list[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(query, params).fetchall()

    def _execute(self, query: str, params: tuple[Any, ...]) -> int:
        """Run a single write statement.

        Returns:
            Number of rows affected.
        """
        with self._connect() as conn:
            return conn.execute(query, params).rowcount
