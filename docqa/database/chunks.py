"""Chunk storage with numpy-backed cosine similarity search."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from docqa.config import config
from docqa.database.base import (
    BaseSQLiteStore,
    decode_embedding,
    encode_embedding,
    utc_now,
)
from docqa.errors import ConsistencyError
from docqa.models import DocumentChunk, DocumentStatus, SearchMatch

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Sequence

logger = config.get_logger(__name__)


class ChunkStore(BaseSQLiteStore):
    """Vector storage using sqlite rows with float32 embedding blobs."""

    def _replace_chunks(self, document_id: str, chunks: Sequence[DocumentChunk]) -> int:
        created_at = utc_now()
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM document_chunks WHERE document_id = ?", (document_id,)
            )
            if not chunks:
                return 0
            cursor = conn.executemany(
                """
                INSERT INTO document_chunks (
                    id, document_id, conversation_id, chunk_index, content,
                    embedding, page_number, row_index, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.document_id,
                        chunk.conversation_id,
                        chunk.chunk_index,
                        chunk.content,
                        None
                        if chunk.embedding is None
                        else encode_embedding(chunk.embedding),
                        chunk.metadata.get("page_number"),
                        chunk.metadata.get("row_index"),
                        created_at,
                    )
                    for chunk in chunks
                ],
            )
            if cursor.rowcount != len(chunks):
                msg = (
                    f"Inserted {cursor.rowcount} chunks for document {document_id}, "
                    f"expected {len(chunks)}"
                )
                raise ConsistencyError(msg)
            return cursor.rowcount

    async def replace_chunks(
        self, document_id: str, chunks: Sequence[DocumentChunk]
    ) -> int:
        """Delete every chunk of a document and insert ``chunks`` in their place.

        Both steps share one transaction, so no leftover rows from an earlier
        run survive a successful replace.

        Returns:
            Number of inserted chunks.

        Raises:
            ConsistencyError: If the insert count differs from ``len(chunks)``.
        """
        if any(chunk.document_id != document_id for chunk in chunks):
            msg = f"All chunks must belong to document {document_id}"
            raise ValueError(msg)
        inserted = await self._run(self._replace_chunks, document_id, chunks)
        logger.info("Stored %d chunks for document %s", inserted, document_id)
        return inserted

    def _update_embeddings(
        self,
        document_id: str,
        updates: Sequence[tuple[str, np.ndarray]],
    ) -> int:
        with self._connect() as conn:
            cursor = conn.executemany(
                "UPDATE document_chunks SET embedding = ? "
                "WHERE id = ? AND document_id = ?",
                [
                    (encode_embedding(embedding), chunk_id, document_id)
                    for chunk_id, embedding in updates
                ],
            )
            if cursor.rowcount != len(updates):
                msg = (
                    f"Updated {cursor.rowcount} embeddings for document "
                    f"{document_id}, expected {len(updates)}"
                )
                raise ConsistencyError(msg)
            return cursor.rowcount

    async def update_embeddings(
        self,
        document_id: str,
        updates: Sequence[tuple[str, np.ndarray]],
    ) -> int:
        """Persist ``(chunk_id, embedding)`` pairs for a document atomically.

        Returns:
            Number of updated chunk rows.

        Raises:
            ConsistencyError: If any chunk id did not match a row.
        """
        if not updates:
            return 0
        updated = await self._run(self._update_embeddings, document_id, updates)
        logger.info("Stored %d embeddings for document %s", updated, document_id)
        return updated

    @staticmethod
    def _build_chunk_from_row(row: sqlite3.Row) -> DocumentChunk:
        metadata: dict[str, int] = {}
        if row["page_number"] is not None:
            metadata["page_number"] = int(row["page_number"])
        if row["row_index"] is not None:
            metadata["row_index"] = int(row["row_index"])
        return DocumentChunk(
            id=row["id"],
            document_id=row["document_id"],
            conversation_id=row["conversation_id"],
            chunk_index=int(row["chunk_index"]),
            content=row["content"],
            metadata=metadata,
            embedding=decode_embedding(row["embedding"]),
        )

    async def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        """All chunks of a document in ``chunk_index`` order."""  # noqa: DOC201
        rows = await self._run(
            self._fetch_all,
            "SELECT * FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
            (document_id,),
        )
        return [self._build_chunk_from_row(row) for row in rows]

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and chunk embeddings.

        Returns:
            np.ndarray: Similarity of each row of ``embeddings`` to the query;
                zero-norm vectors score 0.
        """
        query_norm = np.linalg.norm(query_embedding)
        doc_norms = np.linalg.norm(embeddings, axis=1)
        denominator = doc_norms * query_norm
        dots = embeddings @ query_embedding
        return np.divide(
            dots,
            denominator,
            out=np.zeros_like(dots, dtype=np.float64),
            where=denominator > 0,
        )

    def _search(
        self,
        conversation_id: str,
        query_embedding: np.ndarray,
        match_threshold: float,
        match_count: int,
    ) -> list[SearchMatch]:
        rows = self._fetch_all(
            """
            SELECT c.id, c.document_id, c.content, c.embedding
            FROM document_chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE c.conversation_id = ?
              AND d.status = ?
              AND d.deleted_at IS NULL
              AND c.embedding IS NOT NULL
            ORDER BY c.document_id, c.chunk_index
            """,
            (conversation_id, DocumentStatus.READY.value),
        )
        query = np.asarray(query_embedding, dtype=np.float64)
        candidates = []
        vectors = []
        for row in rows:
            vector = decode_embedding(row["embedding"])
            if vector is None or vector.shape != query.shape:
                logger.warning(
                    "Skipping chunk %s with incompatible embedding", row["id"]
                )
                continue
            candidates.append(row)
            vectors.append(vector)

        if not vectors:
            return []

        similarities = self.cosine_similarity(
            query, np.vstack(vectors).astype(np.float64)
        )
        order = np.argsort(-similarities, kind="stable")
        matches: list[SearchMatch] = []
        for idx in order:
            score = float(similarities[idx])
            if score < match_threshold or len(matches) >= match_count:
                break
            row = candidates[idx]
            matches.append(
                SearchMatch(
                    chunk_id=row["id"],
                    document_id=row["document_id"],
                    content=row["content"],
                    similarity=score,
                )
            )
        return matches

    async def search(
        self,
        conversation_id: str,
        query_embedding: np.ndarray,
        *,
        match_threshold: float | None = None,
        match_count: int | None = None,
    ) -> list[SearchMatch]:
        """Nearest chunks of the conversation's ``ready`` documents.

        Chunks of documents in any other state are never considered, even if
        their rows already exist.

        Returns:
            Matches at or above the threshold, similarity-descending, capped
            at ``match_count``.
        """
        match_threshold = (
            config.MATCH_THRESHOLD if match_threshold is None else match_threshold
        )
        match_count = config.MATCH_COUNT if match_count is None else match_count
        matches = await self._run(
            self._search, conversation_id, query_embedding, match_threshold, match_count
        )
        for match in matches:
            logger.info(
                "Retrieved chunk %s with similarity %.4f",
                match.chunk_id,
                match.similarity,
            )
        return matches
