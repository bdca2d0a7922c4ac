"""Ingestion pipeline driving a document from ``processing`` to a terminal state."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .config import config
from .parsers import DocumentParser

if TYPE_CHECKING:
    from .chunking import TextChunker
    from .database import Database
    from .embeddings import EmbeddingService
    from .normalizer import SemanticNormalizer
    from .storage import LocalFileStorage

logger = config.get_logger(__name__)

NO_CHUNKS_REASON = "No chunks generated"
MISSING_STORAGE_REASON = "Missing storage_path"


class IngestionPipeline:
    """Runs parse, normalize, chunk, embed and persist for one document.

    Stages run strictly in sequence. Any failure inside the pipeline is
    written to the document as ``failed`` before the exception propagates.
    """

    def __init__(  # noqa: PLR0913
        self,
        database: Database,
        storage: LocalFileStorage,
        normalizer: SemanticNormalizer,
        chunker: TextChunker,
        embedding_service: EmbeddingService,
        max_attempts: int | None = None,
    ) -> None:
        self.database = database
        self.storage = storage
        self.normalizer = normalizer
        self.chunker = chunker
        self.embedding_service = embedding_service
        self.max_attempts = (
            config.MAX_PROCESSING_ATTEMPTS if max_attempts is None else max_attempts
        )

    async def _fail(self, document_id: str, reason: str) -> None:
        try:
            await self.database.documents.mark_failed(document_id, reason)
        except Exception:
            logger.exception("Could not record failure for document %s", document_id)

    async def process_document(self, document_id: str) -> bool:
        """Run the pipeline once for a document.

        Returns:
            False when another run holds the processing lock (or the document
            is not eligible), True when this run reached a terminal state.

        Raises:
            Exception: Any stage failure, after the document is marked failed.
        """
        documents = self.database.documents
        document = await documents.acquire_processing_lock(
            document_id, max_attempts=self.max_attempts
        )
        if document is None:
            # Only an unowned document may be failed for exhausting its attempts.
            exhausted = await documents.fail_exhausted(
                document_id,
                f"Exceeded maximum processing attempts ({self.max_attempts})",
                max_attempts=self.max_attempts,
            )
            if exhausted:
                logger.warning(
                    "Document %s reached %d processing attempts; giving up",
                    document_id,
                    self.max_attempts,
                )
            return exhausted

        if not document.storage_path:
            await self._fail(document_id, MISSING_STORAGE_REASON)
            msg = f"Document {document_id} has no storage_path"
            raise ValueError(msg)

        try:
            data = await self.storage.read(document.storage_path)
            units = await asyncio.to_thread(
                DocumentParser.parse_document,
                data,
                document.file_type,
                document.filename,
            )
            logger.info("Parsed %d units from %s", len(units), document.filename)

            normalized = await self.normalizer.normalize_units(units, document.file_type)
            chunks = self.chunker.chunk_units(
                normalized,
                document.file_type,
                document.id,
                document.conversation_id,
            )
            if not chunks:
                await documents.mark_failed(document_id, NO_CHUNKS_REASON)
                return True

            await self.database.chunks.replace_chunks(document.id, chunks)

            embeddings = await self.embedding_service.get_embeddings_batch(
                [chunk.content for chunk in chunks]
            )
            await self.database.chunks.update_embeddings(
                document.id,
                [
                    (chunk.id, embedding)
                    for chunk, embedding in zip(chunks, embeddings, strict=True)
                ],
            )

            await documents.mark_ready(document_id)
        except Exception as exc:
            logger.exception("Processing failed for document %s", document_id)
            await self._fail(document_id, str(exc) or type(exc).__name__)
            raise
        return True
