"""Upload entry point and document lifecycle operations."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .config import config
from .errors import InvalidStateTransitionError, NotFoundError
from .validation import validate_document

if TYPE_CHECKING:
    from .database import Database
    from .models import Document
    from .processing import IngestionPipeline
    from .storage import LocalFileStorage

logger = config.get_logger(__name__)

MANUAL_FAILURE_REASON = "Manually marked as failed by user"


class DocumentService:
    """Accepts uploads and hands them to the ingestion pipeline.

    ``upload`` returns as soon as the document is ``processing``; the pipeline
    runs as a background task that records its own terminal state.
    """

    def __init__(
        self,
        database: Database,
        storage: LocalFileStorage,
        pipeline: IngestionPipeline,
    ) -> None:
        self.database = database
        self.storage = storage
        self.pipeline = pipeline
        self._background_tasks: set[asyncio.Task[bool]] = set()

    def _on_task_done(self, task: asyncio.Task[bool]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            logger.error("Background processing ended with error: %s", exc)

    def schedule_processing(self, document_id: str) -> asyncio.Task[bool]:
        task = asyncio.create_task(
            self.pipeline.process_document(document_id),
            name=f"process-{document_id}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def wait_for_background_tasks(self) -> None:
        """Block until every scheduled pipeline run has finished."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def upload(
        self,
        conversation_id: str,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> Document:
        """Validate, persist and start ingestion of an uploaded file.

        Returns:
            The document in ``processing`` state.

        Raises:
            DocumentValidationError: If the file is rejected; no record is
                created.
            NotFoundError: If the conversation does not exist.
            StorageError: If the blob write fails; the document is marked
                failed first.
        """
        file_type = await asyncio.to_thread(
            validate_document,
            filename,
            data,
            content_type,
            max_file_size=config.MAX_FILE_SIZE_BYTES,
            max_csv_rows=config.MAX_CSV_ROWS,
            max_pdf_pages=config.MAX_PDF_PAGES,
        )
        if await self.database.conversations.get_conversation(conversation_id) is None:
            msg = f"Conversation not found: {conversation_id}"
            raise NotFoundError(msg)

        document = await self.database.documents.insert_document(
            conversation_id, filename, file_type
        )
        try:
            storage_path = await self.storage.save(
                data, conversation_id, document.id, filename
            )
        except Exception as exc:
            logger.exception("Failed to store upload for document %s", document.id)
            await self.database.documents.mark_failed(document.id, str(exc))
            raise

        try:
            await self.database.documents.mark_processing(document.id, storage_path)
        except InvalidStateTransitionError:
            # Failed or deleted while the bytes were being written.
            await self.storage.delete(storage_path)
            raise
        processing = await self.get_status(document.id)
        self.schedule_processing(document.id)
        return processing

    async def get_status(self, document_id: str) -> Document:
        """Raises NotFoundError for unknown or deleted documents."""  # noqa: DOC201
        document = await self.database.documents.get_document(document_id)
        if document is None:
            msg = f"Document not found: {document_id}"
            raise NotFoundError(msg)
        return document

    async def list_documents(self, conversation_id: str) -> list[Document]:
        return await self.database.documents.list_documents(conversation_id)

    async def force_fail(self, document_id: str) -> Document:
        """Operator escape hatch: fail a stuck document regardless of its lock.

        Returns:
            The failed document.

        Raises:
            NotFoundError: If the document does not exist.
            InvalidStateTransitionError: If the document is already terminal.
        """
        document = await self.get_status(document_id)
        if document.status.is_terminal:
            msg = f"Document {document_id} is already {document.status.value}"
            raise InvalidStateTransitionError(msg)
        await self.database.documents.mark_failed(document_id, MANUAL_FAILURE_REASON)
        logger.warning("Document %s manually marked as failed", document_id)
        return await self.get_status(document_id)

    async def delete_document(self, document_id: str) -> None:
        await self.database.documents.soft_delete_document(document_id)

    async def recover_stuck(self, stale_seconds: float | None = None) -> list[str]:
        """Re-run the pipeline for documents whose processing run was abandoned.

        Returns:
            Ids of the documents that were rescheduled.
        """
        stale_seconds = (
            config.PROCESSING_STALE_SECONDS if stale_seconds is None else stale_seconds
        )
        stale = await self.database.documents.list_stale_processing(stale_seconds)
        for document in stale:
            logger.info(
                "Rescheduling stuck document %s (%d attempts so far)",
                document.id,
                document.processing_attempts,
            )
            self.schedule_processing(document.id)
        return [document.id for document in stale]
