"""Document records and their compare-and-set status transitions."""

from __future__ import annotations

import sqlite3
import uuid
from typing import TYPE_CHECKING

from docqa.config import config
from docqa.database.base import BaseSQLiteStore, row_to_document, utc_before, utc_now
from docqa.errors import (
    DocumentAlreadyExistsError,
    InvalidStateTransitionError,
    NotFoundError,
)
from docqa.models import Document, DocumentStatus

if TYPE_CHECKING:
    from docqa.models import FileType

logger = config.get_logger(__name__)

_FAILABLE_STATES = (DocumentStatus.UPLOADING.value, DocumentStatus.PROCESSING.value)


class DocumentStore(BaseSQLiteStore):
    """Persistence for documents.

    Every status change is a single conditional ``UPDATE ... WHERE status = ?``
    whose affected row count tells whether the transition won.
    """

    # -- reads ---------------------------------------------------------------

    def _get_document(
        self, document_id: str, *, include_deleted: bool = False
    ) -> Document | None:
        query = "SELECT * FROM documents WHERE id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        row = self._fetch_one(query, (document_id,))
        return row_to_document(row) if row is not None else None

    async def get_document(
        self, document_id: str, *, include_deleted: bool = False
    ) -> Document | None:
        return await self._run(
            self._get_document, document_id, include_deleted=include_deleted
        )

    async def list_documents(self, conversation_id: str) -> list[Document]:
        """Non-deleted documents of a conversation, newest first."""  # noqa: DOC201
        rows = await self._run(
            self._fetch_all,
            """
            SELECT * FROM documents
            WHERE conversation_id = ? AND deleted_at IS NULL
            ORDER BY created_at DESC, rowid DESC
            """,
            (conversation_id,),
        )
        return [row_to_document(row) for row in rows]

    async def list_ready_document_ids(self, conversation_id: str) -> list[str]:
        """Sorted ids of the conversation's ``ready`` documents."""  # noqa: DOC201
        rows = await self._run(
            self._fetch_all,
            """
            SELECT id FROM documents
            WHERE conversation_id = ? AND status = ? AND deleted_at IS NULL
            ORDER BY id
            """,
            (conversation_id, DocumentStatus.READY.value),
        )
        return [row["id"] for row in rows]

    async def list_stale_processing(self, stale_seconds: float) -> list[Document]:
        """Documents in ``processing`` whose lock is missing or abandoned."""  # noqa: DOC201
        rows = await self._run(
            self._fetch_all,
            """
            SELECT * FROM documents
            WHERE status = ? AND deleted_at IS NULL
              AND (processing_started_at IS NULL OR processing_started_at < ?)
            ORDER BY created_at
            """,
            (DocumentStatus.PROCESSING.value, utc_before(stale_seconds)),
        )
        return [row_to_document(row) for row in rows]

    # -- writes --------------------------------------------------------------

    def _insert_document(
        self, conversation_id: str, filename: str, file_type: FileType
    ) -> Document:
        document_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO documents (
                        id, conversation_id, filename, file_type, status, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document_id,
                        conversation_id,
                        filename,
                        file_type.value,
                        DocumentStatus.UPLOADING.value,
                        utc_now(),
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM documents WHERE id = ?", (document_id,)
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc):
                msg = f"Conversation not found: {conversation_id}"
                raise NotFoundError(msg) from exc
            msg = (
                "This conversation already has a document. "
                "Delete it or start a new conversation to upload another file."
            )
            raise DocumentAlreadyExistsError(msg) from exc
        return row_to_document(row)

    async def insert_document(
        self, conversation_id: str, filename: str, file_type: FileType
    ) -> Document:
        """Create a document record in ``uploading`` state.

        Returns:
            The newly created document.

        Raises:
            DocumentAlreadyExistsError: If the conversation already has a
                non-deleted document.
            NotFoundError: If the conversation does not exist.
        """
        document = await self._run(
            self._insert_document, conversation_id, filename, file_type
        )
        logger.info("Created document %s (%s)", document.id, filename)
        return document

    async def mark_processing(self, document_id: str, storage_path: str) -> None:
        """Transition ``uploading -> processing`` carrying the storage pointer.

        Raises:
            InvalidStateTransitionError: If the document is not ``uploading``.
        """
        updated = await self._run(
            self._execute,
            """
            UPDATE documents SET status = ?, storage_path = ?
            WHERE id = ? AND status = ? AND deleted_at IS NULL
            """,
            (
                DocumentStatus.PROCESSING.value,
                storage_path,
                document_id,
                DocumentStatus.UPLOADING.value,
            ),
        )
        if updated != 1:
            msg = f"Document {document_id} not in expected state (uploading)"
            raise InvalidStateTransitionError(msg)
        logger.info("Document %s: uploading -> processing", document_id)

    def _acquire_processing_lock(
        self, document_id: str, max_attempts: int, stale_seconds: float
    ) -> Document | None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET processing_started_at = ?,
                    processing_attempts = processing_attempts + 1
                WHERE id = ?
                  AND status = ?
                  AND deleted_at IS NULL
                  AND processing_attempts < ?
                  AND (processing_started_at IS NULL OR processing_started_at < ?)
                """,
                (
                    utc_now(),
                    document_id,
                    DocumentStatus.PROCESSING.value,
                    max_attempts,
                    utc_before(stale_seconds),
                ),
            )
            if cursor.rowcount != 1:
                return None
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return row_to_document(row)

    async def acquire_processing_lock(
        self,
        document_id: str,
        *,
        max_attempts: int | None = None,
        stale_seconds: float | None = None,
    ) -> Document | None:
        """Claim the single in-flight pipeline run for a document.

        Succeeds only while the document is ``processing``, below the attempt
        ceiling, and not already claimed by a live run. Success increments
        ``processing_attempts``; a lost race leaves the row untouched.

        Returns:
            The locked document, or ``None`` when another run owns it.
        """
        max_attempts = (
            config.MAX_PROCESSING_ATTEMPTS if max_attempts is None else max_attempts
        )
        stale_seconds = (
            config.PROCESSING_STALE_SECONDS if stale_seconds is None else stale_seconds
        )
        document = await self._run(
            self._acquire_processing_lock, document_id, max_attempts, stale_seconds
        )
        if document is None:
            logger.info("Document %s: processing lock not acquired", document_id)
        else:
            logger.info(
                "Document %s: processing lock acquired (attempt %d)",
                document_id,
                document.processing_attempts,
            )
        return document

    async def fail_exhausted(
        self,
        document_id: str,
        reason: str,
        *,
        max_attempts: int | None = None,
        stale_seconds: float | None = None,
    ) -> bool:
        """Fail a document that used up its attempts and holds no live lock.

        Returns:
            True if this call wrote ``failed``; False when the document is
            below the ceiling, terminal, or still owned by a live run.
        """
        max_attempts = (
            config.MAX_PROCESSING_ATTEMPTS if max_attempts is None else max_attempts
        )
        stale_seconds = (
            config.PROCESSING_STALE_SECONDS if stale_seconds is None else stale_seconds
        )
        updated = await self._run(
            self._execute,
            """
            UPDATE documents SET status = ?, error_reason = ?
            WHERE id = ?
              AND status = ?
              AND deleted_at IS NULL
              AND processing_attempts >= ?
              AND (processing_started_at IS NULL OR processing_started_at < ?)
            """,
            (
                DocumentStatus.FAILED.value,
                reason,
                document_id,
                DocumentStatus.PROCESSING.value,
                max_attempts,
                utc_before(stale_seconds),
            ),
        )
        if updated == 1:
            logger.info("Document %s: processing -> failed (%s)", document_id, reason)
        return updated == 1

    async def mark_ready(self, document_id: str) -> None:
        """Transition ``processing -> ready``.

        Raises:
            InvalidStateTransitionError: If the document is not ``processing``.
        """
        updated = await self._run(
            self._execute,
            "UPDATE documents SET status = ? WHERE id = ? AND status = ?",
            (
                DocumentStatus.READY.value,
                document_id,
                DocumentStatus.PROCESSING.value,
            ),
        )
        if updated != 1:
            msg = f"Document {document_id} not in expected state (processing)"
            raise InvalidStateTransitionError(msg)
        logger.info("Document %s: processing -> ready", document_id)

    async def mark_failed(self, document_id: str, error_reason: str) -> None:
        """Transition ``uploading|processing -> failed`` with a reason.

        Raises:
            InvalidStateTransitionError: If the document is already terminal.
        """
        reason = error_reason.strip() or "Unknown error"
        updated = await self._run(
            self._execute,
            f"""
            UPDATE documents SET status = ?, error_reason = ?
            WHERE id = ? AND status IN ({", ".join("?" * len(_FAILABLE_STATES))})
            """,  # noqa: S608
            (DocumentStatus.FAILED.value, reason, document_id, *_FAILABLE_STATES),
        )
        if updated != 1:
            msg = (
                f"Document {document_id} not in expected state (uploading or processing)"
            )
            raise InvalidStateTransitionError(msg)
        logger.info("Document %s: -> failed (%s)", document_id, reason)

    async def soft_delete_document(self, document_id: str) -> None:
        """Hide a document from listings without erasing it.

        Raises:
            NotFoundError: If the document is unknown or already deleted.
        """
        updated = await self._run(
            self._execute,
            "UPDATE documents SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
            (utc_now(), document_id),
        )
        if updated != 1:
            msg = f"Document not found or already deleted: {document_id}"
            raise NotFoundError(msg)
        logger.info("Document %s soft-deleted", document_id)
