"""Data models for the DocQA application."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import numpy as np


class DocumentStatus(StrEnum):
    """Lifecycle states of an uploaded document."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no automatic transition leaves this state."""
        return self in {DocumentStatus.READY, DocumentStatus.FAILED}


class FileType(StrEnum):
    """Supported upload formats.

    Each format declares whether its pipeline tolerates a degraded fallback
    when semantic normalization is exhausted: prose survives being embedded
    as raw text, structured rows do not.
    """

    PDF = "pdf"
    CSV = "csv"

    @property
    def tolerates_degraded_fallback(self) -> bool:
        return self is FileType.PDF


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Conversation:
    id: str
    created_at: str
    deleted_at: str | None = None


@dataclass
class Document:
    """An uploaded file and its ingestion state."""

    id: str
    conversation_id: str
    filename: str
    file_type: FileType
    status: DocumentStatus
    created_at: str
    storage_path: str | None = None
    processing_started_at: str | None = None
    processing_attempts: int = 0
    error_reason: str | None = None
    deleted_at: str | None = None

    def to_status_dict(self) -> dict[str, Any]:
        """Public view used by status polling; omits operator-only fields."""
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "filename": self.filename,
            "file_type": self.file_type.value,
            "status": self.status.value,
            "created_at": self.created_at,
        }


@dataclass
class TextUnit:
    """A parsed unit of document text with its position.

    PDF units carry ``page_number``; CSV units carry ``row_index``.
    """

    text: str
    page_number: int | None = None
    row_index: int | None = None

    @property
    def metadata(self) -> dict[str, int]:
        if self.page_number is not None:
            return {"page_number": self.page_number}
        if self.row_index is not None:
            return {"row_index": self.row_index}
        return {}


@dataclass
class DocumentChunk:
    """Represents a retrieval-sized chunk of a document."""

    id: str
    document_id: str
    conversation_id: str
    chunk_index: int
    content: str
    metadata: dict[str, int] = field(default_factory=dict)
    embedding: np.ndarray | None = None


@dataclass
class SearchMatch:
    """A chunk returned by similarity search."""

    chunk_id: str
    document_id: str
    content: str
    similarity: float


@dataclass
class Source:
    document_id: str
    chunk_id: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "chunk_id": self.chunk_id,
            "similarity": self.similarity,
        }


@dataclass
class Answer:
    """Result of a retrieval-augmented answer."""

    text: str
    sources: list[Source] = field(default_factory=list)
    cached: bool = False


@dataclass
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: str
