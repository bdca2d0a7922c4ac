"""Exception hierarchy for document ingestion and retrieval."""

from typing import Literal

PDFErrorCode = Literal["INVALID_PDF", "ENCRYPTED_PDF", "EMPTY_TEXT"]


class DocQAError(Exception):
    """Base class for all DocQA errors."""


class DocumentValidationError(DocQAError):
    """Upload rejected before any state was created."""


class DocumentAlreadyExistsError(DocumentValidationError):
    """The conversation already holds a non-deleted document."""


class NotFoundError(DocQAError):
    """Unknown or soft-deleted document or conversation."""


class DocumentParseError(DocQAError):
    """Input bytes could not be turned into text units."""


class PDFParseError(DocumentParseError):
    def __init__(self, message: str, code: PDFErrorCode) -> None:
        super().__init__(message)
        self.code = code


class CSVParseError(DocumentParseError):
    pass


class NormalizationError(DocQAError):
    """Semantic normalization failed with no safe fallback."""


class NormalizationInputTooLargeError(NormalizationError):
    pass


class ChunkLimitExceededError(DocQAError):
    pass


class EmbeddingError(DocQAError):
    """Embedding retries were exhausted for a batch."""


class ConsistencyError(DocQAError):
    """A batch write affected a different number of rows than expected."""


class StorageError(DocQAError):
    pass


class InvalidStateTransitionError(DocQAError):
    """A compare-and-set status update matched no row."""
