"""Upload validation run before any document state is created."""

from pathlib import PurePath

from .config import config
from .errors import DocumentParseError, DocumentValidationError
from .models import FileType
from .parsers import DocumentParser

logger = config.get_logger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({
    "application/pdf",
    "text/csv",
    "application/vnd.ms-excel",
    "text/plain",
})

_EXTENSION_TYPES = {".pdf": FileType.PDF, ".csv": FileType.CSV}


def detect_file_type(filename: str, content_type: str | None = None) -> FileType:
    """Resolve the upload format from its content type or extension.

    Returns:
        The detected ``FileType``.

    Raises:
        DocumentValidationError: If the type is not a PDF or CSV variant.
    """
    invalid = "Invalid file type. Only PDF and CSV files are supported."
    if content_type:
        content_type = content_type.split(";")[0].strip().lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise DocumentValidationError(invalid)
        if "pdf" in content_type:
            return FileType.PDF
        extension_type = _EXTENSION_TYPES.get(PurePath(filename).suffix.lower())
        if extension_type is FileType.PDF:
            raise DocumentValidationError(invalid)
        return FileType.CSV

    extension_type = _EXTENSION_TYPES.get(PurePath(filename).suffix.lower())
    if extension_type is None:
        raise DocumentValidationError(invalid)
    return extension_type


def validate_file_size(data: bytes, max_bytes: int | None = None) -> None:
    """Reject empty payloads and payloads above the size ceiling.

    Raises:
        DocumentValidationError: If the payload size is out of bounds.
    """
    max_bytes = config.MAX_FILE_SIZE_BYTES if max_bytes is None else max_bytes
    if not data:
        msg = "File is empty."
        raise DocumentValidationError(msg)
    if len(data) > max_bytes:
        limit_mb = max_bytes / 1024 / 1024
        msg = f"File too large. Maximum size is {limit_mb:g}MB."
        raise DocumentValidationError(msg)


def validate_csv_rows(data: bytes, max_rows: int | None = None) -> None:
    """Parse the CSV and enforce the row ceiling.

    Raises:
        DocumentValidationError: If the CSV is malformed or has too many rows.
    """
    max_rows = config.MAX_CSV_ROWS if max_rows is None else max_rows
    try:
        DocumentParser.parse_csv(data, max_rows=max_rows)
    except DocumentParseError as exc:
        raise DocumentValidationError(str(exc)) from exc


def validate_pdf_pages(data: bytes, max_pages: int | None = None) -> None:
    """Open the PDF and enforce the page ceiling.

    Raises:
        DocumentValidationError: If the PDF is unreadable or has too many pages.
    """
    max_pages = config.MAX_PDF_PAGES if max_pages is None else max_pages
    try:
        page_count = DocumentParser.count_pdf_pages(data)
    except DocumentParseError as exc:
        raise DocumentValidationError(str(exc)) from exc
    if page_count > max_pages:
        msg = (
            "Document too large for processing: "
            f"found {page_count} pages (max {max_pages})"
        )
        raise DocumentValidationError(msg)


def validate_document(
    filename: str,
    data: bytes,
    content_type: str | None = None,
    *,
    max_file_size: int | None = None,
    max_csv_rows: int | None = None,
    max_pdf_pages: int | None = None,
) -> FileType:
    """Run size, type and format-specific checks in sequence.

    Returns:
        The validated ``FileType``.
    """
    validate_file_size(data, max_file_size)
    file_type = detect_file_type(filename, content_type)
    if file_type is FileType.CSV:
        validate_csv_rows(data, max_csv_rows)
    else:
        validate_pdf_pages(data, max_pdf_pages)
    logger.info("Validated %s upload %s (%d bytes)", file_type, filename, len(data))
    return file_type
