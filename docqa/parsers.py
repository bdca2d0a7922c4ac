"""Format parsers turning uploaded bytes into ordered text units."""

from __future__ import annotations

import io
import re
from pathlib import PurePath

import pandas as pd
import pypdf
from pypdf.errors import DependencyError, FileNotDecryptedError, PdfReadError

from .config import config
from .errors import CSVParseError, PDFParseError
from .models import FileType, TextUnit

logger = config.get_logger(__name__)

DEFAULT_ENTITY = "record"

_HORIZONTAL_WS = re.compile(r"[ \t\f\v\u00a0]+")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_UNNAMED_COLUMN = re.compile(r"^Unnamed: \d+$")


def normalize_whitespace(text: str) -> str:
    """Collapse spaces/tabs and keep paragraph breaks as a blank line.

    Returns:
        Text whose paragraphs are joined by ``"\\n\\n"`` and whose lines
        inside a paragraph are joined by single spaces.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = []
    for block in _PARAGRAPH_BREAK.split(text):
        lines = (_HORIZONTAL_WS.sub(" ", line).strip() for line in block.split("\n"))
        paragraph = " ".join(line for line in lines if line)
        if paragraph:
            paragraphs.append(paragraph)
    return "\n\n".join(paragraphs)


def normalize_header(header: str) -> str:
    """Turn ``unit_price`` / ``unitPrice`` into ``Unit Price``."""  # noqa: DOC201
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", header.strip().replace("_", " "))
    return re.sub(r"\b\w", lambda m: m.group().upper(), spaced.lower())


def normalize_entity(entity: str) -> str:
    """Turn a logical name such as ``customer-orders`` into ``customer orders``."""  # noqa: DOC201
    spaced = re.sub(r"[_-]", " ", entity.strip())
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", spaced)
    return " ".join(spaced.lower().split()) or DEFAULT_ENTITY


def entity_from_filename(filename: str) -> str:
    """Derive the CSV entity name from a filename stem."""  # noqa: DOC201
    return normalize_entity(PurePath(filename).stem)


class DocumentParser:
    """Handles parsing of PDF and CSV uploads into text units."""

    @staticmethod
    def _open_pdf(data: bytes) -> pypdf.PdfReader:
        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
        except PdfReadError as exc:
            msg = "Invalid or corrupted PDF file"
            raise PDFParseError(msg, "INVALID_PDF") from exc
        except Exception as exc:
            msg = f"Failed to parse PDF: {exc}"
            raise PDFParseError(msg, "INVALID_PDF") from exc

        if reader.is_encrypted:
            try:
                decrypted = reader.decrypt("")
            except (DependencyError, NotImplementedError, PdfReadError) as exc:
                msg = "PDF is encrypted and cannot be parsed"
                raise PDFParseError(msg, "ENCRYPTED_PDF") from exc
            if decrypted == pypdf.PasswordType.NOT_DECRYPTED:
                msg = "PDF is encrypted and cannot be parsed"
                raise PDFParseError(msg, "ENCRYPTED_PDF")
        return reader

    @classmethod
    def count_pdf_pages(cls, data: bytes) -> int:
        """Return the number of pages in a PDF.

        Raises:
            PDFParseError: If the PDF is corrupt or password-protected.
        """  # noqa: DOC201
        reader = cls._open_pdf(data)
        try:
            return len(reader.pages)
        except (PdfReadError, FileNotDecryptedError) as exc:
            msg = "Invalid or corrupted PDF file"
            raise PDFParseError(msg, "INVALID_PDF") from exc

    @classmethod
    def parse_pdf(cls, data: bytes) -> list[TextUnit]:
        """Extract whitespace-normalized text per page.

        Pages without text are skipped; page numbers stay 1-based positions in
        the original document.

        Returns:
            One ``TextUnit`` per page that yielded text.

        Raises:
            PDFParseError: ``INVALID_PDF`` for corrupt input, ``ENCRYPTED_PDF``
                when a password is required, ``EMPTY_TEXT`` when no page
                yields text.
        """
        reader = cls._open_pdf(data)
        units: list[TextUnit] = []
        try:
            for page_num, page in enumerate(reader.pages, start=1):
                page_text = normalize_whitespace(page.extract_text() or "")
                if page_text:
                    units.append(TextUnit(text=page_text, page_number=page_num))
                else:
                    logger.debug("Skipping empty PDF page %d", page_num)
        except FileNotDecryptedError as exc:
            msg = "PDF is encrypted and cannot be parsed"
            raise PDFParseError(msg, "ENCRYPTED_PDF") from exc
        except Exception as exc:
            logger.exception("Error extracting PDF text")
            msg = "Invalid or corrupted PDF file"
            raise PDFParseError(msg, "INVALID_PDF") from exc

        if not units:
            msg = "PDF contains no extractable text"
            raise PDFParseError(msg, "EMPTY_TEXT")

        logger.info("Parsed PDF into %d page units", len(units))
        return units

    @staticmethod
    def _read_csv_frame(text: str) -> pd.DataFrame:
        try:
            frame = pd.read_csv(
                io.StringIO(text),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                skipinitialspace=True,
                engine="python",
                on_bad_lines=lambda fields: fields,
            )
        except pd.errors.EmptyDataError as exc:
            msg = "CSV file is empty or has no data rows"
            raise CSVParseError(msg) from exc
        except (pd.errors.ParserError, ValueError) as exc:
            msg = f"Invalid CSV format: {exc}"
            raise CSVParseError(msg) from exc
        frame.columns = [str(column).strip() for column in frame.columns]
        return frame

    @classmethod
    def parse_csv(
        cls,
        data: bytes | str,
        entity_name: str = DEFAULT_ENTITY,
        max_rows: int | None = None,
    ) -> list[TextUnit]:
        """Serialize each CSV data row into a sentence-per-field prose block.

        Args:
            data: Raw CSV bytes (UTF-8) or already-decoded text.
            entity_name: Logical name of what a row describes.
            max_rows: Row ceiling; ``None`` disables the check.

        Returns:
            One ``TextUnit`` per data row with a 1-based ``row_index``.

        Raises:
            CSVParseError: If the file is empty, has no headers, is malformed or
                exceeds ``max_rows``.
        """
        try:
            text = data.decode("utf-8-sig") if isinstance(data, bytes) else data
        except UnicodeDecodeError as exc:
            msg = f"Invalid CSV format: {exc}"
            raise CSVParseError(msg) from exc

        frame = cls._read_csv_frame(text)
        headers = [
            column
            for column in frame.columns
            if column and not _UNNAMED_COLUMN.match(column)
        ]
        if not headers:
            msg = "CSV file has no headers"
            raise CSVParseError(msg)
        if frame.empty:
            msg = "CSV file is empty or has no data rows"
            raise CSVParseError(msg)
        if max_rows is not None and len(frame) > max_rows:
            msg = (
                f"CSV file exceeds maximum row limit: found {len(frame)} rows "
                f"(max {max_rows})"
            )
            raise CSVParseError(msg)

        entity = normalize_entity(entity_name)
        labels = {header: normalize_header(header) for header in headers}
        units: list[TextUnit] = []
        for row_index, record in enumerate(frame.to_dict("records"), start=1):
            parts = [f"This record describes a {entity}."]
            filled = 0
            for header in headers:
                value = record.get(header)
                if value is None or pd.isna(value):
                    continue
                value = str(value).strip()
                if not value:
                    continue
                parts.append(f"{labels[header]}: {value}.")
                filled += 1
            if filled != len(headers):
                logger.warning(
                    "CSV row %d: expected %d values, found %d; continuing",
                    row_index,
                    len(headers),
                    filled,
                )
            units.append(TextUnit(text=" ".join(parts), row_index=row_index))

        logger.info("Parsed CSV into %d row units", len(units))
        return units

    @classmethod
    def parse_document(
        cls,
        data: bytes,
        file_type: FileType,
        filename: str,
    ) -> list[TextUnit]:
        """Parse bytes with the parser matching ``file_type``.

        Returns:
            Ordered text units for the document.
        """
        if file_type is FileType.PDF:
            return cls.parse_pdf(data)
        return cls.parse_csv(data, entity_name=entity_from_filename(filename))
