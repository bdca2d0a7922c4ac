"""Test configuration and fixtures for DocQA tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Mock provider client and API responses
- Sample document factories (PDF and CSV bytes)
- Database, storage and service fixtures
"""

import hashlib
import io
import re
import sqlite3
from unittest.mock import AsyncMock, Mock

import numpy as np
import pypdf
import pytest

from docqa import (
    ConversationManager,
    DocumentService,
    EmbeddingService,
    IngestionPipeline,
    LocalFileStorage,
    SemanticNormalizer,
    TextChunker,
)
from docqa.database import Database

_TOKEN = re.compile(r"[a-z0-9]+")
_RAW_CONTENT = re.compile(r"Raw content:\n(.*)\n\nRewrite the content", re.DOTALL)
_CONTEXT = re.compile(r"Context:\n(.*)\n\nQuestion:", re.DOTALL)


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    TEST_API_KEY = "test-key"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    EMBEDDING_DIMENSION = 256

    REVENUE_TEXT = "Revenue was $10,000 in Q1."
    REVENUE_QUESTION = "What was Q1 revenue?"
    WIDGET_CSV = b"name,price\nwidget,9.99\n"
    WIDGET_CHUNK = "This record describes a record. Name: widget. Price: 9.99."


def hashed_embedding(
    text: str, dimension: int = TestConstants.EMBEDDING_DIMENSION
) -> list[float]:
    """Deterministic bag-of-words embedding; shared words raise similarity."""
    vector = np.zeros(dimension)
    for token in _TOKEN.findall(text.lower()):
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        vector[int.from_bytes(digest[:4], "big") % dimension] += 1.0
    norm = np.linalg.norm(vector)
    return (vector / norm).tolist() if norm else vector.tolist()


def create_mock_embeddings_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response."""
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


async def fake_embeddings_create(*, model: str, input: list[str]) -> Mock:  # noqa: A002, ARG001
    return create_mock_embeddings_response([hashed_embedding(text) for text in input])


async def fake_chat_create(*, messages: list[dict[str, str]], **_: object) -> Mock:
    """Echo normalization input back; answer questions by quoting the context."""
    prompt = messages[-1]["content"]
    if raw := _RAW_CONTENT.search(prompt):
        return create_mock_chat_response(raw.group(1))
    if context := _CONTEXT.search(prompt):
        return create_mock_chat_response(f"According to the document: {context.group(1)}")
    return create_mock_chat_response("")


@pytest.fixture
def mock_client():
    """OpenAI-compatible async client with deterministic fake behavior."""
    client = Mock()
    client.embeddings.create = AsyncMock(side_effect=fake_embeddings_create)
    client.chat.completions.create = AsyncMock(side_effect=fake_chat_create)
    return client


# -- sample documents --------------------------------------------------------


def _escape_pdf_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _content_stream(text: str) -> bytes:
    if not text:
        return b""
    operations = ["BT", "/F1 12 Tf", "72 720 Td"]
    for line_number, line in enumerate(text.split("\n")):
        if line_number:
            operations.append("0 -16 Td")
        operations.append(f"({_escape_pdf_text(line)}) Tj")
    operations.append("ET")
    return "\n".join(operations).encode("latin-1")


def build_pdf(pages: list[str]) -> bytes:
    """Build a minimal PDF with one Helvetica text block per page."""
    page_ids = [4 + 2 * i for i in range(len(pages))]
    kids = " ".join(f"{page_id} 0 R" for page_id in page_ids)
    objects: dict[int, bytes] = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        2: f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode(),
        3: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    }
    for page_id, text in zip(page_ids, pages, strict=True):
        stream = _content_stream(text)
        objects[page_id] = (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
        ).encode()
        objects[page_id + 1] = (
            f"<< /Length {len(stream)} >>\nstream\n".encode()
            + stream
            + b"\nendstream"
        )

    output = bytearray(b"%PDF-1.4\n")
    offsets: dict[int, int] = {}
    for object_id in sorted(objects):
        offsets[object_id] = len(output)
        output += f"{object_id} 0 obj\n".encode() + objects[object_id] + b"\nendobj\n"
    xref_offset = len(output)
    size = max(objects) + 1
    output += f"xref\n0 {size}\n".encode()
    output += b"0000000000 65535 f \n"
    for object_id in range(1, size):
        output += f"{offsets[object_id]:010d} 00000 n \n".encode()
    output += (
        f"trailer\n<< /Size {size} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(output)


def build_encrypted_pdf(password: str = "secret") -> bytes:
    writer = pypdf.PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.encrypt(password)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def build_csv(rows: int, header: str = "name,price") -> bytes:
    lines = [header] + [f"item{i},{i}.50" for i in range(1, rows + 1)]
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def pdf_factory():
    """Factory for PDF bytes from a list of page texts."""
    return build_pdf


@pytest.fixture
def csv_factory():
    """Factory for CSV bytes with ``rows`` data rows."""
    return build_csv


@pytest.fixture
def revenue_pdf():
    return build_pdf([TestConstants.REVENUE_TEXT])


@pytest.fixture
def encrypted_pdf():
    return build_encrypted_pdf()


# -- stores and services -----------------------------------------------------


@pytest.fixture
def database(tmp_path) -> Database:
    """Fresh sqlite database per test."""
    return Database(tmp_path / "docqa.db")


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
async def conversation(database):
    return await database.conversations.create_conversation()


@pytest.fixture
def embedding_service_factory(mock_client):
    """Factory for creating EmbeddingService instances on the mock client."""

    def _create_service(**kwargs) -> EmbeddingService:  # noqa: ANN003
        kwargs.setdefault("client", mock_client)
        kwargs.setdefault("model", TestConstants.TEST_EMBEDDING_MODEL)
        kwargs.setdefault("retry_backoff", 0)
        return EmbeddingService(**kwargs)

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    return embedding_service_factory()


@pytest.fixture
def normalizer_factory(database, mock_client):
    """Factory for SemanticNormalizer instances with fast retries."""

    def _create_normalizer(**kwargs) -> SemanticNormalizer:  # noqa: ANN003
        kwargs.setdefault("retry_delay", 0)
        return SemanticNormalizer(database.cache, mock_client, **kwargs)

    return _create_normalizer


@pytest.fixture
def normalizer(normalizer_factory):
    return normalizer_factory()


@pytest.fixture
def pipeline(database, storage, normalizer, embedding_service) -> IngestionPipeline:
    return IngestionPipeline(
        database, storage, normalizer, TextChunker(), embedding_service
    )


@pytest.fixture
def document_service(database, storage, pipeline) -> DocumentService:
    return DocumentService(database, storage, pipeline)


@pytest.fixture
def conversation_manager(database, embedding_service, mock_client):
    return ConversationManager(database, embedding_service, mock_client)


@pytest.fixture
def stored_document(database, storage, conversation):
    """Factory that inserts a document and stores its bytes, leaving it processing."""

    async def _create(data: bytes, filename: str, file_type):  # noqa: ANN001, ANN202
        document = await database.documents.insert_document(
            conversation.id, filename, file_type
        )
        path = await storage.save(data, conversation.id, document.id, filename)
        await database.documents.mark_processing(document.id, path)
        return await database.documents.get_document(document.id)

    return _create


def set_document_columns(database, document_id, **columns) -> None:
    """Write document columns directly, bypassing the status transitions."""
    assignments = ", ".join(f"{name} = ?" for name in columns)
    with sqlite3.connect(database.db_path) as conn:
        conn.execute(
            f"UPDATE documents SET {assignments} WHERE id = ?",  # noqa: S608
            (*columns.values(), document_id),
        )
