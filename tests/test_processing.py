"""Tests for the ingestion pipeline state machine."""

import asyncio
from unittest.mock import AsyncMock

import numpy as np
import pytest
from openai import OpenAIError

from conftest import TestConstants, create_mock_chat_response, set_document_columns
from docqa import IngestionPipeline, TextChunker
from docqa.database.base import utc_before
from docqa.errors import (
    ChunkLimitExceededError,
    EmbeddingError,
    NormalizationError,
    PDFParseError,
    StorageError,
)
from docqa.models import DocumentStatus, FileType, TextUnit


async def status_of(database, document_id):
    return await database.documents.get_document(document_id)


async def test_pdf_document_becomes_ready(
    pipeline, database, stored_document, revenue_pdf
) -> None:
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)

    assert await pipeline.process_document(document.id) is True

    finished = await status_of(database, document.id)
    assert finished.status is DocumentStatus.READY
    assert finished.processing_attempts == 1
    assert finished.error_reason is None

    chunks = await database.chunks.get_chunks(document.id)
    assert len(chunks) == 1
    assert chunks[0].metadata == {"page_number": 1}
    assert "$10,000" in chunks[0].content
    assert "Q1" in chunks[0].content
    assert chunks[0].embedding is not None


async def test_csv_document_becomes_ready(pipeline, database, stored_document) -> None:
    document = await stored_document(TestConstants.WIDGET_CSV, "record.csv", FileType.CSV)

    await pipeline.process_document(document.id)

    chunks = await database.chunks.get_chunks(document.id)
    assert [chunk.content for chunk in chunks] == [TestConstants.WIDGET_CHUNK]
    assert chunks[0].metadata == {"row_index": 1}
    assert chunks[0].chunk_index == 0


async def test_csv_chunks_follow_row_order(
    pipeline, database, stored_document, csv_factory
) -> None:
    document = await stored_document(csv_factory(12), "items.csv", FileType.CSV)

    await pipeline.process_document(document.id)

    chunks = await database.chunks.get_chunks(document.id)
    assert [chunk.chunk_index for chunk in chunks] == list(range(12))
    assert [chunk.metadata["row_index"] for chunk in chunks] == list(range(1, 13))
    assert chunks[4].content.startswith("This record describes a items. Name: item5.")


async def test_lock_held_elsewhere_is_a_noop(
    pipeline, database, stored_document, revenue_pdf, mock_client
) -> None:
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)
    await database.documents.acquire_processing_lock(document.id)

    assert await pipeline.process_document(document.id) is False

    current = await status_of(database, document.id)
    assert current.status is DocumentStatus.PROCESSING
    assert current.processing_attempts == 1
    mock_client.chat.completions.create.assert_not_awaited()


async def test_attempt_ceiling_forces_failure(
    pipeline, database, stored_document, revenue_pdf
) -> None:
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)
    set_document_columns(database, document.id, processing_attempts=pipeline.max_attempts)

    assert await pipeline.process_document(document.id) is True

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert "Exceeded maximum processing attempts" in failed.error_reason


async def test_attempt_ceiling_spares_a_live_run(
    pipeline, database, stored_document, revenue_pdf
) -> None:
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)
    set_document_columns(
        database, document.id, processing_attempts=pipeline.max_attempts - 1
    )
    entered = asyncio.Event()
    release = asyncio.Event()
    normalize_units = pipeline.normalizer.normalize_units

    async def _held(units, file_type):  # noqa: ANN001, ANN202
        entered.set()
        await release.wait()
        return await normalize_units(units, file_type)

    pipeline.normalizer.normalize_units = _held
    live_run = asyncio.create_task(pipeline.process_document(document.id))
    await entered.wait()

    assert await pipeline.process_document(document.id) is False
    assert (await status_of(database, document.id)).status is DocumentStatus.PROCESSING

    release.set()
    assert await live_run is True
    finished = await status_of(database, document.id)
    assert finished.status is DocumentStatus.READY
    assert finished.processing_attempts == pipeline.max_attempts


async def test_attempt_ceiling_reclaims_a_stale_run(
    pipeline, database, stored_document, revenue_pdf
) -> None:
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)
    set_document_columns(
        database,
        document.id,
        processing_attempts=pipeline.max_attempts,
        processing_started_at=utc_before(900),
    )

    assert await pipeline.process_document(document.id) is True
    assert (await status_of(database, document.id)).status is DocumentStatus.FAILED


async def test_missing_storage_path_fails(pipeline, database, conversation) -> None:
    document = await database.documents.insert_document(
        conversation.id, "report.pdf", FileType.PDF
    )
    set_document_columns(database, document.id, status="processing")

    with pytest.raises(ValueError, match="no storage_path"):
        await pipeline.process_document(document.id)

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert failed.error_reason == "Missing storage_path"


async def test_missing_blob_fails(pipeline, database, stored_document, storage) -> None:
    document = await stored_document(TestConstants.WIDGET_CSV, "record.csv", FileType.CSV)
    await storage.delete(document.storage_path)

    with pytest.raises(StorageError):
        await pipeline.process_document(document.id)

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert "not found" in failed.error_reason


async def test_parse_error_is_recorded(
    pipeline, database, stored_document, pdf_factory
) -> None:
    document = await stored_document(pdf_factory([""]), "blank.pdf", FileType.PDF)

    with pytest.raises(PDFParseError):
        await pipeline.process_document(document.id)

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert failed.error_reason == "PDF contains no extractable text"


async def test_csv_normalization_failure_is_fatal(
    pipeline, database, stored_document, mock_client
) -> None:
    mock_client.chat.completions.create.side_effect = None
    mock_client.chat.completions.create.return_value = create_mock_chat_response("")
    document = await stored_document(TestConstants.WIDGET_CSV, "record.csv", FileType.CSV)

    with pytest.raises(NormalizationError):
        await pipeline.process_document(document.id)

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert await database.chunks.get_chunks(document.id) == []


async def test_csv_failure_stops_remaining_rows(
    pipeline, database, stored_document, csv_factory, mock_client
) -> None:
    async def _first_row_fails(*, messages, **_):  # noqa: ANN001, ANN202
        if "Name: item1." in messages[-1]["content"]:
            return create_mock_chat_response("")
        await asyncio.sleep(0.2)
        return create_mock_chat_response("done")

    mock_client.chat.completions.create.side_effect = _first_row_fails
    document = await stored_document(csv_factory(9), "items.csv", FileType.CSV)

    with pytest.raises(NormalizationError):
        await pipeline.process_document(document.id)
    calls_at_failure = mock_client.chat.completions.create.await_count
    await asyncio.sleep(0.3)

    assert mock_client.chat.completions.create.await_count == calls_at_failure
    assert (await status_of(database, document.id)).status is DocumentStatus.FAILED


async def test_pdf_normalization_failure_degrades(
    pipeline, database, stored_document, revenue_pdf, mock_client
) -> None:
    mock_client.chat.completions.create.side_effect = OpenAIError("provider down")
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)

    await pipeline.process_document(document.id)

    assert (await status_of(database, document.id)).status is DocumentStatus.READY
    chunks = await database.chunks.get_chunks(document.id)
    assert chunks[0].content == TestConstants.REVENUE_TEXT


async def test_embedding_failure_leaves_document_unsearchable(
    pipeline, database, conversation, stored_document, revenue_pdf, mock_client
) -> None:
    mock_client.embeddings.create.side_effect = OpenAIError("quota exceeded")
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)

    with pytest.raises(EmbeddingError):
        await pipeline.process_document(document.id)

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert "quota exceeded" in failed.error_reason
    assert len(await database.chunks.get_chunks(document.id)) == 1
    assert await database.chunks.search(conversation.id, np.ones(256)) == []


async def test_zero_chunks_marks_failed(
    pipeline, database, stored_document, revenue_pdf
) -> None:
    pipeline.normalizer.normalize_units = AsyncMock(
        return_value=[TextUnit(text="   ", page_number=1)]
    )
    document = await stored_document(revenue_pdf, "report.pdf", FileType.PDF)

    assert await pipeline.process_document(document.id) is True

    failed = await status_of(database, document.id)
    assert failed.status is DocumentStatus.FAILED
    assert failed.error_reason == "No chunks generated"


async def test_chunk_ceiling_fails_before_embedding(
    database, storage, normalizer, embedding_service, stored_document, csv_factory,
    mock_client,
) -> None:
    pipeline = IngestionPipeline(
        database, storage, normalizer, TextChunker(max_chunks=2), embedding_service
    )
    document = await stored_document(csv_factory(3), "items.csv", FileType.CSV)

    with pytest.raises(ChunkLimitExceededError):
        await pipeline.process_document(document.id)

    assert (await status_of(database, document.id)).status is DocumentStatus.FAILED
    mock_client.embeddings.create.assert_not_awaited()


async def test_reprocessing_replaces_all_chunks(
    pipeline, database, stored_document, csv_factory
) -> None:
    document = await stored_document(csv_factory(3), "items.csv", FileType.CSV)
    await pipeline.process_document(document.id)
    first_run = {chunk.id for chunk in await database.chunks.get_chunks(document.id)}

    set_document_columns(
        database, document.id, status="processing", processing_started_at=None
    )
    await pipeline.process_document(document.id)

    second_run = await database.chunks.get_chunks(document.id)
    assert len(second_run) == 3
    assert first_run.isdisjoint({chunk.id for chunk in second_run})
    assert (await status_of(database, document.id)).processing_attempts == 2
