"""Tests for EmbeddingService class."""

import logging
import os
from unittest.mock import patch

import numpy as np
import pytest
from openai import OpenAIError

from conftest import TestConstants, create_mock_embeddings_response
from docqa import EmbeddingService
from docqa.config import config
from docqa.errors import EmbeddingError


def test_init_with_api_key() -> None:
    service = EmbeddingService(api_key="test-key", model="text-embedding-3-small")
    assert service.model == "text-embedding-3-small"
    assert service.client.api_key == "test-key"


def test_init_with_env_api_key() -> None:
    with patch.dict(os.environ, {"OPENAI_API_KEY": "env-key"}):
        service = EmbeddingService(model="text-embedding-3-small")
        assert service.client.api_key == "env-key"


def test_init_defaults_from_config(embedding_service_factory) -> None:
    service = embedding_service_factory(model=None)
    assert service.model == config.EMBEDDING_MODEL
    assert service.batch_size == config.EMBEDDING_BATCH_SIZE
    assert service.max_retries == config.EMBEDDING_MAX_RETRIES


async def test_get_embedding_success(embedding_service, mock_client) -> None:
    mock_client.embeddings.create.side_effect = None
    mock_client.embeddings.create.return_value = create_mock_embeddings_response(
        [[0.1, 0.2, 0.3, 0.4, 0.5]]
    )

    result = await embedding_service.get_embedding("test text")

    mock_client.embeddings.create.assert_awaited_once_with(
        model=TestConstants.TEST_EMBEDDING_MODEL,
        input=["test text"],
    )
    assert isinstance(result, np.ndarray)
    np.testing.assert_array_equal(result, np.array([0.1, 0.2, 0.3, 0.4, 0.5]))


async def test_get_embeddings_batch_with_batching(
    embedding_service_factory, mock_client
) -> None:
    service = embedding_service_factory(batch_size=2)
    mock_client.embeddings.create.side_effect = [
        create_mock_embeddings_response([[0.1, 0.2], [0.3, 0.4]]),
        create_mock_embeddings_response([[0.5, 0.6], [0.7, 0.8]]),
        create_mock_embeddings_response([[0.9, 1.0]]),
    ]

    results = await service.get_embeddings_batch(["t1", "t2", "t3", "t4", "t5"])

    assert mock_client.embeddings.create.await_count == 3
    mock_client.embeddings.create.assert_any_await(
        model=TestConstants.TEST_EMBEDDING_MODEL, input=["t3", "t4"]
    )
    expected = [[0.1, 0.2], [0.3, 0.4], [0.5, 0.6], [0.7, 0.8], [0.9, 1.0]]
    for result, vector in zip(results, expected, strict=True):
        np.testing.assert_array_equal(result, np.array(vector))


async def test_get_embeddings_batch_empty_list(embedding_service, mock_client) -> None:
    results = await embedding_service.get_embeddings_batch([])

    mock_client.embeddings.create.assert_not_awaited()
    assert results == []


async def test_transient_failure_is_retried(embedding_service, mock_client) -> None:
    mock_client.embeddings.create.side_effect = [
        OpenAIError("rate limited"),
        create_mock_embeddings_response([[1.0, 0.0]]),
    ]

    results = await embedding_service.get_embeddings_batch(["text"])

    assert mock_client.embeddings.create.await_count == 2
    np.testing.assert_array_equal(results[0], np.array([1.0, 0.0]))


async def test_exhausted_retries_propagate(embedding_service_factory, mock_client) -> None:
    service = embedding_service_factory(max_retries=2)
    mock_client.embeddings.create.side_effect = OpenAIError("provider down")

    with pytest.raises(EmbeddingError, match="provider down"):
        await service.get_embeddings_batch(["text"])
    assert mock_client.embeddings.create.await_count == 3


async def test_partial_failure_stops_pipeline(
    embedding_service_factory, mock_client
) -> None:
    service = embedding_service_factory(batch_size=1, max_retries=0)
    mock_client.embeddings.create.side_effect = [
        create_mock_embeddings_response([[0.1, 0.2]]),
        OpenAIError("Second batch failed"),
    ]

    with pytest.raises(EmbeddingError, match="batch 2"):
        await service.get_embeddings_batch(["a", "b"])


async def test_count_mismatch_is_an_error(embedding_service_factory, mock_client) -> None:
    service = embedding_service_factory(max_retries=0)
    mock_client.embeddings.create.side_effect = None
    mock_client.embeddings.create.return_value = create_mock_embeddings_response(
        [[0.1, 0.2]]
    )

    with pytest.raises(EmbeddingError, match="1 embeddings for 2 inputs"):
        await service.get_embeddings_batch(["a", "b"])


async def test_linear_backoff_between_retries(
    embedding_service_factory, mock_client, caplog
) -> None:
    service = embedding_service_factory(max_retries=2, retry_backoff=0.01)
    mock_client.embeddings.create.side_effect = OpenAIError("flaky")

    with caplog.at_level(logging.WARNING), pytest.raises(EmbeddingError):
        await service.get_embeddings_batch(["text"])

    assert "(attempt 1), retrying in 0.01s" in caplog.text
    assert "(attempt 2), retrying in 0.02s" in caplog.text
