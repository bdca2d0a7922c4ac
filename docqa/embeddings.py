"""OpenAI embeddings service."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_incrementing

from .clients import create_async_client
from .config import config
from .errors import EmbeddingError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from openai import AsyncOpenAI

logger = config.get_logger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Embedding batch failed (attempt %d), retrying in %.2fs: %s",
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        retry_state.outcome.exception() if retry_state.outcome else "unknown error",
    )


class EmbeddingService:
    """Handles batched, order-preserving embedding generation."""

    def __init__(  # noqa: PLR0913
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        client: AsyncOpenAI | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
    ) -> None:
        """Initialize the EmbeddingService.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            client: Pre-built provider client; overrides ``api_key``.
            batch_size: Texts per provider call. Defaults to
                config.EMBEDDING_BATCH_SIZE.
            max_retries: Retries per batch after the first attempt.
            retry_backoff: Base delay in seconds; the n-th retry waits
                ``n * retry_backoff``.
        """
        self.client = client or create_async_client(api_key)
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self.max_retries = (
            config.EMBEDDING_MAX_RETRIES if max_retries is None else max_retries
        )
        self.retry_backoff = (
            config.EMBEDDING_RETRY_BACKOFF_SECONDS
            if retry_backoff is None
            else retry_backoff
        )

    async def _embed_batch(self, batch_texts: list[str]) -> list[np.ndarray]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.retry_backoff, increment=self.retry_backoff),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=batch_texts,
                )
                vectors = [np.array(data.embedding) for data in response.data]
                if len(vectors) != len(batch_texts):
                    msg = (
                        f"Provider returned {len(vectors)} embeddings "
                        f"for {len(batch_texts)} inputs"
                    )
                    raise EmbeddingError(msg)
        return vectors

    async def get_embedding(self, text: str) -> np.ndarray:
        """Get embedding for a single text.

        Returns:
            np.ndarray: The embedding vector for the input text.
        """
        embeddings = await self.get_embeddings_batch([text])
        return embeddings[0]

    async def get_embeddings_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        """Get embeddings for multiple texts in fixed-size batches.

        Batches are embedded independently and concatenated in input order.

        Returns:
            list[np.ndarray]: One embedding per input text, in order.

        Raises:
            EmbeddingError: If a batch still fails after all retries.
        """
        embeddings: list[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch_texts = list(texts[i : i + self.batch_size])
            batch_number = i // self.batch_size + 1
            try:
                batch_embeddings = await self._embed_batch(batch_texts)
            except EmbeddingError:
                logger.exception("Error generating batch %d embeddings", batch_number)
                raise
            except Exception as exc:
                logger.exception("Error generating batch %d embeddings", batch_number)
                msg = f"Embedding batch {batch_number} failed: {exc}"
                raise EmbeddingError(msg) from exc
            embeddings.extend(batch_embeddings)
            logger.info("Generated embeddings for batch %d", batch_number)

        return embeddings
