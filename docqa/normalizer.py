"""LLM-driven semantic normalization of parsed text units."""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections import OrderedDict
from typing import TYPE_CHECKING

from openai import OpenAIError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .clients import create_async_client
from .config import config
from .errors import NormalizationError, NormalizationInputTooLargeError
from .models import FileType, TextUnit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from openai import AsyncOpenAI

    from .database import CacheStore

logger = config.get_logger(__name__)

SYSTEM_PROMPT = """You are a data normalization engine.
Rewrite the input text into clear, concise, factual sentences.
Preserve the original meaning exactly.
Do NOT add new information.
Do NOT add assumptions or interpretations.
Do NOT infer missing values.
Do NOT use opinions or explanations.
If information is incomplete, keep it incomplete.
Output plain text only."""

USER_PROMPT_TEMPLATE = """Document type: {document_type}

{metadata_section}

Raw content:
{content}

Rewrite the content into complete, semantic sentences suitable for vector embedding.
If metadata is provided (e.g., page number, row index), incorporate it naturally \
into the semantic text."""


class EmptyNormalizationOutputError(NormalizationError):
    """The model answered with no text."""


def content_hash(content: str, metadata: dict[str, int] | None = None) -> str:
    """Cache key for a (content, metadata) pair."""  # noqa: DOC201
    payload = content + json.dumps(metadata or {}, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_user_prompt(
    content: str, file_type: FileType, metadata: dict[str, int] | None
) -> str:
    if metadata:
        metadata_section = (
            "Metadata (must be reflected in output if relevant):\n"
            + json.dumps(metadata, indent=2)
        )
    else:
        metadata_section = "Metadata: none"
    return USER_PROMPT_TEMPLATE.format(
        document_type=file_type.value,
        metadata_section=metadata_section,
        content=content,
    )


class SemanticNormalizer:
    """Rewrites raw text into faithful prose, backed by a two-tier cache.

    Lookups go to a bounded in-process LRU first, then to the durable
    ``semantic_cache`` table. Only successful model output is cached; the
    degraded raw-text fallback never is.
    """

    def __init__(  # noqa: PLR0913
        self,
        cache_store: CacheStore,
        client: AsyncOpenAI | None = None,
        *,
        model: str | None = None,
        max_chars: int | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        concurrency: int | None = None,
        memory_cache_size: int | None = None,
    ) -> None:
        self.cache_store = cache_store
        self.client = client or create_async_client()
        self.model = model or config.NORMALIZER_MODEL
        self.max_chars = max_chars or config.NORMALIZER_MAX_CHARS
        self.timeout = timeout or config.NORMALIZER_TIMEOUT_SECONDS
        self.max_retries = (
            config.NORMALIZER_MAX_RETRIES if max_retries is None else max_retries
        )
        self.retry_delay = (
            config.NORMALIZER_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        )
        self.concurrency = concurrency or config.NORMALIZER_CONCURRENCY
        self.memory_cache_size = memory_cache_size or config.NORMALIZER_MEMORY_CACHE_SIZE
        self._memory_cache: OrderedDict[str, str] = OrderedDict()
        self._in_flight: dict[str, asyncio.Future[str]] = {}

    def _remember(self, key: str, value: str) -> None:
        self._memory_cache[key] = value
        self._memory_cache.move_to_end(key)
        while len(self._memory_cache) > self.memory_cache_size:
            self._memory_cache.popitem(last=False)

    async def _lookup(self, key: str) -> str | None:
        if key in self._memory_cache:
            self._memory_cache.move_to_end(key)
            return self._memory_cache[key]
        cached = await self.cache_store.get_semantic(key)
        if cached is not None:
            self._remember(key, cached)
        return cached

    async def _complete(self, prompt: str) -> str:
        async with asyncio.timeout(self.timeout):
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            msg = "Semantic enrichment failed: empty output from LLM"
            raise EmptyNormalizationOutputError(msg)
        return text

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "Normalization attempt %d failed, retrying: %r",
            retry_state.attempt_number,
            retry_state.outcome.exception() if retry_state.outcome else None,
        )

    async def normalize(
        self,
        content: str,
        file_type: FileType,
        metadata: dict[str, int] | None = None,
    ) -> str:
        """Rewrite one text unit into semantic prose.

        Args:
            content: Raw unit text.
            file_type: Source format; decides whether raw text is an
                acceptable fallback once retries are exhausted.
            metadata: Positional metadata (page number or row index).

        Returns:
            The normalized text, or the raw content for formats that
            tolerate a degraded fallback.

        Raises:
            NormalizationInputTooLargeError: If ``content`` exceeds the
                character ceiling.
            NormalizationError: If retries are exhausted and the format has
                no safe fallback.
        """
        if len(content) > self.max_chars:
            msg = (
                f"Content too large for semantic normalization: {len(content)} "
                f"characters (max {self.max_chars})"
            )
            raise NormalizationInputTooLargeError(msg)

        key = content_hash(content, metadata)
        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug("Joining in-flight normalization for %s", key[:12])
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._resolve(key, content, file_type, metadata))
        self._in_flight[key] = task
        try:
            return await task
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    async def _resolve(
        self,
        key: str,
        content: str,
        file_type: FileType,
        metadata: dict[str, int] | None,
    ) -> str:
        cached = await self._lookup(key)
        if cached is not None:
            logger.debug("Semantic cache hit for %s", key[:12])
            return cached

        prompt = build_user_prompt(content, file_type, metadata)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(
                    (TimeoutError, OpenAIError, EmptyNormalizationOutputError)
                ),
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_fixed(self.retry_delay),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    semantic_text = await self._complete(prompt)
        except (TimeoutError, OpenAIError, EmptyNormalizationOutputError) as exc:
            reason = (
                f"timeout after {self.timeout:g}s"
                if isinstance(exc, TimeoutError)
                else str(exc)
            )
            if file_type.tolerates_degraded_fallback:
                logger.warning(
                    "Normalization exhausted (%s); falling back to raw %s text",
                    reason,
                    file_type.value,
                )
                return content
            msg = f"Semantic enrichment failed for {file_type.value}: {reason}"
            raise NormalizationError(msg) from exc

        self._remember(key, semantic_text)
        await self.cache_store.put_semantic(key, semantic_text)
        return semantic_text

    async def normalize_units(
        self, units: Sequence[TextUnit], file_type: FileType
    ) -> list[TextUnit]:
        """Normalize units concurrently, bounded by the concurrency limit.

        Results keep the input order and positional metadata. The first
        failure cancels every unit still waiting or in flight and is raised
        as is.
        """  # noqa: DOC201, DOC501
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _normalize_one(unit: TextUnit) -> TextUnit:
            async with semaphore:
                text = await self.normalize(unit.text, file_type, unit.metadata)
            return TextUnit(
                text=text, page_number=unit.page_number, row_index=unit.row_index
            )

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(_normalize_one(unit)) for unit in units]
        except ExceptionGroup as failures:
            raise failures.exceptions[0] from None

        normalized = [task.result() for task in tasks]
        logger.info("Normalized %d %s units", len(normalized), file_type.value)
        return normalized
