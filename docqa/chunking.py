"""Splitting of normalized text units into retrieval-sized chunks."""

from __future__ import annotations

import math
import re
import uuid
from typing import TYPE_CHECKING

from .config import config
from .errors import ChunkLimitExceededError
from .models import DocumentChunk, FileType, TextUnit

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = config.get_logger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

PARAGRAPH_JOIN = "\n\n"
SENTENCE_JOIN = " "


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""  # noqa: DOC201
    return math.ceil(len(text) / 4)


class TextChunker:
    """Packs paragraphs into token-budgeted chunks; one chunk per CSV row."""

    def __init__(
        self,
        min_tokens: int | None = None,
        max_tokens: int | None = None,
        max_chunks: int | None = None,
    ) -> None:
        """Initialize the TextChunker.

        Args:
            min_tokens: Soft minimum; a chunk is closed once it reaches it.
            max_tokens: Hard maximum; paragraphs are never packed past it.
            max_chunks: Per-document ceiling on the number of chunks.
        """
        self.min_tokens = min_tokens or config.CHUNK_MIN_TOKENS
        self.max_tokens = max_tokens or config.CHUNK_MAX_TOKENS
        self.max_chunks = max_chunks or config.MAX_CHUNKS_PER_DOCUMENT

    def _split_oversized(self, paragraph: str) -> list[str]:
        """Break a paragraph above the maximum into sentence-sized pieces.

        A single sentence still above the maximum is cut at word boundaries.
        """  # noqa: DOC201
        max_chars = self.max_tokens * 4
        pieces: list[str] = []
        for sentence in _SENTENCE_END.split(paragraph):
            sentence = sentence.strip()  # noqa: PLW2901
            if not sentence:
                continue
            if estimate_tokens(sentence) <= self.max_tokens:
                pieces.append(sentence)
                continue
            current: list[str] = []
            length = 0
            for word in sentence.split():
                extra = len(word) + (1 if current else 0)
                if current and length + extra > max_chars:
                    pieces.append(SENTENCE_JOIN.join(current))
                    current, length = [], 0
                    extra = len(word)
                current.append(word)
                length += extra
            if current:
                pieces.append(SENTENCE_JOIN.join(current))
        return pieces

    def split_page(self, text: str) -> list[str]:
        """Greedily pack one page's paragraphs into chunk texts.

        Returns:
            Chunk texts for this page, in order.
        """
        segments: list[tuple[str, str]] = []
        for paragraph in _PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()  # noqa: PLW2901
            if not paragraph:
                continue
            if estimate_tokens(paragraph) > self.max_tokens:
                pieces = self._split_oversized(paragraph)
                segments.append((pieces[0], PARAGRAPH_JOIN))
                segments.extend((piece, SENTENCE_JOIN) for piece in pieces[1:])
            else:
                segments.append((paragraph, PARAGRAPH_JOIN))

        chunks: list[str] = []
        current = ""
        for segment, joiner in segments:
            candidate = f"{current}{joiner}{segment}" if current else segment
            if current and estimate_tokens(candidate) > self.max_tokens:
                chunks.append(current)
                candidate = segment
            current = candidate
            if estimate_tokens(current) >= self.min_tokens:
                chunks.append(current)
                current = ""
        if current:
            chunks.append(current)
        return chunks

    def chunk_units(
        self,
        units: Sequence[TextUnit],
        file_type: FileType,
        document_id: str,
        conversation_id: str,
    ) -> list[DocumentChunk]:
        """Turn normalized units into ordered chunks for one document.

        PDF pages never share a chunk. CSV rows map one-to-one to chunks.

        Returns:
            Chunks with a global zero-based ``chunk_index``.

        Raises:
            ChunkLimitExceededError: If the document yields more chunks than
                the per-document ceiling.
        """
        texts: list[tuple[str, dict[str, int]]] = []
        for unit in units:
            if not unit.text.strip():
                continue
            if file_type is FileType.CSV:
                texts.append((unit.text.strip(), unit.metadata))
            else:
                texts.extend((text, unit.metadata) for text in self.split_page(unit.text))

        if len(texts) > self.max_chunks:
            msg = (
                f"Document produced too many chunks: {len(texts)} "
                f"(max {self.max_chunks})"
            )
            raise ChunkLimitExceededError(msg)

        chunks = [
            DocumentChunk(
                id=str(uuid.uuid4()),
                document_id=document_id,
                conversation_id=conversation_id,
                chunk_index=index,
                content=text,
                metadata=dict(metadata),
            )
            for index, (text, metadata) in enumerate(texts)
        ]
        logger.info("Document %s split into %d chunks", document_id, len(chunks))
        return chunks
