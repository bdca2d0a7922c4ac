"""Conversations, messages and retrieval-augmented answers."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

from openai import OpenAIError

from .clients import create_async_client
from .config import config
from .errors import NotFoundError
from .models import Answer, MessageRole, SearchMatch, Source

if TYPE_CHECKING:
    from openai import AsyncOpenAI

    from .database import Database
    from .embeddings import EmbeddingService
    from .models import Conversation, Message

logger = config.get_logger(__name__)

NO_DOCUMENTS_ANSWER = (
    "Please upload a document to this conversation before asking questions. "
    "If you already uploaded one, wait until it has finished processing."
)
NO_MATCHES_ANSWER = (
    "I could not find relevant information in the uploaded document "
    "to answer your question."
)
FALLBACK_PREFIX = (
    "I could not generate an answer right now. "
    "These are the most relevant excerpts from your document:\n\n"
)

SYSTEM_PROMPT = (
    "You answer questions using ONLY the provided document context.\n"
    "Use the following guidelines:\n"
    "1. Answer strictly from the context; do not use outside knowledge\n"
    "2. Quote figures, dates and names exactly as they appear\n"
    "3. If the context does not contain the answer, say that the document "
    "does not contain this information\n"
    "4. Keep the answer short and factual"
)


def query_cache_key(  # noqa: PLR0913
    question: str,
    document_ids: list[str],
    model: str,
    temperature: float,
    match_count: int,
) -> str:
    """Hash of everything that determines an answer for a fixed document set."""  # noqa: DOC201
    payload = json.dumps(
        {
            "question": question,
            "document_ids": sorted(document_ids),
            "model": model,
            "temperature": temperature,
            "match_count": match_count,
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_context(
    matches: list[SearchMatch],
    chunk_chars: int | None = None,
    max_chars: int | None = None,
) -> str:
    """Concatenate match contents in search order within the size caps.

    Returns:
        str: Context block of truncated chunk contents separated by blank
            lines.
    """
    chunk_chars = chunk_chars or config.CONTEXT_CHUNK_CHARS
    max_chars = max_chars or config.CONTEXT_MAX_CHARS
    parts: list[str] = []
    total = 0
    for match in matches:
        content = match.content[:chunk_chars]
        separator = 2 if parts else 0
        if total + separator + len(content) > max_chars:
            remaining = max_chars - total - separator
            if remaining > 0:
                parts.append(content[:remaining])
            break
        parts.append(content)
        total += separator + len(content)
    return "\n\n".join(parts)


class ConversationManager:
    """Owns conversation state and answers questions over ready documents."""

    def __init__(
        self,
        database: Database,
        embedding_service: EmbeddingService,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
    ) -> None:
        """Initialize ConversationManager.

        Args:
            database: Stores for conversations, documents, chunks and caches.
            embedding_service: Embeds questions for similarity search.
            client: Completion client; built from config when omitted.
            model: Chat model name. If None, uses config.CHAT_MODEL.
        """
        self.database = database
        self.embedding_service = embedding_service
        self.client = client or create_async_client()
        self.model = model or config.CHAT_MODEL
        self.temperature = config.CHAT_TEMPERATURE
        self.max_tokens = config.CHAT_MAX_TOKENS
        self.match_threshold = config.MATCH_THRESHOLD
        self.match_count = config.MATCH_COUNT

    # -- conversations -------------------------------------------------------

    async def create_conversation(self) -> Conversation:
        return await self.database.conversations.create_conversation()

    async def list_conversations(self) -> list[Conversation]:
        return await self.database.conversations.list_conversations()

    async def delete_conversation(self, conversation_id: str) -> None:
        """Soft-delete; documents, chunks and messages are left in place."""
        await self.database.conversations.soft_delete_conversation(conversation_id)

    async def get_messages(self, conversation_id: str) -> list[Message]:
        await self._require_conversation(conversation_id)
        return await self.database.conversations.list_messages(conversation_id)

    async def _require_conversation(self, conversation_id: str) -> None:
        if await self.database.conversations.get_conversation(conversation_id) is None:
            msg = f"Conversation not found: {conversation_id}"
            raise NotFoundError(msg)

    # -- answering -----------------------------------------------------------

    async def _complete(self, question: str, context: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Context:\n{context}\n\nQuestion: {question}",
                },
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        answer = response.choices[0].message.content if response.choices else None
        if not answer or not answer.strip():
            msg = "Empty answer from completion provider"
            raise ValueError(msg)
        return answer.strip()

    async def _store_answer(self, cache_key: str, answer: str) -> None:
        try:
            await self.database.cache.put_answer(cache_key, answer)
        except Exception:
            logger.exception("Failed to cache answer")

    async def answer(self, conversation_id: str, question: str) -> Answer:
        """Answer a question from the conversation's ready documents.

        Returns:
            Answer: Answer text, the matched chunks as sources, and whether
                the text came from the query cache. Cache hits carry no
                sources.
        """
        logger.info("Processing question: %s", question)

        document_ids = await self.database.documents.list_ready_document_ids(
            conversation_id
        )
        if not document_ids:
            return Answer(text=NO_DOCUMENTS_ANSWER)

        cache_key = query_cache_key(
            question, document_ids, self.model, self.temperature, self.match_count
        )
        cached = await self.database.cache.get_answer(cache_key)
        if cached is not None:
            logger.info("Query cache hit")
            return Answer(text=cached, cached=True)

        query_embedding = await self.embedding_service.get_embedding(question)
        matches = await self.database.chunks.search(
            conversation_id,
            query_embedding,
            match_threshold=self.match_threshold,
            match_count=self.match_count,
        )
        if not matches:
            return Answer(text=NO_MATCHES_ANSWER)

        sources = [
            Source(
                document_id=match.document_id,
                chunk_id=match.chunk_id,
                similarity=match.similarity,
            )
            for match in matches
        ]
        context = build_context(matches)

        try:
            text = await self._complete(question, context)
        except (OpenAIError, ValueError):
            logger.exception("Answer generation failed; returning context excerpt")
            return Answer(text=FALLBACK_PREFIX + context, sources=sources)

        await self._store_answer(cache_key, text)
        return Answer(text=text, sources=sources)

    async def chat(self, conversation_id: str, message: str) -> Answer:
        """Record a user turn, answer it, and record the assistant turn.

        The user message is persisted before answering and is kept even if
        answering fails.

        Returns:
            Answer: The assistant's answer and its sources.

        Raises:
            NotFoundError: If the conversation does not exist.
        """
        await self._require_conversation(conversation_id)
        await self.database.conversations.add_message(
            conversation_id, MessageRole.USER, message
        )
        answer = await self.answer(conversation_id, message)
        await self.database.conversations.add_message(
            conversation_id, MessageRole.ASSISTANT, answer.text
        )
        return answer
