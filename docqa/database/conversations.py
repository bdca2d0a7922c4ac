"""Conversations and their message log."""

from __future__ import annotations

import uuid

from docqa.config import config
from docqa.database.base import BaseSQLiteStore, utc_now
from docqa.errors import NotFoundError
from docqa.models import Conversation, Message, MessageRole

logger = config.get_logger(__name__)


class ConversationStore(BaseSQLiteStore):
    """Persistence for conversations and messages."""

    async def create_conversation(self) -> Conversation:
        conversation = Conversation(id=str(uuid.uuid4()), created_at=utc_now())
        await self._run(
            self._execute,
            "INSERT INTO conversations (id, created_at) VALUES (?, ?)",
            (conversation.id, conversation.created_at),
        )
        logger.info("Created conversation %s", conversation.id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await self._run(
            self._fetch_one,
            "SELECT * FROM conversations WHERE id = ? AND deleted_at IS NULL",
            (conversation_id,),
        )
        if row is None:
            return None
        return Conversation(id=row["id"], created_at=row["created_at"])

    async def list_conversations(self) -> list[Conversation]:
        rows = await self._run(
            self._fetch_all,
            "SELECT * FROM conversations WHERE deleted_at IS NULL "
            "ORDER BY created_at DESC, rowid DESC",
            (),
        )
        return [Conversation(id=row["id"], created_at=row["created_at"]) for row in rows]

    async def soft_delete_conversation(self, conversation_id: str) -> None:
        """Hide a conversation; documents, chunks and messages are left as-is.

        Raises:
            NotFoundError: If the conversation is unknown or already deleted.
        """
        updated = await self._run(
            self._execute,
            "UPDATE conversations SET deleted_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (utc_now(), conversation_id),
        )
        if updated != 1:
            msg = f"Conversation not found or already deleted: {conversation_id}"
            raise NotFoundError(msg)
        logger.info("Conversation %s soft-deleted", conversation_id)

    async def add_message(
        self, conversation_id: str, role: MessageRole, content: str
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=utc_now(),
        )
        await self._run(
            self._execute,
            """
            INSERT INTO messages (id, conversation_id, role, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.conversation_id,
                message.role.value,
                message.content,
                message.created_at,
            ),
        )
        return message

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation in chronological order."""  # noqa: DOC201
        rows = await self._run(
            self._fetch_all,
            "SELECT * FROM messages WHERE conversation_id = ? "
            "ORDER BY created_at, rowid",
            (conversation_id,),
        )
        return [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=MessageRole(row["role"]),
                content=row["content"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
