"""Wiring of stores, providers and services into one engine."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from .chunking import TextChunker
from .clients import create_async_client
from .config import config
from .conversation import ConversationManager
from .database import get_database
from .documents import DocumentService
from .embeddings import EmbeddingService
from .normalizer import SemanticNormalizer
from .processing import IngestionPipeline
from .storage import LocalFileStorage

if TYPE_CHECKING:
    from openai import AsyncOpenAI


class DocQAEngine:
    """Upload -> Parse -> Normalize -> Chunk -> Embed -> Store, then answer."""

    def __init__(
        self,
        openai_api_key: str | None = None,
        database_path: Path | None = None,
        storage_dir: Path | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            openai_api_key: API key for the provider client.
            database_path: sqlite file. If None, uses config.DATABASE_PATH.
            storage_dir: Upload directory. If None, uses config.STORAGE_DIR.
            client: Shared provider client for embeddings, normalization and
                answers; built from config when omitted.
        """
        if database_path is None:
            database_path = config.DATABASE_PATH
        if storage_dir is None:
            storage_dir = config.STORAGE_DIR

        self.client = client or create_async_client(openai_api_key)
        self.database = get_database(Path(database_path))
        self.storage = LocalFileStorage(Path(storage_dir))
        self.embedding_service = EmbeddingService(client=self.client)
        self.normalizer = SemanticNormalizer(self.database.cache, self.client)
        self.chunker = TextChunker()
        self.pipeline = IngestionPipeline(
            self.database,
            self.storage,
            self.normalizer,
            self.chunker,
            self.embedding_service,
        )
        self.documents = DocumentService(self.database, self.storage, self.pipeline)
        self.conversations = ConversationManager(
            self.database, self.embedding_service, self.client
        )
