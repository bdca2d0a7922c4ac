"""DocQA - document ingestion and retrieval-augmented question answering."""

from .chunking import TextChunker
from .conversation import ConversationManager
from .documents import DocumentService
from .embeddings import EmbeddingService
from .engine import DocQAEngine
from .models import (
    Answer,
    Document,
    DocumentChunk,
    DocumentStatus,
    FileType,
    Source,
    TextUnit,
)
from .normalizer import SemanticNormalizer
from .parsers import DocumentParser
from .processing import IngestionPipeline
from .storage import LocalFileStorage

__all__ = [
    "Answer",
    "ConversationManager",
    "DocQAEngine",
    "Document",
    "DocumentChunk",
    "DocumentParser",
    "DocumentService",
    "DocumentStatus",
    "EmbeddingService",
    "FileType",
    "IngestionPipeline",
    "LocalFileStorage",
    "SemanticNormalizer",
    "Source",
    "TextChunker",
    "TextUnit",
]
