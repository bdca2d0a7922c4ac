"""Configuration management for the DocQA application."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI-compatible provider configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "10"))

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Storage
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "data/docqa.db"))
    STORAGE_DIR: Path = Path(os.getenv("STORAGE_DIR", "data/uploads"))

    # Upload limits
    MAX_FILE_SIZE_BYTES: int = int(
        os.getenv("MAX_FILE_SIZE_BYTES", str(10 * 1024 * 1024))
    )
    MAX_CSV_ROWS: int = int(os.getenv("MAX_CSV_ROWS", "2000"))
    MAX_PDF_PAGES: int = int(os.getenv("MAX_PDF_PAGES", "30"))

    # Semantic normalization
    NORMALIZER_MODEL: str = os.getenv(
        "NORMALIZER_MODEL", "mistralai/mistral-7b-instruct"
    )
    NORMALIZER_MAX_CHARS: int = int(os.getenv("NORMALIZER_MAX_CHARS", "8000"))
    NORMALIZER_TIMEOUT_SECONDS: float = float(
        os.getenv("NORMALIZER_TIMEOUT_SECONDS", "15")
    )
    NORMALIZER_MAX_RETRIES: int = int(os.getenv("NORMALIZER_MAX_RETRIES", "1"))
    NORMALIZER_RETRY_DELAY_SECONDS: float = float(
        os.getenv("NORMALIZER_RETRY_DELAY_SECONDS", "0.5")
    )
    NORMALIZER_CONCURRENCY: int = int(os.getenv("NORMALIZER_CONCURRENCY", "3"))
    NORMALIZER_MEMORY_CACHE_SIZE: int = int(
        os.getenv("NORMALIZER_MEMORY_CACHE_SIZE", "1024")
    )

    # Chunking
    CHUNK_MIN_TOKENS: int = int(os.getenv("CHUNK_MIN_TOKENS", "300"))
    CHUNK_MAX_TOKENS: int = int(os.getenv("CHUNK_MAX_TOKENS", "500"))
    MAX_CHUNKS_PER_DOCUMENT: int = int(os.getenv("MAX_CHUNKS_PER_DOCUMENT", "200"))

    # Embeddings
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_BATCH_SIZE: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "50"))
    EMBEDDING_MAX_RETRIES: int = int(os.getenv("EMBEDDING_MAX_RETRIES", "2"))
    EMBEDDING_RETRY_BACKOFF_SECONDS: float = float(
        os.getenv("EMBEDDING_RETRY_BACKOFF_SECONDS", "1.0")
    )

    # Ingestion orchestration
    MAX_PROCESSING_ATTEMPTS: int = int(os.getenv("MAX_PROCESSING_ATTEMPTS", "15"))
    PROCESSING_STALE_SECONDS: int = int(os.getenv("PROCESSING_STALE_SECONDS", "600"))

    # Retrieval and answer assembly
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4.1-nano-2025-04-14")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.0"))
    MATCH_THRESHOLD: float = float(os.getenv("MATCH_THRESHOLD", "0.3"))
    MATCH_COUNT: int = int(os.getenv("MATCH_COUNT", "15"))
    CONTEXT_CHUNK_CHARS: int = int(os.getenv("CONTEXT_CHUNK_CHARS", "800"))
    CONTEXT_MAX_CHARS: int = int(os.getenv("CONTEXT_MAX_CHARS", "4000"))

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "DocQA/1.0")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If OPENAI_API_KEY is not set or chunk bounds are inverted.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)
        if cls.CHUNK_MIN_TOKENS > cls.CHUNK_MAX_TOKENS:
            msg = (
                f"CHUNK_MIN_TOKENS ({cls.CHUNK_MIN_TOKENS}) must not exceed "
                f"CHUNK_MAX_TOKENS ({cls.CHUNK_MAX_TOKENS})"
            )
            raise ValueError(msg)

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment.

        Returns:
            True if environment is development.
        """
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        third_party_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        for name in ("openai", "httpx"):
            logging.getLogger(name).setLevel(third_party_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers


config = Config()
