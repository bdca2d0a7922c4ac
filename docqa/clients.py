"""Construction of the OpenAI-compatible provider client."""

from openai import AsyncOpenAI

from .config import config


def create_async_client(api_key: str | None = None) -> AsyncOpenAI:
    """Build an async client for the embedding and completion providers.

    Args:
        api_key: API key. If None, reads from the OPENAI_API_KEY environment
            variable.

    Returns:
        Client honoring the configured base URL, HTTP timeout and headers.
    """
    default_headers = config.get_api_headers()
    return AsyncOpenAI(
        api_key=api_key or config.get_openai_api_key(),
        base_url=config.OPENAI_BASE_URL,
        timeout=config.API_TIMEOUT_SECONDS,
        default_headers=default_headers or None,
    )
