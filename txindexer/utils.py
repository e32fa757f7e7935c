"""Small async and URL helpers shared across the indexer."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

_logger = logging.getLogger("txindexer.utils")


def normalize_rest_url(url: str) -> str:
    """Add https:// when no scheme is given and strip a trailing slash."""
    if not url.startswith("http://") and not url.startswith("https://"):
        url = f"https://{url}"
    return url.rstrip("/")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0
) -> T:
    """
    Await fn() up to max_retries times with exponential backoff.

    Re-raises the last error when every attempt fails.
    """
    last_error: Exception = None

    for attempt in range(max_retries):
        try:
            return await fn()
        except Exception as e:
            last_error = e
            if attempt < max_retries - 1:
                delay = base_delay * (2 ** attempt)
                _logger.warning(
                    f"Retry {attempt + 1}/{max_retries} failed ({e}). Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

    raise last_error
