"""
Shared HTTP client for outbound collaborator calls.

Domain validation, crawling and the integration webhook reuse one pooled
AsyncClient instead of opening a connection per request.
"""

import logging

import httpx

from helpshelf.config import settings

logger = logging.getLogger(__name__)

USER_AGENT = "HelpShelfOnboarding/0.1 (+https://helpshelf.io/bot)"

# Module-level singleton client
_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        logger.debug("Created new collaborator HTTP client with connection pooling")
    return _client


async def close_http_client() -> None:
    """
    Close the shared HTTP client.

    Call on app shutdown for graceful termination.
    """
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
        _client = None
        logger.debug("Closed collaborator HTTP client")
