"""Domain validation: checks that a customer site exists and answers HTTP."""

import logging
import re
from urllib.parse import urlparse

import httpx

from helpshelf.services.collaborators.http_client import get_http_client
from helpshelf.services.collaborators.types import CollaboratorError

logger = logging.getLogger(__name__)

# RFC 1123 hostname with at least one dot
_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))+$"
)


def normalize_domain(raw: str) -> str:
    """
    Reduce user input like 'https://Support.Example.com/help' to a hostname.

    Raises:
        CollaboratorError: If no valid hostname can be extracted.
    """
    value = raw.strip().lower()
    if "://" not in value:
        value = f"https://{value}"
    host = urlparse(value).hostname or ""
    host = host.rstrip(".")
    if not _HOSTNAME_RE.match(host):
        raise CollaboratorError(f"'{raw}' is not a valid domain")
    return host


class HttpDomainValidator:
    """Validates a domain by requesting its home page."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    async def validate(self, domain: str) -> None:
        host = normalize_domain(domain)
        url = f"https://{host}/"

        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            logger.info(f"Domain {host} unreachable: {e!r}")
            raise CollaboratorError(f"Could not reach {host}. Check the domain and try again.") from e

        if response.status_code >= 400:
            raise CollaboratorError(
                f"{host} responded with HTTP {response.status_code}",
                retryable=response.status_code >= 500,
            )

        logger.info(f"Domain {host} validated (HTTP {response.status_code})")
