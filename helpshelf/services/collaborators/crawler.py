"""
Content crawler: fetches a bounded set of same-site pages.

Only reports what was fetched; content quality scoring and HTML cleaning
belong to the downstream content pipeline.
"""

import logging
from collections import deque
from urllib.parse import urldefrag, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from helpshelf.config import settings
from helpshelf.services.collaborators.domain_validator import normalize_domain
from helpshelf.services.collaborators.http_client import get_http_client
from helpshelf.services.collaborators.types import CollaboratorError, ContentBatch, CrawledPage

logger = logging.getLogger(__name__)


def _soup(body: str) -> BeautifulSoup:
    return BeautifulSoup(body, "html.parser")


def _collapse(text: str) -> str:
    return " ".join(text.split())


def extract_links(base_url: str, body: str) -> list[str]:
    """Absolute http(s) links found in the page, fragments removed."""
    links = []
    for anchor in _soup(body).find_all("a", href=True):
        absolute, _ = urldefrag(urljoin(base_url, anchor["href"].strip()))
        if urlparse(absolute).scheme in ("http", "https"):
            links.append(absolute)
    return links


def extract_title(body: str) -> str | None:
    title_tag = _soup(body).find("title")
    if title_tag is None:
        return None
    return _collapse(title_tag.get_text()) or None


def extract_text(body: str) -> str:
    soup = _soup(body)
    for tag in soup(["script", "style"]):
        tag.decompose()
    return _collapse(soup.get_text(" ", strip=True))


class HttpContentCrawler:
    """Breadth-first crawler limited to the customer's host."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_pages: int | None = None,
    ) -> None:
        self._client = client
        self.max_pages = max_pages or settings.crawl_max_pages

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    async def crawl(self, domain: str) -> ContentBatch:
        host = normalize_domain(domain)
        start_url = f"https://{host}/"
        batch = ContentBatch(domain=host)
        site_host = host

        queue: deque[str] = deque([start_url])
        seen: set[str] = {start_url}

        while queue and batch.page_count < self.max_pages:
            url = queue.popleft()
            try:
                response = await self.client.get(url)
            except httpx.HTTPError as e:
                if url == start_url:
                    raise CollaboratorError(f"Crawl of {host} failed: {e}") from e
                logger.debug(f"Skipping {url}: {e!r}")
                continue

            if response.status_code >= 400:
                if url == start_url:
                    raise CollaboratorError(
                        f"Crawl of {host} failed: home page returned HTTP {response.status_code}"
                    )
                continue

            if "html" not in response.headers.get("content-type", "text/html"):
                continue

            if url == start_url:
                # Follow the host the home page settled on (e.g. a www redirect)
                site_host = response.url.host
            seen.add(str(response.url))

            body = response.text
            batch.pages.append(
                CrawledPage(
                    url=str(response.url),
                    title=extract_title(body),
                    text=extract_text(body),
                    status_code=response.status_code,
                )
            )

            for link in extract_links(str(response.url), body):
                if urlparse(link).hostname == site_host and link not in seen:
                    seen.add(link)
                    queue.append(link)

        if not any(page.text for page in batch.pages):
            raise CollaboratorError(f"Crawl of {host} found no readable content")

        logger.info(f"Crawled {batch.page_count} pages from {host}")
        return batch
