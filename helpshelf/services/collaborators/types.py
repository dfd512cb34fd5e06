"""Types shared by the analysis pipeline collaborators."""

from dataclasses import dataclass, field
from typing import Any, Protocol


class CollaboratorError(Exception):
    """A collaborator operation failed; the message is shown to the user."""

    def __init__(self, message: str, retryable: bool = False):
        self.message = message
        self.retryable = retryable
        super().__init__(message)


@dataclass
class CrawledPage:
    """A single fetched page."""

    url: str
    title: str | None
    text: str
    status_code: int = 200


@dataclass
class ContentBatch:
    """Structured content batch produced by the crawler."""

    domain: str
    pages: list[CrawledPage] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)


@dataclass
class ProcessedContent:
    """Result of AI processing of a content batch."""

    summary: str
    topics: list[str] = field(default_factory=list)
    source_pages: int = 0


@dataclass
class IntegrationResult:
    """Outcome of integration setup."""

    configured: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


class DomainValidator(Protocol):
    async def validate(self, domain: str) -> None:
        """Return normally if the domain is reachable, raise CollaboratorError otherwise."""
        ...


class ContentCrawler(Protocol):
    async def crawl(self, domain: str) -> ContentBatch: ...


class ContentProcessor(Protocol):
    async def process(self, domain: str, batch: ContentBatch) -> ProcessedContent: ...


class IntegrationSetup(Protocol):
    async def configure(self, domain: str, processed: ProcessedContent) -> IntegrationResult: ...


@dataclass
class AnalysisCollaborators:
    """The external services one analysis run talks to."""

    domain_validator: DomainValidator
    crawler: ContentCrawler
    processor: ContentProcessor
    integrations: IntegrationSetup
