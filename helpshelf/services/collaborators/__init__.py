"""Collaborators invoked by the analysis driver, one per pipeline stage."""

from helpshelf.services.collaborators.ai_processor import AnthropicContentProcessor
from helpshelf.services.collaborators.crawler import HttpContentCrawler
from helpshelf.services.collaborators.domain_validator import (
    HttpDomainValidator,
    normalize_domain,
)
from helpshelf.services.collaborators.http_client import close_http_client, get_http_client
from helpshelf.services.collaborators.integration_setup import WebhookIntegrationSetup
from helpshelf.services.collaborators.types import (
    AnalysisCollaborators,
    CollaboratorError,
    ContentBatch,
    ContentCrawler,
    ContentProcessor,
    CrawledPage,
    DomainValidator,
    IntegrationResult,
    IntegrationSetup,
    ProcessedContent,
)


def build_default_collaborators() -> AnalysisCollaborators:
    """Production collaborator set: HTTP validation/crawl, Claude, webhook."""
    return AnalysisCollaborators(
        domain_validator=HttpDomainValidator(),
        crawler=HttpContentCrawler(),
        processor=AnthropicContentProcessor(),
        integrations=WebhookIntegrationSetup(),
    )


__all__ = [
    "AnalysisCollaborators",
    "AnthropicContentProcessor",
    "CollaboratorError",
    "ContentBatch",
    "ContentCrawler",
    "ContentProcessor",
    "CrawledPage",
    "DomainValidator",
    "HttpContentCrawler",
    "HttpDomainValidator",
    "IntegrationResult",
    "IntegrationSetup",
    "ProcessedContent",
    "WebhookIntegrationSetup",
    "build_default_collaborators",
    "close_http_client",
    "get_http_client",
    "normalize_domain",
]
