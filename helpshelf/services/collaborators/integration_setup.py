"""Integration setup: hands the processed site knowledge to downstream systems."""

import logging
from dataclasses import asdict

import httpx

from helpshelf.config import settings
from helpshelf.services.collaborators.http_client import get_http_client
from helpshelf.services.collaborators.types import (
    CollaboratorError,
    IntegrationResult,
    ProcessedContent,
)

logger = logging.getLogger(__name__)


class WebhookIntegrationSetup:
    """POSTs the processed content to the configured integration webhook.

    With no webhook configured the stage succeeds without any call.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = settings.integration_webhook_url if webhook_url is None else webhook_url
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    async def configure(self, domain: str, processed: ProcessedContent) -> IntegrationResult:
        if not self.webhook_url:
            logger.info(f"No integration webhook configured, skipping for {domain}")
            return IntegrationResult(details={"webhook": "skipped"})

        payload = {"domain": domain, **asdict(processed)}
        try:
            response = await self.client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Integration setup failed: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise CollaboratorError(
                f"Integration setup failed: webhook returned HTTP {response.status_code}",
                retryable=response.status_code >= 500,
            )

        logger.info(f"Integration webhook accepted {domain} (HTTP {response.status_code})")
        return IntegrationResult(
            configured=["webhook"],
            details={"webhook": "delivered", "status_code": response.status_code},
        )
