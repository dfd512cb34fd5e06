"""
AI processor: turns crawled pages into a support knowledge summary.

Uses Claude with a forced tool call so the result is structured JSON.
"""

import asyncio
import logging
from typing import Any, cast

import anthropic
from anthropic import APIError, RateLimitError

from helpshelf.config import settings
from helpshelf.services.collaborators.types import (
    CollaboratorError,
    ContentBatch,
    ProcessedContent,
)

logger = logging.getLogger(__name__)

TOOL_NAME = "save_support_topics"

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAYS = [2, 4, 8]

# Page text beyond this is dropped from the prompt
MAX_CHARS_PER_PAGE = 4000

SUPPORT_TOPICS_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Save the support knowledge extracted from the customer's site.",
    "input_schema": {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "Two or three sentences describing what the site offers",
            },
            "topics": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Questions customers are likely to ask support",
            },
        },
        "required": ["summary", "topics"],
    },
}


class AnthropicContentProcessor:
    """Summarize crawled content into support topics using Claude."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        model: str | None = None,
    ) -> None:
        self._client = client
        self.model = model or settings.anthropic_model

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not settings.anthropic_api_key:
                raise CollaboratorError("AI processing is not configured")
            self._client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        return self._client

    async def process(self, domain: str, batch: ContentBatch) -> ProcessedContent:
        if not batch.pages:
            raise CollaboratorError("No content to process")

        prompt = self._build_prompt(domain, batch)
        logger.info(f"Processing {batch.page_count} pages for {domain} ({len(prompt)} chars)")

        result = await self._call_with_retry(prompt)
        return ProcessedContent(
            summary=str(result.get("summary", "")).strip(),
            topics=[str(topic) for topic in result.get("topics", []) if topic],
            source_pages=batch.page_count,
        )

    async def _call_with_retry(self, prompt: str) -> dict[str, Any]:
        """Call Claude API with exponential backoff retry."""
        client = self.client
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES):
            try:
                response = await client.messages.create(
                    model=self.model,
                    max_tokens=4000,
                    tools=cast(Any, [SUPPORT_TOPICS_TOOL]),
                    tool_choice=cast(Any, {"type": "tool", "name": TOOL_NAME}),
                    messages=[{"role": "user", "content": prompt}],
                )
                return self._parse_response(response)

            except (RateLimitError, APIError) as e:
                last_error = e
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_DELAYS[attempt]
                    logger.warning(
                        f"AI processing error (attempt {attempt + 1}/{MAX_RETRIES}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"AI processing failed after {MAX_RETRIES} attempts: {e}")

        if isinstance(last_error, RateLimitError):
            raise CollaboratorError(sanitize_error("rate limit"), retryable=True)
        raise CollaboratorError(sanitize_error(f"api error: {last_error}"), retryable=True)

    def _parse_response(self, response: Any) -> dict[str, Any]:
        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == TOOL_NAME:
                return cast(dict[str, Any], block.input)
        raise CollaboratorError("AI processing returned no result")

    def _build_prompt(self, domain: str, batch: ContentBatch) -> str:
        sections = [
            "You are preparing a customer-support assistant for a website. "
            "Read the pages below and record what the site offers and the "
            "questions its customers are most likely to ask.",
            "",
            f"**Site:** {domain}",
            "",
        ]
        for page in batch.pages:
            sections.append(f"## {page.title or page.url}")
            sections.append(f"URL: {page.url}")
            sections.append(page.text[:MAX_CHARS_PER_PAGE])
            sections.append("")
        sections.append(f"Call the {TOOL_NAME} tool with your findings.")
        return "\n".join(sections)


def sanitize_error(error: str) -> str:
    """Convert technical API errors into user-friendly messages."""
    error_lower = error.lower()

    if "ratelimit" in error_lower or "rate limit" in error_lower:
        return "AI service is busy. Please try again in a few minutes."
    if "timeout" in error_lower:
        return "AI processing timed out. Please try again."
    if "apierror" in error_lower or "api error" in error_lower or "anthropic" in error_lower:
        return "AI processing failed. Please try again."

    if len(error) < 100 and not any(char in error for char in ["<", ">", "{", "}"]):
        return error

    return "An unexpected error occurred during AI processing. Please try again."
