"""
OpenAI-backed insight generator.

Sends the deal facts through a single chat completion and returns the
assistant's Markdown. No retry decorator here: an insight request is one
external call, and failures surface to the store as InsightError.
"""

import os

import structlog
from openai import AsyncOpenAI

from ..config import config
from ..errors import InsightModelError, wrap_openai_error
from ..models.deal import Deal
from .base import InsightGenerator
from .prompts import build_insight_messages

logger = structlog.get_logger(__name__)


class OpenAIInsightGenerator(InsightGenerator):
    """
    Async OpenAI insight generator.

    Configuration via environment variables:
    - OPENAI_API_KEY: Required API key
    - OPENAI_CHAT_MODEL: Chat model (default: gpt-4.1-mini)
    - INSIGHT_MAX_TOKENS: Response budget (default: 800)
    """

    def __init__(
        self,
        api_key: str | None = None,
        chat_model: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.3,
        client: AsyncOpenAI | None = None,
    ):
        """
        Initialize the generator.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            chat_model: Model for chat completions (defaults to OPENAI_CHAT_MODEL)
            max_tokens: Maximum tokens in the analysis
            temperature: Sampling temperature
            client: Pre-built AsyncOpenAI client (tests inject a mock here)
        """
        self.api_key = api_key or os.getenv('OPENAI_API_KEY')
        if client is None and not self.api_key:
            raise ValueError('OPENAI_API_KEY environment variable is required')

        self.chat_model = chat_model or config.OPENAI_CHAT_MODEL
        self.max_tokens = max_tokens or config.INSIGHT_MAX_TOKENS
        self.temperature = temperature

        self._client = client or AsyncOpenAI(api_key=self.api_key)

    async def analyze(self, deal: Deal) -> str:
        """
        Generate analysis for a deal.

        Args:
            deal: The deal to analyze

        Returns:
            Markdown analysis text

        Raises:
            InsightError: The API call failed or returned no content
        """
        try:
            response = await self._client.chat.completions.create(
                model=self.chat_model,
                messages=build_insight_messages(deal),  # type: ignore
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            raise wrap_openai_error(e, context={'deal_id': deal.id}) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise InsightModelError(
                'Model returned an empty analysis',
                context={'deal_id': deal.id, 'model': self.chat_model},
            )

        logger.debug(
            'openai_insight.generated',
            deal_id=deal.id,
            model=self.chat_model,
            length=len(content),
        )
        return content.strip()

    async def close(self) -> None:
        """Close the client connection."""
        await self._client.close()
