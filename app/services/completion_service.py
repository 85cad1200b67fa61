"""
Completion service wrapping the OpenAI chat completions API.
"""
import json
from typing import Any, Dict, List, Optional

import openai
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.core.exceptions import (
    AIServiceError,
    AIServiceRateLimitError,
    AIServiceResponseError,
    AIServiceTimeoutError,
)
from app.models.triage import ChatMessage, ChatRole

logger = structlog.get_logger(__name__)

FALLBACK_REPLY = (
    "I apologize, but I encountered an issue. Could you please repeat your question?"
)

_OPENAI_ROLES = {ChatRole.REQUESTER: "user", ChatRole.ASSISTANT: "assistant"}


class CompletionService:
    """Service for transcript and JSON completions."""

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None):
        self.client = client or openai.AsyncOpenAI(
            api_key=settings.openai_api_key, timeout=settings.openai_timeout
        )
        self.model = settings.openai_model
        self.temperature = settings.openai_temperature
        self.max_tokens = settings.openai_max_tokens

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, exp_base=2, max=10),
        retry=retry_if_exception_type(AIServiceRateLimitError),
        reraise=True,
    )
    async def complete(self, system_prompt: str, transcript: List[ChatMessage]) -> str:
        """
        Complete a conversation.

        Args:
            system_prompt: Role-conditioning instruction sent first
            transcript: Full ordered transcript

        Returns:
            Assistant reply text

        Raises:
            AIServiceTimeoutError: If the transport timed out
            AIServiceRateLimitError: If rate limited after retries
            AIServiceError: For any other API failure
        """
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(
            {"role": _OPENAI_ROLES[message.role], "content": message.text}
            for message in transcript
        )

        response = await self._create(messages=messages, temperature=self.temperature)
        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.warning("Empty completion content", model=self.model)
            return FALLBACK_REPLY
        return content.strip()

    async def complete_json(self, system_prompt: str, prompt: str) -> Dict[str, Any]:
        """
        Request a JSON-object completion for a single prompt.

        Raises:
            AIServiceResponseError: If the content is missing or not a JSON object
        """
        response = await self._create(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AIServiceResponseError("No content received from completion")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise AIServiceResponseError(f"Completion is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise AIServiceResponseError("Completion JSON is not an object")
        return data

    async def _create(self, **kwargs):
        try:
            return await self.client.chat.completions.create(
                model=self.model, max_tokens=self.max_tokens, **kwargs
            )

        except openai.RateLimitError as e:
            logger.error("OpenAI rate limit exceeded", error=str(e))
            raise AIServiceRateLimitError(f"Rate limit exceeded: {str(e)}")

        except openai.APITimeoutError as e:
            logger.error("OpenAI API timeout", error=str(e))
            raise AIServiceTimeoutError(f"API timeout: {str(e)}")

        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise AIServiceError(f"API error: {str(e)}")
