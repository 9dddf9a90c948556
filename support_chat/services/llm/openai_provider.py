from typing import List, Optional

import httpx

from support_chat.logging_config import get_logger
from support_chat.services.errors import UpstreamError, UpstreamTimeout
from support_chat.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.openai")

SERVICE_NAME = "language_generation"


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-5-mini",
        base_url: str = "https://api.openai.com/v1/chat/completions",
        default_timeout_seconds: float = 20.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url
        self.default_timeout_seconds = default_timeout_seconds

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Generate response from OpenAI."""
        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else self.default_timeout_seconds

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(SERVICE_NAME, timeout) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE_NAME, str(exc)) from exc

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise UpstreamError(SERVICE_NAME, f"status {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(SERVICE_NAME, "response is not JSON") from exc

        if not isinstance(data, dict):
            raise UpstreamError(SERVICE_NAME, "unexpected payload")

        content = ""
        choices = data.get("choices")
        if choices:
            choice = choices[0] if isinstance(choices, list) else None
            if not isinstance(choice, dict):
                raise UpstreamError(SERVICE_NAME, "unexpected payload")
            message = choice.get("message") or {}
            if not isinstance(message, dict):
                raise UpstreamError(SERVICE_NAME, "unexpected payload")
            content = message.get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
