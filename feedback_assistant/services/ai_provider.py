"""AI Provider abstraction layer.

The assistant talks to an OpenAI-compatible chat completions API. Routing,
reports and digests all go through `AIProvider.chat` so tests can swap in a
stub provider.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class AIProviderError(Exception):
    """The inference service failed or returned an unusable payload."""

    pass


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    """Response from an AI provider."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


def coerce_content(value: Any) -> str:
    """
    Flatten a completion payload into plain text.

    Providers may return a string, a list of content parts
    ({"type": "text", "text": ...}), a dict, or None.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [coerce_content(part) for part in value]
        return "".join(part for part in parts if part)
    if isinstance(value, dict):
        for key in ("text", "content", "value"):
            if key in value:
                return coerce_content(value[key])
        return ""
    return str(value)


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> ChatResponse:
        """Send a chat completion request."""
        pass


class OpenAIProvider(AIProvider):
    """OpenAI API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url
        self._transport = transport

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> ChatResponse:
        model = model or self.default_model
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Chat completion failed: {e.response.status_code}")
            raise AIProviderError(f"AI service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Chat completion request error: {type(e).__name__}")
            raise AIProviderError("AI service is unreachable") from e

        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIProviderError("AI service returned an empty completion") from e

        usage = data.get("usage") or {}
        return ChatResponse(
            content=coerce_content(message.get("content")),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=data.get("model") or model,
        )


def get_provider(provider_name: str, api_key: str, model: str | None = None) -> AIProvider:
    """Factory function to get the appropriate AI provider."""
    if provider_name == "openai":
        return OpenAIProvider(api_key, default_model=model or "gpt-4o-mini")
    raise ValueError(f"Unknown provider: {provider_name}")
