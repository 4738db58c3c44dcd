"""OpenAI-compatible chat completion provider (OpenRouter or OpenAI) using the openai SDK."""

from __future__ import annotations

import logging
import os
from typing import Any, Final

from openai import AsyncOpenAI

from launchpad.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse

logger = logging.getLogger(__name__)

_BASE_URLS: Final[dict[str, str | None]] = {"openrouter": "https://openrouter.ai/api/v1", "openai": None}


class GenerationProviderError(RuntimeError):
  """Raised when the provider returns no usable text."""


class ChatCompletionModel(AIModel):
  """Chat completion client for one model."""

  def __init__(self, name: str, client: AsyncOpenAI, *, default_max_tokens: int) -> None:
    self.name: str = name
    self._client = client
    self._default_max_tokens = default_max_tokens

  async def generate(self, prompt: str, *, system_prompt: str | None = None, max_tokens: int | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate text for a user prompt with an optional system prompt."""
    messages: list[dict[str, str]] = []
    if system_prompt:
      messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})

    request: dict[str, Any] = {"model": self.name, "messages": messages, "max_tokens": max_tokens or self._default_max_tokens}
    if temperature is not None:
      request["temperature"] = temperature
    response = await self._client.chat.completions.create(**request)

    if not response.choices:
      raise GenerationProviderError(f"Model '{self.name}' returned no choices")
    content = response.choices[0].message.content or ""
    if not content.strip():
      raise GenerationProviderError(f"Model '{self.name}' returned an empty response")

    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    logger.debug("Model %s returned %d chars usage=%s", self.name, len(content), usage)
    return SimpleModelResponse(content=content, usage=usage)


class ChatCompletionProvider(Provider):
  """Provider for OpenAI-compatible endpoints."""

  def __init__(self, name: str = "openrouter", *, api_key: str | None = None, base_url: str | None = None, timeout_seconds: float = 120.0, default_max_tokens: int = 8000) -> None:
    if name not in _BASE_URLS:
      raise ValueError(f"Unsupported generation provider '{name}'.")
    self.name: str = name
    api_key = api_key or os.getenv("OPENROUTER_API_KEY" if name == "openrouter" else "OPENAI_API_KEY")
    if not api_key:
      raise ValueError(f"An API key is required for the '{name}' provider")

    # OpenRouter accepts optional attribution headers.
    default_headers = {}
    referer = os.getenv("OPENROUTER_HTTP_REFERER")
    if name == "openrouter" and referer:
      default_headers["HTTP-Referer"] = referer

    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or _BASE_URLS[name], timeout=timeout_seconds, max_retries=0, default_headers=default_headers or None)
    self._default_max_tokens = default_max_tokens

  def get_model(self, model: str | None = None) -> AIModel:
    if not model:
      raise ValueError("A model name is required")
    return ChatCompletionModel(model, self._client, default_max_tokens=self._default_max_tokens)
