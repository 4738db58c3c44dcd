"""Provider implementations."""

from launchpad.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from launchpad.ai.providers.openai_compat import ChatCompletionModel, ChatCompletionProvider, GenerationProviderError

__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "Provider", "ChatCompletionModel", "ChatCompletionProvider", "GenerationProviderError"]
