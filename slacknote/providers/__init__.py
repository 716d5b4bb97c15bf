"""LLM providers and model-backed collaborators."""

from slacknote.providers.base import LLMProvider, LLMResponse
from slacknote.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider"]
