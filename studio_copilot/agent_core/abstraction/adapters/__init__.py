"""Concrete provider adapters."""

from .bedrock import BedrockProvider
from .gemini import GeminiProvider
from .openai_compatible import NvidiaProvider, OpenAICompatibleProvider, OpenRouterProvider

__all__ = [
    "BedrockProvider",
    "GeminiProvider",
    "NvidiaProvider",
    "OpenAICompatibleProvider",
    "OpenRouterProvider",
]
