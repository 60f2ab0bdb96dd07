"""Factory for chat provider adapters.

This module provides a registry of provider adapter classes keyed by name, so
callers can select a backend from a request field (``provider.name``) without
importing adapter modules directly.

Usage:
    factory = ProviderFactory()
    factory.register("openai", OpenAICompatibleProvider)
    provider = factory.create("openai", retry=RetryPolicy(max_attempts=2))
"""

from typing import Any, Dict, Optional, Type

from .adapters import BedrockProvider, GeminiProvider, NvidiaProvider, OpenAICompatibleProvider, OpenRouterProvider
from .base import ChatProviderBase


class ProviderFactory:
    """Registry and constructor for ``ChatProviderBase`` implementations."""

    def __init__(self) -> None:
        self._implementations: Dict[str, Type[ChatProviderBase]] = {}

    def register(self, name: str, implementation: Type[ChatProviderBase]) -> None:
        """Register a provider implementation.

        Args:
            name: Provider identifier (e.g., 'openai', 'gemini')
            implementation: ChatProviderBase subclass for this backend

        Raises:
            ValueError: If the name is already registered
        """
        key = name.strip().lower()
        if key in self._implementations:
            raise ValueError(f"Provider '{name}' is already registered")
        self._implementations[key] = implementation

    def unregister(self, name: str) -> None:
        self._implementations.pop(name.strip().lower(), None)

    def is_registered(self, name: str) -> bool:
        return name.strip().lower() in self._implementations

    def create(self, name: str, **kwargs: Any) -> ChatProviderBase:
        """Instantiate the adapter registered under ``name``.

        Raises:
            ValueError: If no adapter is registered under ``name``
        """
        key = name.strip().lower()
        implementation: Optional[Type[ChatProviderBase]] = self._implementations.get(key)
        if implementation is None:
            raise ValueError(f"Provider '{name}' is not registered. Available: {self.get_registered_providers()}")
        return implementation(**kwargs)

    def get_registered_providers(self) -> list[str]:
        return sorted(self._implementations.keys())


def build_default_factory() -> ProviderFactory:
    """Factory with every built-in adapter registered."""
    factory = ProviderFactory()
    for implementation in (
        OpenAICompatibleProvider,
        OpenRouterProvider,
        NvidiaProvider,
        GeminiProvider,
        BedrockProvider,
    ):
        factory.register(implementation.name, implementation)
    return factory
