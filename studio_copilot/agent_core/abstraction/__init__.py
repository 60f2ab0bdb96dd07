"""Provider abstraction layer.

Uniform ``call(system_prompt, messages, ...) -> text`` contract over
heterogeneous chat-completion backends, with shared timeout and retry policy.
"""

from .base import ChatProviderBase, ProviderCredentials, ProviderReply, RetryPolicy, TokenUsage
from .factory import ProviderFactory, build_default_factory

__all__ = [
    "ChatProviderBase",
    "ProviderCredentials",
    "ProviderFactory",
    "ProviderReply",
    "RetryPolicy",
    "TokenUsage",
    "build_default_factory",
]
