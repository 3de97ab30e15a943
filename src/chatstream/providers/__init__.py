"""LLM provider adapters."""

from ..config import Settings
from .base import (
    ChunkParser,
    FunctionSpec,
    ProviderError,
    ProviderRequest,
    StreamingProvider,
)
from .claude import ClaudeProvider
from .openai import OpenAIProvider


def create_provider(settings: Settings) -> StreamingProvider:
    """Instantiate the provider named by ``settings.provider``."""

    name = settings.provider.strip().lower()
    if name in {"openai", "chatgpt"}:
        return OpenAIProvider(settings.openai_config())
    if name in {"claude", "anthropic"}:
        return ClaudeProvider(settings.claude_config())
    raise ValueError(f"Unknown LLM provider: {settings.provider}")


__all__ = [
    "ChunkParser",
    "ClaudeProvider",
    "FunctionSpec",
    "OpenAIProvider",
    "ProviderError",
    "ProviderRequest",
    "StreamingProvider",
    "create_provider",
]
