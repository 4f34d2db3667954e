"""Provider abstractions for model backends."""

from .base import ModelProvider, StreamChunk, collect_stream
from .adapters import (
    AnthropicProvider,
    OpenAICompatProvider,
    build_fast_provider,
    build_refine_provider,
)

__all__ = [
    "ModelProvider",
    "StreamChunk",
    "collect_stream",
    "OpenAICompatProvider",
    "AnthropicProvider",
    "build_fast_provider",
    "build_refine_provider",
]
