"""Generation service access: request client, prompt cache and streaming."""

from .cache import PromptCache, make_cache_key
from .client import AIRequestClient, BatchOutcome, GenerationOptions
from .streaming import CancellationToken, GenerationStream, StreamChunk

__all__ = [
    "AIRequestClient",
    "BatchOutcome",
    "CancellationToken",
    "GenerationOptions",
    "GenerationStream",
    "PromptCache",
    "StreamChunk",
    "make_cache_key",
]
