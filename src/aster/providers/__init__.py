"""Provider implementations."""

from .base import Provider
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import OpenAICompatibleProvider

__all__ = [
    "GeminiProvider",
    "MockProvider",
    "OpenAICompatibleProvider",
    "Provider",
]
