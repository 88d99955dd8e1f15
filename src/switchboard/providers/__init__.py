"""Backend adapter implementations."""

from .base import ContentGenerator, ProviderCapabilities
from .ollama import OllamaProvider
from .openai import OpenAICompatibleProvider

__all__ = [
    "ContentGenerator",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ProviderCapabilities",
]
