"""Vendor adapters behind the single ``Adapter`` contract."""

from fluxgate.adapters.anthropic import AnthropicAdapter
from fluxgate.adapters.base import Adapter, AdapterCapabilities
from fluxgate.adapters.gemini import GeminiAdapter
from fluxgate.adapters.mock import MockAdapter
from fluxgate.adapters.openai import OpenAIAdapter

__all__ = [
    "Adapter",
    "AdapterCapabilities",
    "AnthropicAdapter",
    "GeminiAdapter",
    "MockAdapter",
    "OpenAIAdapter",
]
