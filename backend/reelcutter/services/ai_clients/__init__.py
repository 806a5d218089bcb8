"""
AI client for the text-generation service.

Usage:
    from reelcutter.services.ai_clients import OllamaClient

    async with OllamaClient.from_settings(settings) as client:
        content = await client.chat(messages)
"""

from .base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientError,
    AIClientResponseError,
    AIClientTimeoutError,
)
from .ollama_client import OllamaClient

__all__ = [
    "AIClientConfig",
    "AIClientError",
    "AIClientConnectionError",
    "AIClientResponseError",
    "AIClientTimeoutError",
    "OllamaClient",
]
