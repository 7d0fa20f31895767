"""
Provider adapters for the LLM engine.
"""

from .base import CompletionResult, ConnectionResult, ProviderAdapter
from .mock_adapter import MOCK_MODELS, MockAdapter, reply
from .openai_compatible import DEEPSEEK_MODELS, OpenAICompatibleAdapter

__all__ = [
    "ProviderAdapter",
    "ConnectionResult",
    "CompletionResult",
    "OpenAICompatibleAdapter",
    "DEEPSEEK_MODELS",
    "MockAdapter",
    "MOCK_MODELS",
    "reply",
]
