"""
LLM Engine - request orchestration for conversational LLM calls

Selects a provider and model, builds the prompt from conversation mode and
answer type, executes the call (streaming or not) and returns the result,
with response caching, cost accounting, retries and cancellation.

Example usage:
    from llm_engine import LLMEngine, LLMRequest, Message, OpenAICompatibleAdapter

    engine = LLMEngine(config_path="config.yaml")
    engine.register_provider(OpenAICompatibleAdapter())
    await engine.initialize_provider("deepseek")

    response = await engine.complete(
        LLMRequest(messages=[Message(role="user", content="Hello!")], mode="coding")
    )
    print(response.content)
    print(f"Cost: ${response.cost_usd:.6f}")
"""

__version__ = "0.1.0"

# Core data models
from .models import (
    EnrichedRequest,
    GenerationParams,
    LLMRequest,
    LLMResponse,
    Message,
    ModelDescriptor,
    ResponseChunk,
    TokenUsage,
)

# Errors
from .errors import (
    ConcurrencyLimitError,
    ErrorCode,
    LLMEngineError,
    LLMError,
    ProviderNotFoundError,
    RequestCancelledError,
    ValidationError,
)

# Configuration management
from .config import (
    CacheConfig,
    ConfigError,
    ConfigManager,
    EngineConfig,
    FallbackConfig,
    FallbackTarget,
    ProviderConfig,
)

# Registry, cache and billing
from .registry import ModelRegistry, SearchCriteria
from .cache import CacheStats, ResponseCache, make_key
from .billing import BillingError, CostStats, CostTracker

# Events and fallback tracking
from .events import EngineEvent, EventBus, EventType
from .fallback_tracker import FallbackEvent, FallbackStats, FallbackTracker

# Main engine (unified entry point)
from .dispatcher import RequestState
from .streaming import CompletionStream
from .engine import EngineMetrics, LLMEngine

# Provider adapters
from .adapters import ConnectionResult, MockAdapter, OpenAICompatibleAdapter, ProviderAdapter

__all__ = [
    # Version
    "__version__",
    # Main entry point
    "LLMEngine",
    "EngineMetrics",
    "CompletionStream",
    "RequestState",
    # Data models
    "Message",
    "ModelDescriptor",
    "GenerationParams",
    "LLMRequest",
    "EnrichedRequest",
    "ResponseChunk",
    "TokenUsage",
    "LLMResponse",
    # Errors
    "ErrorCode",
    "LLMError",
    "LLMEngineError",
    "ValidationError",
    "ConcurrencyLimitError",
    "ProviderNotFoundError",
    "RequestCancelledError",
    # Configuration
    "ConfigManager",
    "ConfigError",
    "EngineConfig",
    "CacheConfig",
    "FallbackConfig",
    "FallbackTarget",
    "ProviderConfig",
    # Registry, cache, billing
    "ModelRegistry",
    "SearchCriteria",
    "ResponseCache",
    "CacheStats",
    "make_key",
    "CostTracker",
    "CostStats",
    "BillingError",
    # Events
    "EventBus",
    "EngineEvent",
    "EventType",
    # Fallback tracker
    "FallbackTracker",
    "FallbackEvent",
    "FallbackStats",
    # Provider adapters
    "ProviderAdapter",
    "ConnectionResult",
    "OpenAICompatibleAdapter",
    "MockAdapter",
]
