"""
Core data models for the LLM engine.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Literal


Role = Literal["system", "user", "assistant"]
ChunkKind = Literal["delta", "final"]
FinishReason = Literal["stop", "length", "tool_calls", "content_filter", "error"]

VALID_ROLES = ("system", "user", "assistant")
MODEL_CAPABILITIES = ("text", "vision", "audio", "streaming", "reasoning")
COST_TIERS = ("free", "low", "medium", "high", "premium")


@dataclass(frozen=True)
class Message:
    """A single conversation message."""
    role: Role
    content: str
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True)
class ModelDescriptor:
    """
    Static metadata about a model: limits, capabilities and pricing.

    Prices are USD per million tokens. A model without prices is treated
    as free (local or self-hosted).
    """
    id: str
    provider: str
    label: str = ""
    context_window: int = 8192
    max_output_tokens: int = 4096
    default_temperature: float = 0.7
    capabilities: frozenset[str] = frozenset({"text", "streaming"})
    input_cost_per_1m: float | None = None
    output_cost_per_1m: float | None = None
    recommended_use: tuple[str, ...] = ()
    cost_tier: str = "low"
    deprecated: bool = False

    @property
    def is_free(self) -> bool:
        """True when the model declares no pricing."""
        return self.input_cost_per_1m is None or self.output_cost_per_1m is None

    @property
    def supports_streaming(self) -> bool:
        return "streaming" in self.capabilities

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """
        Calculate cost (USD) for a given token usage.

        Formula: cost = (input_tokens / 1_000_000) * input_cost_per_1m +
                        (output_tokens / 1_000_000) * output_cost_per_1m

        Returns 0.0 for models without pricing.
        """
        if self.is_free:
            return 0.0
        input_cost = (input_tokens / 1_000_000) * self.input_cost_per_1m
        output_cost = (output_tokens / 1_000_000) * self.output_cost_per_1m
        return input_cost + output_cost

    def with_pricing(
        self, input_cost_per_1m: float, output_cost_per_1m: float
    ) -> "ModelDescriptor":
        """Return a copy with replaced pricing."""
        return replace(
            self,
            input_cost_per_1m=input_cost_per_1m,
            output_cost_per_1m=output_cost_per_1m,
        )


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters for LLM output control"""
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values"""
        data = {k: v for k, v in self.__dict__.items() if v is not None}
        if "stop" in data:
            data["stop"] = list(data["stop"])
        return data

    def merge(self, other: "GenerationParams | None") -> "GenerationParams":
        """Merge with another GenerationParams, other takes precedence"""
        if other is None:
            return self

        return GenerationParams(
            temperature=other.temperature if other.temperature is not None else self.temperature,
            max_tokens=other.max_tokens if other.max_tokens is not None else self.max_tokens,
            top_p=other.top_p if other.top_p is not None else self.top_p,
            presence_penalty=other.presence_penalty if other.presence_penalty is not None else self.presence_penalty,
            frequency_penalty=other.frequency_penalty if other.frequency_penalty is not None else self.frequency_penalty,
            stop=other.stop if other.stop is not None else self.stop,
        )


@dataclass
class TokenUsage:
    """Token usage statistics"""
    input_tokens: int
    output_tokens: int
    cached_tokens: int | None = None
    reasoning_tokens: int | None = None

    @property
    def total_tokens(self) -> int:
        """Total tokens = input tokens + output tokens"""
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }
        if self.cached_tokens is not None:
            data["cached_tokens"] = self.cached_tokens
        if self.reasoning_tokens is not None:
            data["reasoning_tokens"] = self.reasoning_tokens
        return data


@dataclass
class LLMRequest:
    """
    A conversational completion request as submitted by a caller.

    ``model_id`` may be left empty to use the configured default model.
    ``request_id`` may be supplied so the caller can cancel the request
    before the engine hands back a stream handle.
    """
    messages: list[Message]
    model_id: str | None = None
    params: GenerationParams = field(default_factory=GenerationParams)
    mode: str | None = None
    answer_type: str | None = None
    stream: bool = True
    request_id: str | None = None
    metadata: dict[str, Any] | None = None

    def validate(self) -> list[str]:
        """Validate request parameters, returning a list of errors"""
        from .prompts import ANSWER_TYPES, MODES  # circular at module level

        errors = []
        if not self.messages:
            errors.append("messages is required and cannot be empty")
        for index, message in enumerate(self.messages):
            if message.role not in VALID_ROLES:
                errors.append(
                    f"messages[{index}].role must be one of: {', '.join(VALID_ROLES)}"
                )
            if not isinstance(message.content, str):
                errors.append(f"messages[{index}].content must be a string")
        if self.model_id is not None and not self.model_id.strip():
            errors.append("model_id cannot be blank")
        if self.mode is not None and self.mode not in MODES:
            errors.append(f"mode must be one of: {', '.join(MODES)}")
        if self.answer_type is not None and self.answer_type not in ANSWER_TYPES:
            errors.append(f"answer_type must be one of: {', '.join(ANSWER_TYPES)}")
        temperature = self.params.temperature
        if temperature is not None and not 0.0 <= temperature <= 2.0:
            errors.append("temperature must be between 0 and 2")
        if self.params.max_tokens is not None and self.params.max_tokens <= 0:
            errors.append("max_tokens must be positive")
        return errors


@dataclass(frozen=True)
class EnrichedRequest:
    """
    Immutable, fully resolved copy of an LLMRequest ready for dispatch.

    Carries the generated request id, the resolved provider/model, the
    built prompt messages and resolved sampling parameters.
    """
    request_id: str
    provider_id: str
    model_id: str
    messages: tuple[Message, ...]
    params: GenerationParams
    stream: bool
    original: LLMRequest
    token_estimate: int = 0
    cache_key: str | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def prompt_text(self) -> str:
        """All message contents joined, used for previews and estimates."""
        return "\n".join(m.content for m in self.messages)

    def with_target(self, provider_id: str, model_id: str) -> "EnrichedRequest":
        """Return a copy addressed to a different provider/model."""
        return replace(self, provider_id=provider_id, model_id=model_id)


@dataclass(frozen=True)
class ResponseChunk:
    """
    One element of a completion stream.

    ``kind == "delta"`` carries incremental text and/or reasoning text.
    ``kind == "final"`` carries the accumulated text, usage and finish
    reason, and terminates the stream.
    """
    kind: ChunkKind
    content: str = ""
    reasoning_content: str | None = None
    usage: TokenUsage | None = None
    finish_reason: FinishReason | None = None
    from_cache: bool = False

    @classmethod
    def delta(cls, content: str = "", reasoning_content: str | None = None) -> "ResponseChunk":
        return cls(kind="delta", content=content, reasoning_content=reasoning_content)

    @classmethod
    def final(
        cls,
        content: str,
        usage: TokenUsage | None = None,
        finish_reason: FinishReason = "stop",
        reasoning_content: str | None = None,
        from_cache: bool = False,
    ) -> "ResponseChunk":
        return cls(
            kind="final",
            content=content,
            reasoning_content=reasoning_content,
            usage=usage,
            finish_reason=finish_reason,
            from_cache=from_cache,
        )

    @property
    def is_final(self) -> bool:
        return self.kind == "final"


@dataclass
class LLMResponse:
    """Buffered completion result returned by ``LLMEngine.complete``."""
    request_id: str
    provider_id: str
    model_id: str
    content: str
    usage: TokenUsage
    cost_usd: float = 0.0
    reasoning_content: str | None = None
    latency_ms: float = 0.0
    from_cache: bool = False
    finish_reason: str = "stop"
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, also used for cache size estimation."""
        return {
            "request_id": self.request_id,
            "provider_id": self.provider_id,
            "model_id": self.model_id,
            "content": self.content,
            "reasoning_content": self.reasoning_content,
            "usage": self.usage.to_dict(),
            "cost_usd": self.cost_usd,
            "latency_ms": self.latency_ms,
            "from_cache": self.from_cache,
            "finish_reason": self.finish_reason,
            "attempts": self.attempts,
            "timestamp": self.timestamp,
        }
