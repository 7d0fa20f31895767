"""
Scripted mock provider for tests and demos.

Each call to ``complete`` consumes the next script step. A step is either
an exception (raised before any chunk) or a list of ResponseChunk and
exception items, delivered in order. When the script runs out, the last
step repeats. Without a script, a deterministic echo reply is produced.
"""

import asyncio
from typing import AsyncIterator, Sequence, Union

from ..config import ProviderConfig
from ..models import EnrichedRequest, ModelDescriptor, ResponseChunk, TokenUsage
from .base import CompletionResult, ConnectionResult, ProviderAdapter

_MOCK_PREFIX = "[MOCK] "

ScriptItem = Union[ResponseChunk, BaseException]
ScriptStep = Union[BaseException, Sequence[ScriptItem]]

MOCK_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="mock-model",
        provider="mock",
        label="Mock Model",
        context_window=64000,
        max_output_tokens=8192,
        capabilities=frozenset({"text", "streaming"}),
        input_cost_per_1m=0.14,
        output_cost_per_1m=0.28,
        recommended_use=("general",),
    ),
]


def reply(text: str, input_tokens: int = 10, output_tokens: int = 20, pieces: int = 2) -> list[ResponseChunk]:
    """Script step that streams ``text`` in ``pieces`` deltas then a final chunk."""
    size = max(1, -(-len(text) // max(pieces, 1)))
    chunks = [ResponseChunk.delta(text[i:i + size]) for i in range(0, len(text), size)]
    chunks.append(
        ResponseChunk.final(
            content=text,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
        )
    )
    return chunks


class MockAdapter(ProviderAdapter):
    """
    Deterministic provider that never touches the network.

    Args:
        provider_id: Provider id used in the registry
        models: Model descriptors to advertise; defaults to one priced model
        script: Steps consumed one per call
        chunk_delay: Seconds to sleep before each streamed chunk
    """

    def __init__(
        self,
        provider_id: str = "mock",
        models: list[ModelDescriptor] | None = None,
        script: list[ScriptStep] | None = None,
        chunk_delay: float = 0.0,
    ):
        self.id = provider_id
        self.label = f"Mock ({provider_id})"
        self.requires_api_key = False
        self.models = list(models) if models is not None else list(MOCK_MODELS)
        self.script = list(script or [])
        self.chunk_delay = chunk_delay
        self.calls = 0
        self.requests: list[EnrichedRequest] = []
        self.cancelled: list[str] = []
        self.initialized_with: ProviderConfig | None = None
        self.closed = False

    async def initialize(self, config: ProviderConfig) -> None:
        self.initialized_with = config

    async def test_connection(self) -> ConnectionResult:
        return ConnectionResult(ok=True)

    def _next_step(self, request: EnrichedRequest) -> ScriptStep:
        if not self.script:
            prompt = request.messages[-1].content if request.messages else ""
            return reply(f"{_MOCK_PREFIX}{prompt}")
        index = min(self.calls - 1, len(self.script) - 1)
        return self.script[index]

    def complete(self, request: EnrichedRequest) -> CompletionResult:
        self.calls += 1
        self.requests.append(request)
        step = self._next_step(request)
        if isinstance(step, BaseException):
            raise step
        if request.stream:
            return self._stream(step)
        return self._complete(step)

    async def _stream(self, step: Sequence[ScriptItem]) -> AsyncIterator[ResponseChunk]:
        for item in step:
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            if isinstance(item, BaseException):
                raise item
            yield item

    async def _complete(self, step: Sequence[ScriptItem]) -> ResponseChunk:
        if self.chunk_delay:
            await asyncio.sleep(self.chunk_delay)
        for item in step:
            if isinstance(item, BaseException):
                raise item
            if item.is_final:
                return item
        # A step without a final chunk yields a stream the dispatcher rejects
        return ResponseChunk.delta("")

    async def cancel(self, request_id: str) -> None:
        self.cancelled.append(request_id)

    async def aclose(self) -> None:
        self.closed = True
