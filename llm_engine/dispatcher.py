"""
Dispatcher: executes an enriched request against its provider.

Per request it checks the cache, makes up to ``max_attempts`` provider
attempts with exponential backoff between retryable failures, optionally
walks an alternate-provider fallback chain, and records cost and cache
entries on success.

State machine:
    BUILDING -> CACHE_CHECK -> SERVED                       (cache hit)
    CACHE_CHECK -> DISPATCHING -> COMPLETING -> SERVED      (success)
    DISPATCHING -> EVALUATING -> BACKOFF -> DISPATCHING     (retry)
    EVALUATING -> FAILED                                    (terminal)
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable

from .billing import CostTracker
from .cache import ResponseCache
from .config import FallbackConfig, FallbackTarget
from .errors import ErrorCode, LLMError, ProviderNotFoundError, classify_exception
from .events import EventBus, EventType
from .fallback_tracker import FallbackTracker
from .models import EnrichedRequest, LLMResponse, ResponseChunk, TokenUsage
from .prompts import estimate_tokens
from .registry import ModelRegistry

logger = logging.getLogger(__name__)

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 10_000


def backoff_delay_ms(attempt: int) -> int:
    """Delay after the failed attempt with 0-based index ``attempt``."""
    return min(BASE_DELAY_MS * 2 ** attempt, MAX_DELAY_MS)


class RequestState(str, Enum):
    BUILDING = "building"
    CACHE_CHECK = "cache-check"
    DISPATCHING = "dispatching"
    COMPLETING = "completing"
    EVALUATING = "evaluating"
    BACKOFF = "backoff"
    SERVED = "served"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.SERVED, RequestState.FAILED)


@dataclass
class DispatchContext:
    """Mutable per-request bookkeeping shared with the engine."""
    request: EnrichedRequest
    state: RequestState = RequestState.BUILDING
    attempts: int = 0
    provider_id: str = ""
    model_id: str = ""
    started_at: float = field(default_factory=time.monotonic)
    response: LLMResponse | None = None
    error: BaseException | None = None
    failure_reason: str | None = None

    def __post_init__(self):
        self.provider_id = self.provider_id or self.request.provider_id
        self.model_id = self.model_id or self.request.model_id

    @property
    def latency_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


def _condition_matches(target: FallbackTarget, error: LLMError) -> bool:
    if target.condition == "on-rate-limit":
        return error.code in (ErrorCode.RATE_LIMIT_EXCEEDED, ErrorCode.QUOTA_EXCEEDED)
    if target.condition == "on-timeout":
        return error.code == ErrorCode.TIMEOUT
    return True


class Dispatcher:
    """
    Retry and fallback controller.

    Args:
        registry: Resolves provider adapters and model pricing
        cache: Response cache, or None when caching is disabled
        costs: Cost ledger updated on every success
        events: Event bus for retry, fallback, cache and usage events
        fallback: Attempt ceiling, enable flag and alternate chain
        timeout_ms: Bound on each individual attempt
        fallback_tracker: Records switches to alternate providers
        sleep: Awaitable sleep in seconds, injectable for tests
    """

    def __init__(
        self,
        registry: ModelRegistry,
        cache: ResponseCache | None,
        costs: CostTracker,
        events: EventBus,
        fallback: FallbackConfig | None = None,
        timeout_ms: int = 60_000,
        fallback_tracker: FallbackTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.cache = cache
        self.costs = costs
        self.events = events
        self.fallback = fallback or FallbackConfig()
        self.timeout_ms = timeout_ms
        self.fallback_tracker = fallback_tracker or FallbackTracker()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.fallback.max_attempts if self.fallback.enabled else 1

    async def dispatch(self, ctx: DispatchContext) -> AsyncIterator[ResponseChunk]:
        """
        Run a request to completion, yielding its chunks.

        Yields zero or more ``delta`` chunks followed by exactly one
        ``final`` chunk, or raises the terminal LLMError instead of the final.
        """
        request = ctx.request

        ctx.state = RequestState.CACHE_CHECK
        cached = self._cache_lookup(ctx)
        if cached is not None:
            ctx.state = RequestState.SERVED
            yield cached
            return

        targets = [(request.provider_id, request.model_id)]
        emitted = False
        last_error: LLMError | None = None

        for index, (provider_id, model_id) in enumerate(targets + self._chain()):
            if index > 0:
                target = self.fallback.chain[index - 1]
                if last_error is None or not last_error.retryable or emitted:
                    break
                if not _condition_matches(target, last_error):
                    continue
                logger.info(
                    "Falling back from %s/%s to %s/%s: %s",
                    ctx.provider_id, ctx.model_id, provider_id, model_id, last_error.message,
                )
                self.events.emit(
                    EventType.FALLBACK,
                    request.request_id,
                    from_provider=ctx.provider_id,
                    from_model=ctx.model_id,
                    to_provider=provider_id,
                    to_model=model_id,
                    error=last_error.message,
                )

            previous = (ctx.provider_id, ctx.model_id)
            trigger = last_error
            ctx.provider_id, ctx.model_id = provider_id, model_id
            target_request = request.with_target(provider_id, model_id)
            switch_started = time.monotonic()

            try:
                async for chunk in self._attempt_loop(ctx, target_request):
                    if not chunk.is_final:
                        emitted = True
                    yield chunk
            except LLMError as e:
                last_error = e
                if index > 0:
                    self._record_switch(request, previous, provider_id, model_id, trigger, switch_started, False)
                continue

            if index > 0:
                self._record_switch(request, previous, provider_id, model_id, trigger, switch_started, True)
            return

        ctx.state = RequestState.FAILED
        ctx.error = last_error
        raise last_error

    def _record_switch(self, request, previous, provider_id, model_id, trigger, started, success):
        self.fallback_tracker.record_fallback(
            provider=previous[0],
            original_model=previous[1],
            fallback_provider=provider_id,
            fallback_model=model_id,
            error_message=trigger.message if trigger else "",
            duration_ms=(time.monotonic() - started) * 1000,
            success=success,
            error_code=trigger.code.value if trigger else None,
            request_id=request.request_id,
        )

    def _chain(self) -> list[tuple[str, str]]:
        if not self.fallback.enabled:
            return []
        return [(t.provider, t.model) for t in self.fallback.chain]

    def _cache_lookup(self, ctx: DispatchContext) -> ResponseChunk | None:
        request = ctx.request
        if self.cache is None or request.stream or not request.cache_key:
            return None

        cached = self.cache.get(request.cache_key)
        if cached is None:
            self.events.emit(EventType.CACHE_MISS, request.request_id, key=request.cache_key)
            return None

        model = self.registry.get_model(cached.model_id)
        saved = self.costs.record_saved(model, cached.usage)
        ctx.provider_id, ctx.model_id = cached.provider_id, cached.model_id
        ctx.response = LLMResponse(
            request_id=request.request_id,
            provider_id=cached.provider_id,
            model_id=cached.model_id,
            content=cached.content,
            usage=cached.usage,
            cost_usd=0.0,
            reasoning_content=cached.reasoning_content,
            latency_ms=ctx.latency_ms,
            from_cache=True,
            finish_reason=cached.finish_reason,
            attempts=0,
        )
        self.events.emit(
            EventType.CACHE_HIT,
            request.request_id,
            key=request.cache_key,
            saved_cost=saved,
        )
        return ResponseChunk.final(
            content=cached.content,
            usage=cached.usage,
            finish_reason=cached.finish_reason,
            reasoning_content=cached.reasoning_content,
            from_cache=True,
        )

    async def _attempt_loop(
        self, ctx: DispatchContext, request: EnrichedRequest
    ) -> AsyncIterator[ResponseChunk]:
        max_attempts = self.max_attempts
        for attempt in range(max_attempts):
            ctx.state = RequestState.DISPATCHING
            ctx.attempts += 1
            emitted = False
            try:
                async for chunk in self._run_attempt(request):
                    if chunk.is_final:
                        ctx.state = RequestState.COMPLETING
                        yield self._complete(ctx, request, chunk)
                        ctx.state = RequestState.SERVED
                        ctx.error = None
                        return
                    emitted = True
                    yield chunk
                raise LLMError(
                    request.provider_id,
                    "Stream ended without a final chunk",
                    code=ErrorCode.SERVER_ERROR,
                )
            except Exception as e:
                error = classify_exception(request.provider_id, e)
                ctx.state = RequestState.EVALUATING
                ctx.error = error

                if emitted or not error.retryable or attempt == max_attempts - 1:
                    if emitted:
                        logger.warning(
                            "Request %s failed after partial output: %s",
                            request.request_id, error,
                        )
                    raise error

                delay_ms = backoff_delay_ms(attempt)
                logger.info(
                    "Retrying request %s in %dms (attempt %d/%d): %s",
                    request.request_id, delay_ms, attempt + 1, max_attempts, error,
                )
                self.events.emit(
                    EventType.RETRY,
                    request.request_id,
                    attempt=attempt + 1,
                    delay_ms=delay_ms,
                    error=error.message,
                    code=error.code.value,
                )
                ctx.state = RequestState.BACKOFF
                await self._sleep(delay_ms / 1000)

    async def _run_attempt(self, request: EnrichedRequest) -> AsyncIterator[ResponseChunk]:
        """One provider call, bounded by the per-request timeout."""
        provider = self.registry.get_provider(request.provider_id)
        if provider is None:
            raise ProviderNotFoundError(request.provider_id)

        timeout_s = self.timeout_ms / 1000
        deadline = time.monotonic() + timeout_s
        result = provider.complete(request)

        if inspect.isawaitable(result):
            try:
                chunk = await asyncio.wait_for(result, timeout_s)
            except asyncio.TimeoutError:
                raise LLMError(request.provider_id, "Request timed out", code=ErrorCode.TIMEOUT)
            if not chunk.is_final:
                raise LLMError(
                    request.provider_id,
                    "Provider returned no final chunk",
                    code=ErrorCode.SERVER_ERROR,
                )
            yield chunk
            return

        iterator = result.__aiter__()
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise LLMError(request.provider_id, "Request timed out", code=ErrorCode.TIMEOUT)
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise LLMError(request.provider_id, "Request timed out", code=ErrorCode.TIMEOUT)
                yield chunk
                # Chunks after the final one are ignored
                if chunk.is_final:
                    return
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _complete(
        self, ctx: DispatchContext, request: EnrichedRequest, chunk: ResponseChunk
    ) -> ResponseChunk:
        """Record usage and cost, populate the cache and build the response."""
        usage = chunk.usage
        if usage is None:
            usage = TokenUsage(
                input_tokens=request.token_estimate or estimate_tokens(request.messages),
                output_tokens=estimate_tokens(chunk.content),
            )
            chunk = ResponseChunk.final(
                content=chunk.content,
                usage=usage,
                finish_reason=chunk.finish_reason or "stop",
                reasoning_content=chunk.reasoning_content,
            )

        model = self.registry.get_model(request.model_id)
        cost = self.costs.record_usage(request.provider_id, request.model_id, usage, model)
        self.events.emit(
            EventType.USAGE_TRACKED,
            request.request_id,
            provider=request.provider_id,
            model=request.model_id,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost_usd=cost,
        )

        response = LLMResponse(
            request_id=request.request_id,
            provider_id=request.provider_id,
            model_id=request.model_id,
            content=chunk.content,
            usage=usage,
            cost_usd=cost,
            reasoning_content=chunk.reasoning_content,
            latency_ms=ctx.latency_ms,
            finish_reason=chunk.finish_reason or "stop",
            attempts=ctx.attempts,
        )
        ctx.response = response

        # The key names the primary model; fallback answers are not stored under it
        served_by_primary = (request.provider_id, request.model_id) == (
            ctx.request.provider_id, ctx.request.model_id
        )
        if self.cache is not None and not request.stream and request.cache_key and served_by_primary:
            self.cache.set(request.cache_key, response)
        return chunk
