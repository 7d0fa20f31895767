"""
LLMEngine - unified entry point for LLM request orchestration.

Integrates the model registry, prompt builder, response cache, cost
tracker and dispatcher behind a single API with streaming, cancellation,
a concurrency ceiling and request metrics.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Awaitable, Callable

from .adapters.base import ConnectionResult, ProviderAdapter
from .billing import CostStats, CostTracker
from .cache import CacheStats, ResponseCache, make_key
from .config import ConfigManager, EngineConfig, ProviderConfig
from .dispatcher import DispatchContext, Dispatcher, RequestState
from .errors import (
    ConcurrencyLimitError,
    ErrorCode,
    LLMError,
    ProviderNotFoundError,
    RequestCancelledError,
    ValidationError,
)
from .events import EngineEvent, EventBus, EventType
from .fallback_tracker import FallbackTracker
from .models import EnrichedRequest, LLMRequest, LLMResponse, ModelDescriptor
from .prompts import build_prompt, resolve_params
from .registry import ModelRegistry
from .request_logger import RequestLogger
from .streaming import CompletionStream, StreamChannel

logger = logging.getLogger(__name__)

# Finished request states kept for request_state() lookups
MAX_TRACKED_REQUESTS = 1000


@dataclass(frozen=True)
class EngineMetrics:
    """Snapshot of engine request metrics."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cancelled_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_hit_rate: float = 0.0
    error_rate: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_latency_ms: float = 0.0
    active_requests: int = 0
    requests_by_provider: dict[str, int] = field(default_factory=dict)


class _Slot:
    """One concurrency slot; release is idempotent."""

    def __init__(self, semaphore: asyncio.Semaphore, held: bool = False):
        self._semaphore = semaphore
        self.held = held

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self.held = True

    def release(self) -> None:
        if self.held:
            self.held = False
            self._semaphore.release()


class LLMEngine:
    """
    Request-orchestration engine.

    Features:
    - Model registry with mode/profile based recommendation
    - Prompt building from conversation mode and answer type
    - Response caching for non-streaming requests
    - Retry with exponential backoff and an optional fallback chain
    - Cost accounting per provider and model
    - Streaming with per-request cancellation
    - Lifecycle events and request metrics

    Usage:
        engine = LLMEngine(config=EngineConfig())
        engine.register_provider(OpenAICompatibleAdapter())
        await engine.initialize_provider("deepseek")
        async with await engine.stream(LLMRequest(messages=[Message("user", "Hi")])) as stream:
            async for chunk in stream:
                ...
    """

    def __init__(
        self,
        config_manager: ConfigManager | None = None,
        config: EngineConfig | None = None,
        config_path: str | Path | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize LLMEngine.

        Args:
            config_manager: Optional ConfigManager instance
            config: Configuration object, used when no manager is given
            config_path: YAML config file, used when neither of the above is given
            sleep: Backoff sleep function in seconds (injectable for tests)
            clock: Wall clock in seconds used by the cache
        """
        if config_manager is None:
            if config is None and config_path is None:
                config = EngineConfig()
            config_manager = ConfigManager(config_path, config=config)
        self._config_manager = config_manager
        cfg = self._config_manager.config

        self._events = EventBus()
        self._registry = ModelRegistry(cfg.default_model, cfg.pricing)
        self._cache = (
            ResponseCache(cfg.cache.max_size_mb, cfg.cache.ttl_ms, clock=clock)
            if cfg.cache.enabled else None
        )
        self._costs = CostTracker()
        self._fallback_tracker = FallbackTracker()
        self._dispatcher = Dispatcher(
            registry=self._registry,
            cache=self._cache,
            costs=self._costs,
            events=self._events,
            fallback=cfg.fallback,
            timeout_ms=cfg.request_timeout_ms,
            fallback_tracker=self._fallback_tracker,
            sleep=sleep,
        )
        self._request_logger = RequestLogger(
            cfg.request_log.dir,
            enabled=True if cfg.request_log.enabled else None,
        )
        self._semaphore = asyncio.Semaphore(cfg.max_concurrent_requests)
        self._active: dict[str, StreamChannel] = {}
        self._contexts: OrderedDict[str, DispatchContext] = OrderedDict()

        self._reset_counters()
        self._events.subscribe(self._count_cache_event, EventType.CACHE_HIT, EventType.CACHE_MISS)

    def _reset_counters(self) -> None:
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._cancelled_requests = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._total_tokens = 0
        self._total_latency_ms = 0.0
        self._requests_by_provider: dict[str, int] = {}

    def _count_cache_event(self, event: EngineEvent) -> None:
        if event.type == EventType.CACHE_HIT:
            self._cache_hits += 1
        else:
            self._cache_misses += 1

    @property
    def config(self) -> EngineConfig:
        return self._config_manager.config

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def fallback_tracker(self) -> FallbackTracker:
        return self._fallback_tracker

    @property
    def request_logger(self) -> RequestLogger:
        return self._request_logger

    # Providers and models

    def register_provider(self, provider: ProviderAdapter) -> None:
        """Register a provider and all of its models."""
        models = self._registry.register_provider(provider)
        logger.info("Registered provider %s with %d models", provider.id, len(models))
        self._events.emit(
            EventType.PROVIDER_REGISTERED,
            provider_id=provider.id,
            models=[m.id for m in models],
        )

    async def initialize_provider(
        self, provider_id: str, provider_config: ProviderConfig | None = None
    ) -> None:
        """
        Initialize a registered provider.

        Args:
            provider_id: Provider to initialize
            provider_config: Explicit configuration; defaults to the
                ``providers.<id>`` section of the engine config

        Raises:
            ProviderNotFoundError: If the provider is not registered
            LLMError: If the provider rejects the configuration
        """
        provider = self._require_provider(provider_id)
        if provider_config is None:
            provider_config = self.config.providers.get(provider_id, ProviderConfig())
        await provider.initialize(provider_config)
        self._events.emit(EventType.PROVIDER_INITIALIZED, provider_id=provider_id)

    async def test_connection(self, provider_id: str) -> ConnectionResult:
        return await self._require_provider(provider_id).test_connection()

    def _require_provider(self, provider_id: str) -> ProviderAdapter:
        provider = self._registry.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def get_model(self, model_id: str) -> ModelDescriptor | None:
        return self._registry.get_model(model_id)

    def recommend_model(self, mode: str = "auto", profile: str = "balanced") -> str:
        return self._registry.recommend(mode, profile)

    # Requests

    def _generate_request_id(self) -> str:
        return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    def _build_request(self, request: LLMRequest, request_id: str) -> EnrichedRequest:
        model_id = request.model_id or self.config.default_model
        model = self._registry.get_model(model_id)
        if model is None:
            raise LLMError(
                self.config.default_provider,
                f"Model {model_id} not found",
                code=ErrorCode.MODEL_NOT_FOUND,
            )

        built = build_prompt(request.messages, request.mode, request.answer_type)
        params = resolve_params(request.params, request.mode, request.answer_type, model)
        cache_key = None
        if self._cache is not None and not request.stream:
            # Keyed on the caller's request, not the built prompt
            cache_key = make_key(request, model_id)

        return EnrichedRequest(
            request_id=request_id,
            provider_id=model.provider,
            model_id=model_id,
            messages=built.messages,
            params=params,
            stream=request.stream,
            original=request,
            token_estimate=built.token_estimate,
            cache_key=cache_key,
        )

    async def stream(self, request: LLMRequest) -> CompletionStream:
        """
        Start a request and return its chunk stream.

        The returned stream yields ``delta`` chunks followed by exactly one
        ``final`` chunk, or raises the classified error instead of the final.
        Non-streaming requests (``request.stream = False``) yield just the
        final chunk and are eligible for caching.

        Raises:
            ValidationError: If the request is invalid
            ConcurrencyLimitError: Under the ``reject`` policy when all slots are busy
            LLMError: MODEL_NOT_FOUND when the model is not registered
        """
        errors = request.validate()
        if errors:
            raise ValidationError(errors)

        request_id = request.request_id or self._generate_request_id()
        if request_id in self._active:
            raise ValidationError([f"request_id {request_id} is already in flight"])

        slot = _Slot(self._semaphore)
        if self.config.concurrency_policy == "reject":
            if self._semaphore.locked():
                raise ConcurrencyLimitError(self.config.max_concurrent_requests)
            # Does not suspend while the semaphore is unlocked
            await slot.acquire()

        self._total_requests += 1
        try:
            enriched = self._build_request(request, request_id)
        except LLMError as e:
            slot.release()
            self._failed_requests += 1
            self._events.emit(EventType.REQUEST_ERROR, request_id, error=e.message, code=e.code.value)
            raise

        provider_id = enriched.provider_id
        self._requests_by_provider[provider_id] = self._requests_by_provider.get(provider_id, 0) + 1
        ctx = DispatchContext(enriched)
        self._track(request_id, ctx)
        self._events.emit(
            EventType.REQUEST_STARTED,
            request_id,
            provider_id=provider_id,
            model_id=enriched.model_id,
            stream=enriched.stream,
        )

        channel: StreamChannel | None = None

        def on_done(error: BaseException | None) -> None:
            slot.release()
            self._finish_request(ctx, channel, error)

        channel = StreamChannel(
            request_id,
            provider_id,
            self._run(ctx, slot),
            on_done=on_done,
        )
        self._active[request_id] = channel
        return CompletionStream(channel)

    async def _run(self, ctx: DispatchContext, slot: _Slot):
        if not slot.held:
            await slot.acquire()
        try:
            async for chunk in self._dispatcher.dispatch(ctx):
                yield chunk
        finally:
            slot.release()

    def _track(self, request_id: str, ctx: DispatchContext) -> None:
        self._contexts[request_id] = ctx
        self._contexts.move_to_end(request_id)
        while len(self._contexts) > MAX_TRACKED_REQUESTS:
            oldest_id, oldest = next(iter(self._contexts.items()))
            if not oldest.state.is_terminal:
                break
            del self._contexts[oldest_id]

    def _finish_request(
        self,
        ctx: DispatchContext,
        channel: StreamChannel | None,
        error: BaseException | None,
    ) -> None:
        request = ctx.request
        self._active.pop(request.request_id, None)
        latency_ms = ctx.latency_ms
        response = ctx.response

        if error is None and response is not None:
            if channel is not None:
                channel.response = response
            self._successful_requests += 1
            self._total_tokens += response.usage.total_tokens
            self._total_latency_ms += latency_ms
            self._events.emit(
                EventType.REQUEST_SUCCESS,
                request.request_id,
                provider_id=response.provider_id,
                model_id=response.model_id,
                latency_ms=latency_ms,
                from_cache=response.from_cache,
            )
        elif isinstance(error, RequestCancelledError):
            ctx.state = RequestState.FAILED
            ctx.failure_reason = "cancelled"
            self._cancelled_requests += 1
            self._events.emit(EventType.REQUEST_CANCELLED, request.request_id)
        else:
            ctx.state = RequestState.FAILED
            ctx.error = error
            ctx.failure_reason = str(error)
            self._failed_requests += 1
            logger.warning("Request %s failed: %s", request.request_id, error)
            self._events.emit(
                EventType.REQUEST_ERROR,
                request.request_id,
                error=str(error),
                code=error.code.value if isinstance(error, LLMError) else ErrorCode.UNKNOWN_ERROR.value,
            )

        self._request_logger.log_request(
            provider=ctx.provider_id,
            model=ctx.model_id,
            prompt=request.prompt_text,
            response_text=response.content if response else None,
            input_tokens=response.usage.input_tokens if response else None,
            output_tokens=response.usage.output_tokens if response else None,
            duration_ms=latency_ms,
            success=error is None and response is not None,
            error_message=str(error) if error else None,
            cost_usd=response.cost_usd if response else None,
            request_id=request.request_id,
            stream=request.stream,
            from_cache=response.from_cache if response else False,
            attempts=ctx.attempts,
        )

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Run a request to completion and return the buffered response.

        The request is always executed non-streaming, so identical requests
        can be served from the cache.

        Raises:
            ValidationError: If the request is invalid
            LLMError: The classified terminal error
        """
        if request.stream:
            request = replace(request, stream=False)
        stream = await self.stream(request)
        return await stream.collect()

    async def cancel(self, request_id: str) -> bool:
        """
        Cancel an in-flight request.

        Returns:
            True if the request was in flight and is now cancelled
        """
        channel = self._active.get(request_id)
        if channel is None or not channel.cancel():
            return False
        provider = self._registry.get_provider(channel.provider_id)
        if provider is not None:
            await provider.cancel(request_id)
        logger.info("Cancelled request %s", request_id)
        return True

    async def cancel_all(self) -> int:
        """Cancel every in-flight request, returning how many were cancelled."""
        count = 0
        for request_id in list(self._active):
            if await self.cancel(request_id):
                count += 1
        self._events.emit(EventType.ALL_REQUESTS_CANCELLED, count=count)
        return count

    def request_state(self, request_id: str) -> RequestState | None:
        ctx = self._contexts.get(request_id)
        return ctx.state if ctx else None

    # Metrics

    def metrics(self) -> EngineMetrics:
        lookups = self._cache_hits + self._cache_misses
        return EngineMetrics(
            total_requests=self._total_requests,
            successful_requests=self._successful_requests,
            failed_requests=self._failed_requests,
            cancelled_requests=self._cancelled_requests,
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
            cache_hit_rate=self._cache_hits / lookups if lookups else 0.0,
            error_rate=(
                self._failed_requests / self._total_requests if self._total_requests else 0.0
            ),
            total_tokens=self._total_tokens,
            total_cost=self._costs.total_cost,
            average_latency_ms=(
                self._total_latency_ms / self._successful_requests
                if self._successful_requests else 0.0
            ),
            active_requests=len(self._active),
            requests_by_provider=dict(self._requests_by_provider),
        )

    def cost_stats(self) -> CostStats:
        return self._costs.stats()

    def cache_stats(self) -> CacheStats:
        if self._cache is None:
            return CacheStats(
                entries=0,
                size_bytes=0,
                size_mb=0.0,
                max_size_mb=self.config.cache.max_size_mb,
                total_hits=0,
            )
        return self._cache.stats()

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def reset_metrics(self) -> None:
        """Zero request counters, the cost ledger and fallback statistics."""
        self._reset_counters()
        self._costs.reset()
        self._fallback_tracker.clear()

    async def aclose(self) -> None:
        """Cancel in-flight requests and close every provider."""
        await self.cancel_all()
        for provider in self._registry.providers():
            await provider.aclose()
