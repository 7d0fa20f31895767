"""
LLM Engine Usage Example

This script demonstrates the complete call flow of the LLM engine:
1. Create the engine and register providers
2. Stream and complete requests with modes and answer types
3. Serve a repeated request from the cache
4. Cancel an in-flight request
5. View metrics, cost and cache statistics

The mock provider runs without network access. Set DEEPSEEK_API_KEY (or
provide config.yaml) to also run a real request.
"""

import asyncio
import logging
import os

from llm_engine import (
    ConfigError,
    ConfigManager,
    EngineConfig,
    ErrorCode,
    EventType,
    LLMEngine,
    LLMError,
    LLMRequest,
    Message,
    MockAdapter,
    OpenAICompatibleAdapter,
    ProviderConfig,
    RequestCancelledError,
    ValidationError,
)
from llm_engine.adapters import reply


def build_demo_engine() -> LLMEngine:
    """Engine wired to the mock provider."""
    config = EngineConfig(default_provider="mock", default_model="mock-model")
    engine = LLMEngine(config=config)
    engine.register_provider(MockAdapter(chunk_delay=0.05))
    return engine


async def streaming_example(engine: LLMEngine):
    """
    Streaming example: consume deltas as they arrive.

    Demonstrates:
    - stream() with a conversation mode and answer type
    - delta and final chunks
    """
    print("=" * 60)
    print("Streaming Example")
    print("=" * 60)

    request = LLMRequest(
        messages=[Message(role="user", content="How do I reverse a list in Python?")],
        mode="coding",
        answer_type="short",
    )
    async with await engine.stream(request) as stream:
        async for chunk in stream:
            if chunk.is_final:
                print(f"\nFinal: {len(chunk.content)} chars, usage={chunk.usage.to_dict()}")
            else:
                print(chunk.content, end="", flush=True)


async def cache_example(engine: LLMEngine):
    """
    Cache example: the second identical non-streaming request is a cache hit.
    """
    print("\n" + "=" * 60)
    print("Cache Example")
    print("=" * 60)

    request = LLMRequest(
        messages=[Message(role="user", content="What is the capital of France?")],
        stream=False,
    )
    first = await engine.complete(request)
    second = await engine.complete(request)
    print(f"First:  from_cache={first.from_cache} cost=${first.cost_usd:.8f}")
    print(f"Second: from_cache={second.from_cache} cost=${second.cost_usd:.8f}")
    print(f"Cache: {engine.cache_stats()}")


async def cancellation_example(engine: LLMEngine):
    """
    Cancellation example: cancel a stream after its first delta.
    """
    print("\n" + "=" * 60)
    print("Cancellation Example")
    print("=" * 60)

    request = LLMRequest(
        messages=[Message(role="user", content="Tell me a very long story")],
        request_id="demo-cancel",
    )
    stream = await engine.stream(request)
    try:
        async for chunk in stream:
            print(f"Received delta: {chunk.content!r}")
            cancelled = await engine.cancel("demo-cancel")
            print(f"Cancelled: {cancelled}")
    except RequestCancelledError as e:
        print(f"Stream ended: {e}")


async def retry_example():
    """
    Retry example: a transient failure is retried after backoff.
    """
    print("\n" + "=" * 60)
    print("Retry Example")
    print("=" * 60)

    engine = LLMEngine(config=EngineConfig(default_provider="mock", default_model="mock-model"))
    flaky = LLMError("mock", "Service temporarily unavailable", code=ErrorCode.SERVICE_UNAVAILABLE)
    engine.register_provider(MockAdapter(script=[flaky, reply("Recovered on the second attempt")]))
    engine.events.subscribe(
        lambda event: print(f"Retry {event.data['attempt']} in {event.data['delay_ms']}ms"),
        EventType.RETRY,
    )
    response = await engine.complete(
        LLMRequest(messages=[Message(role="user", content="Hello")])
    )
    print(f"Response: {response.content} (attempts={response.attempts})")


def validation_example(engine: LLMEngine):
    """Requests are validated before anything is dispatched."""
    print("\n" + "=" * 60)
    print("Request Validation Example")
    print("=" * 60)

    invalid = LLMRequest(messages=[], mode="unknown")
    print(f"Errors: {invalid.validate()}")


def statistics_example(engine: LLMEngine):
    print("\n" + "=" * 60)
    print("Statistics")
    print("=" * 60)

    metrics = engine.metrics()
    print(f"Total requests:  {metrics.total_requests}")
    print(f"Successful:      {metrics.successful_requests}")
    print(f"Cancelled:       {metrics.cancelled_requests}")
    print(f"Cache hit rate:  {metrics.cache_hit_rate:.0%}")
    print(f"Total tokens:    {metrics.total_tokens}")

    costs = engine.cost_stats()
    print(f"Total cost:      ${costs.total_cost:.8f}")
    print(f"Saved by cache:  ${costs.saved_cost:.8f}")
    print(f"By model:        {costs.cost_by_model}")


async def deepseek_example():
    """
    Real request against DeepSeek (requires DEEPSEEK_API_KEY or config.yaml).
    """
    print("\n" + "=" * 60)
    print("DeepSeek Example")
    print("=" * 60)

    try:
        engine = LLMEngine(config_manager=ConfigManager("config.yaml"))
        provider_config = engine.config.providers.get("deepseek")
    except ConfigError:
        engine = LLMEngine()
        provider_config = None

    api_key = os.getenv("DEEPSEEK_API_KEY")
    if provider_config is None and api_key:
        provider_config = ProviderConfig(api_key=api_key)
    if provider_config is None:
        print("DEEPSEEK_API_KEY not set; skipping")
        return

    engine.register_provider(OpenAICompatibleAdapter())
    try:
        await engine.initialize_provider("deepseek", provider_config)
        model_id = engine.recommend_model(mode="research", profile="balanced")
        response = await engine.complete(
            LLMRequest(
                messages=[Message(role="user", content="Summarize what SSE is in one sentence.")],
                model_id=model_id,
                answer_type="short",
            )
        )
        print(f"[{response.model_id}] {response.content}")
        print(f"Cost: ${response.cost_usd:.6f}")
    except (ValidationError, LLMError) as e:
        print(f"Request failed: {e}")
    finally:
        await engine.aclose()


async def main():
    """Run all examples."""
    logging.basicConfig(level=logging.WARNING)
    print("\n" + "=" * 60)
    print("LLM Engine - Usage Examples")
    print("=" * 60)

    engine = build_demo_engine()
    validation_example(engine)
    await streaming_example(engine)
    await cache_example(engine)
    await cancellation_example(engine)
    statistics_example(engine)
    await engine.aclose()

    await retry_example()
    await deepseek_example()

    print("\n" + "=" * 60)
    print("Examples completed!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
