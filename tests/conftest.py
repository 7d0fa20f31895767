"""
Shared helpers for the engine test suite.
"""

import pytest

from llm_engine import EngineConfig, LLMEngine, LLMRequest, Message, MockAdapter
from llm_engine.config import CacheConfig, FallbackConfig


class RecordingSleep:
    """Backoff sleep replacement that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def delays_ms(self) -> list[int]:
        return [round(d * 1000) for d in self.delays]


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def user_request(text: str = "Hello", **kwargs) -> LLMRequest:
    return LLMRequest(messages=[Message(role="user", content=text)], **kwargs)


def make_engine(
    adapter: MockAdapter | None = None,
    sleep: RecordingSleep | None = None,
    clock: FakeClock | None = None,
    **overrides,
) -> LLMEngine:
    """Engine using the mock provider as default, with optional config overrides."""
    config = EngineConfig(default_provider="mock", default_model="mock-model")
    for key, value in overrides.items():
        setattr(config, key, value)
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    if clock is not None:
        kwargs["clock"] = clock
    engine = LLMEngine(config=config, **kwargs)
    engine.register_provider(adapter or MockAdapter())
    return engine


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_cache() -> CacheConfig:
    return CacheConfig(enabled=False)


@pytest.fixture
def single_attempt() -> FallbackConfig:
    return FallbackConfig(enabled=False)
