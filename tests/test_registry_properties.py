"""
Property-based tests for the model registry.

Feature: llm-engine
Property 10: 模型推荐正确性
"""

import pytest
from hypothesis import given, strategies as st, settings

from llm_engine.adapters import DEEPSEEK_MODELS, MockAdapter
from llm_engine.errors import ErrorCode, LLMError
from llm_engine.models import ModelDescriptor
from llm_engine.prompts import MODES, get_mode_config
from llm_engine.registry import ModelRegistry, SearchCriteria


def model(model_id: str, provider: str = "p", **kwargs) -> ModelDescriptor:
    return ModelDescriptor(id=model_id, provider=provider, **kwargs)


def registry_with(*models: ModelDescriptor, **kwargs) -> ModelRegistry:
    registry = ModelRegistry(**kwargs)
    for m in models:
        registry.register_model(m)
    return registry


class TestRecommendation:
    """
    Property 10: 模型推荐正确性

    The recommendation is always a registered model from the profile or
    mode preference lists, or the configured default when none is
    registered.
    """

    @settings(max_examples=100)
    @given(
        mode=st.sampled_from(MODES),
        profile=st.sampled_from(["speed", "balanced", "quality", "custom"]),
        registered=st.sets(
            st.sampled_from(
                ["deepseek-chat", "deepseek-reasoner", "gpt-4o", "gpt-4o-mini", "claude-3-5-sonnet-20241022", "other"]
            )
        ),
    )
    def test_recommendation_is_registered_or_default(self, mode, profile, registered):
        registry = registry_with(*(model(m) for m in sorted(registered)), default_model="fallback-default")
        chosen = registry.recommend(mode, profile)

        candidates = list(ModelRegistry.PROFILE_ROUTES[profile])
        candidates += list(get_mode_config(mode).preferred_models)
        registered_candidates = [m for m in candidates if m in registered]

        if registered_candidates:
            assert chosen == registered_candidates[0]
        else:
            assert chosen == "fallback-default"

    def test_quality_profile_prefers_reasoner(self):
        registry = registry_with(*DEEPSEEK_MODELS)
        assert registry.recommend("auto", "quality") == "deepseek-reasoner"
        assert registry.recommend("auto", "speed") == "deepseek-chat"

    def test_mode_preference_used_for_custom_profile(self):
        registry = registry_with(*DEEPSEEK_MODELS)
        assert registry.recommend("meeting", "custom") == "deepseek-reasoner"
        assert registry.recommend("coding", "custom") == "deepseek-chat"

    def test_local_profile_picks_free_active_model(self):
        registry = registry_with(
            model("paid", input_cost_per_1m=1.0, output_cost_per_1m=2.0),
            model("old-llama", deprecated=True),
            model("llama"),
        )
        assert registry.recommend("auto", "local") == "llama"

    def test_empty_registry_returns_default(self):
        assert ModelRegistry(default_model="x").recommend("research", "local") == "x"


class TestRegistration:

    def test_provider_models_are_registered(self):
        registry = ModelRegistry()
        adapter = MockAdapter()
        registered = registry.register_provider(adapter)

        assert [m.id for m in registered] == ["mock-model"]
        assert registry.get_provider("mock") is adapter
        assert "mock-model" in registry
        assert len(registry) == 1
        assert registry.models_by_provider("mock")[0].id == "mock-model"

    def test_pricing_override_applies_on_registration(self):
        registry = ModelRegistry(pricing_overrides={"mock": {"mock-model": (1.0, 2.0)}})
        registry.register_provider(MockAdapter())

        descriptor = registry.get_model("mock-model")
        assert descriptor.input_cost_per_1m == 1.0
        assert descriptor.output_cost_per_1m == 2.0

    def test_last_registration_wins(self):
        registry = ModelRegistry()
        registry.register_model(model("shared", provider="a"))
        registry.register_model(model("shared", provider="b"))

        assert registry.get_model("shared").provider == "b"
        assert len(registry) == 1

    def test_reregistering_provider_replaces_it(self):
        registry = ModelRegistry()
        first, second = MockAdapter(), MockAdapter()
        registry.register_provider(first)
        registry.register_provider(second)

        assert registry.get_provider("mock") is second
        assert registry.providers() == [second]

    def test_require_model_raises_model_not_found(self):
        with pytest.raises(LLMError) as exc_info:
            ModelRegistry().require_model("nope")
        assert exc_info.value.code == ErrorCode.MODEL_NOT_FOUND
        assert not exc_info.value.retryable


class TestSearch:

    @pytest.fixture
    def registry(self) -> ModelRegistry:
        return registry_with(
            model("fast", capabilities=frozenset({"text", "streaming"}), cost_tier="low",
                  context_window=8000, recommended_use=("chat",)),
            model("thinker", provider="q", capabilities=frozenset({"text", "reasoning"}),
                  cost_tier="high", context_window=128000, recommended_use=("analysis",)),
            model("retired", deprecated=True),
        )

    def test_no_criteria_returns_active_models(self, registry):
        assert [m.id for m in registry.search()] == ["fast", "thinker"]

    @pytest.mark.parametrize(
        "criteria,expected",
        [
            (SearchCriteria(capability="reasoning"), ["thinker"]),
            (SearchCriteria(recommended_use="chat"), ["fast"]),
            (SearchCriteria(cost_tier="high"), ["thinker"]),
            (SearchCriteria(min_context_window=32000), ["thinker"]),
            (SearchCriteria(streaming=True), ["fast"]),
            (SearchCriteria(streaming=False), ["thinker"]),
            (SearchCriteria(provider="q"), ["thinker"]),
            (SearchCriteria(capability="vision"), []),
        ],
    )
    def test_filters(self, registry, criteria, expected):
        assert [m.id for m in registry.search(criteria)] == expected
