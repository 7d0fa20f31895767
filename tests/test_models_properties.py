"""
Property-based tests for data models.

Feature: llm-engine
Property 1: Token统计一致性
Property 2: 请求校验
"""

import pytest
from hypothesis import given, strategies as st, settings

from llm_engine.models import (
    GenerationParams,
    LLMRequest,
    Message,
    ModelDescriptor,
    ResponseChunk,
    TokenUsage,
)


class TestTokenUsageProperties:
    """Property tests for TokenUsage data class."""

    @settings(max_examples=100)
    @given(
        input_tokens=st.integers(min_value=0, max_value=10_000_000),
        output_tokens=st.integers(min_value=0, max_value=10_000_000),
    )
    def test_total_tokens_equals_sum_of_input_and_output(
        self, input_tokens: int, output_tokens: int
    ):
        """
        Property 1: Token统计一致性

        For any TokenUsage result, total_tokens must equal input_tokens + output_tokens.
        """
        usage = TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)

        assert usage.total_tokens == input_tokens + output_tokens
        assert usage.to_dict()["total_tokens"] == usage.total_tokens

    def test_optional_counts_only_serialized_when_present(self):
        usage = TokenUsage(input_tokens=1, output_tokens=2)
        assert "cached_tokens" not in usage.to_dict()

        usage = TokenUsage(input_tokens=1, output_tokens=2, cached_tokens=1, reasoning_tokens=5)
        data = usage.to_dict()
        assert data["cached_tokens"] == 1
        assert data["reasoning_tokens"] == 5


class TestModelDescriptor:
    """Pricing behaviour of model descriptors."""

    @settings(max_examples=100)
    @given(
        input_tokens=st.integers(min_value=0, max_value=100_000_000),
        output_tokens=st.integers(min_value=0, max_value=100_000_000),
        input_cost_per_1m=st.floats(min_value=0.0, max_value=1000.0, allow_nan=False, allow_infinity=False),
        output_cost_per_1m=st.floats(min_value=0.0, max_value=1000.0, allow_nan=False, allow_infinity=False),
    )
    def test_cost_formula(
        self,
        input_tokens: int,
        output_tokens: int,
        input_cost_per_1m: float,
        output_cost_per_1m: float,
    ):
        model = ModelDescriptor(
            id="m",
            provider="p",
            input_cost_per_1m=input_cost_per_1m,
            output_cost_per_1m=output_cost_per_1m,
        )
        expected = (
            (input_tokens / 1_000_000) * input_cost_per_1m +
            (output_tokens / 1_000_000) * output_cost_per_1m
        )
        cost = model.calculate_cost(input_tokens, output_tokens)

        assert abs(cost - expected) < 1e-9
        assert cost >= 0

    def test_model_without_pricing_is_free(self):
        model = ModelDescriptor(id="local-llama", provider="local")
        assert model.is_free
        assert model.calculate_cost(1_000_000, 1_000_000) == 0.0

    def test_with_pricing_returns_copy(self):
        model = ModelDescriptor(id="m", provider="p", input_cost_per_1m=1.0, output_cost_per_1m=2.0)
        repriced = model.with_pricing(3.0, 4.0)

        assert repriced.input_cost_per_1m == 3.0
        assert repriced.output_cost_per_1m == 4.0
        assert model.input_cost_per_1m == 1.0

    def test_streaming_capability(self):
        assert ModelDescriptor(id="m", provider="p").supports_streaming
        assert not ModelDescriptor(id="m", provider="p", capabilities=frozenset({"text"})).supports_streaming


class TestGenerationParams:

    @settings(max_examples=50)
    @given(
        base_temperature=st.one_of(st.none(), st.floats(min_value=0, max_value=2)),
        override_temperature=st.one_of(st.none(), st.floats(min_value=0, max_value=2)),
        base_max_tokens=st.one_of(st.none(), st.integers(min_value=1, max_value=8192)),
        override_max_tokens=st.one_of(st.none(), st.integers(min_value=1, max_value=8192)),
    )
    def test_merge_prefers_explicit_override_values(
        self, base_temperature, override_temperature, base_max_tokens, override_max_tokens
    ):
        base = GenerationParams(temperature=base_temperature, max_tokens=base_max_tokens)
        override = GenerationParams(temperature=override_temperature, max_tokens=override_max_tokens)
        merged = base.merge(override)

        expected_temperature = override_temperature if override_temperature is not None else base_temperature
        expected_max_tokens = override_max_tokens if override_max_tokens is not None else base_max_tokens
        assert merged.temperature == expected_temperature
        assert merged.max_tokens == expected_max_tokens

    def test_to_dict_drops_unset_values(self):
        params = GenerationParams(temperature=0.5, stop=("END",))
        assert params.to_dict() == {"temperature": 0.5, "stop": ["END"]}


class TestRequestValidationProperty:
    """
    Property 2: 请求校验

    A request with messages, known roles, a known mode/answer type and
    parameters within range passes validation; anything else is reported.
    """

    @settings(max_examples=100)
    @given(
        content=st.text(min_size=1, max_size=200),
        role=st.sampled_from(["system", "user", "assistant"]),
        mode=st.one_of(st.none(), st.sampled_from(["auto", "coding", "meeting", "research"])),
        temperature=st.one_of(st.none(), st.floats(min_value=0.0, max_value=2.0)),
    )
    def test_valid_request_passes_validation(self, content, role, mode, temperature):
        request = LLMRequest(
            messages=[Message(role=role, content=content)],
            mode=mode,
            params=GenerationParams(temperature=temperature),
        )
        assert request.validate() == []

    def test_empty_messages_fail_validation(self):
        errors = LLMRequest(messages=[]).validate()
        assert any("messages" in e for e in errors)

    def test_unknown_role_fails_validation(self):
        errors = LLMRequest(messages=[Message(role="tool", content="x")]).validate()
        assert any("role" in e for e in errors)

    @pytest.mark.parametrize("field,value", [("mode", "party"), ("answer_type", "haiku")])
    def test_unknown_mode_or_answer_type_fails_validation(self, field, value):
        request = LLMRequest(messages=[Message(role="user", content="x")], **{field: value})
        assert any(field in e for e in request.validate())

    @settings(max_examples=50)
    @given(temperature=st.one_of(st.floats(max_value=-0.01), st.floats(min_value=2.01, allow_infinity=False)))
    def test_out_of_range_temperature_fails_validation(self, temperature):
        request = LLMRequest(
            messages=[Message(role="user", content="x")],
            params=GenerationParams(temperature=temperature),
        )
        assert any("temperature" in e for e in request.validate())

    def test_non_positive_max_tokens_fails_validation(self):
        request = LLMRequest(
            messages=[Message(role="user", content="x")],
            params=GenerationParams(max_tokens=0),
        )
        assert any("max_tokens" in e for e in request.validate())


class TestResponseChunk:

    def test_delta_and_final_constructors(self):
        delta = ResponseChunk.delta("Hel")
        final = ResponseChunk.final("Hello", usage=TokenUsage(1, 2))

        assert delta.kind == "delta" and not delta.is_final
        assert final.kind == "final" and final.is_final
        assert final.finish_reason == "stop"
        assert final.usage.total_tokens == 3
