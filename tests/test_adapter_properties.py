"""
Property-based tests for the OpenAI-compatible adapter and error mapping.

Feature: llm-engine
Property 17: 流式解析完整性
Property 18: 错误分类
"""

import asyncio
import json

import httpx
import pytest
from hypothesis import given, strategies as st, settings

from conftest import user_request
from llm_engine.adapters import OpenAICompatibleAdapter
from llm_engine.config import ProviderConfig
from llm_engine.errors import (
    RETRYABLE_CODES,
    ErrorCode,
    LLMError,
    classify_exception,
    error_from_status,
)
from llm_engine.models import EnrichedRequest, GenerationParams


def enriched(stream: bool, model_id: str = "deepseek-chat") -> EnrichedRequest:
    original = user_request("Hi", stream=stream)
    return EnrichedRequest(
        request_id="req-1",
        provider_id="deepseek",
        model_id=model_id,
        messages=tuple(original.messages),
        params=GenerationParams(temperature=0.3, max_tokens=64),
        stream=stream,
        original=original,
    )


def sse(*frames) -> bytes:
    lines = []
    for frame in frames:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


async def make_adapter(handler, **config) -> OpenAICompatibleAdapter:
    adapter = OpenAICompatibleAdapter(transport=httpx.MockTransport(handler))
    await adapter.initialize(ProviderConfig(api_key="sk-test", **config))
    return adapter


async def drain(result):
    return [chunk async for chunk in result]


class TestNonStreaming:

    @pytest.mark.asyncio
    async def test_parses_completion(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{
                    "message": {"content": "Hello!", "reasoning_content": "greet back"},
                    "finish_reason": "stop",
                }],
                "usage": {"prompt_tokens": 5, "completion_tokens": 2, "prompt_cache_hit_tokens": 1},
            })

        adapter = await make_adapter(handler)
        chunk = await adapter.complete(enriched(stream=False))
        await adapter.aclose()

        assert chunk.is_final
        assert chunk.content == "Hello!"
        assert chunk.reasoning_content == "greet back"
        assert chunk.usage.input_tokens == 5
        assert chunk.usage.output_tokens == 2
        assert chunk.usage.cached_tokens == 1
        assert seen["url"] == "https://api.deepseek.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "deepseek-chat"
        assert seen["body"]["temperature"] == 0.3
        assert seen["body"]["max_tokens"] == 64
        assert seen["body"]["stream"] is False
        assert "stream_options" not in seen["body"]

    @pytest.mark.asyncio
    async def test_configured_base_url_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["org"] = request.headers.get("OpenAI-Organization")
            seen["custom"] = request.headers.get("X-Trace")
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        adapter = await make_adapter(
            handler,
            base_url="http://localhost:8080/v1/",
            organization="org-1",
            headers={"X-Trace": "abc"},
        )
        chunk = await adapter.complete(enriched(stream=False))

        assert seen == {"url": "http://localhost:8080/v1/chat/completions", "org": "org-1", "custom": "abc"}
        assert chunk.usage is None
        assert chunk.finish_reason == "stop"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, content=b""),
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, json={"unexpected": True}),
        ],
    )
    async def test_malformed_body_is_server_error(self, response):
        adapter = await make_adapter(lambda request: response)

        with pytest.raises(LLMError) as exc_info:
            await adapter.complete(enriched(stream=False))

        assert exc_info.value.code == ErrorCode.SERVER_ERROR
        assert exc_info.value.retryable


class TestStreaming:
    """
    Property 17: 流式解析完整性

    The final chunk's content equals the concatenation of all content
    deltas, regardless of how the text was split into frames.
    """

    @settings(max_examples=50, deadline=None)
    @given(pieces=st.lists(st.text(min_size=1, max_size=20), min_size=1, max_size=10))
    def test_final_content_is_concatenation(self, pieces):
        frames = [{"choices": [{"delta": {"content": p}}]} for p in pieces]
        body = sse(*frames, "[DONE]")

        async def scenario():
            adapter = await make_adapter(
                lambda request: httpx.Response(
                    200, content=body, headers={"content-type": "text/event-stream"}
                )
            )
            chunks = await drain(adapter.complete(enriched(stream=True)))
            await adapter.aclose()
            return chunks

        chunks = asyncio.run(scenario())

        assert [c.content for c in chunks[:-1]] == pieces
        assert chunks[-1].is_final
        assert chunks[-1].content == "".join(pieces)

    @pytest.mark.asyncio
    async def test_reasoning_usage_and_malformed_frames(self):
        seen = {}
        body = sse(
            {"choices": [{"delta": {"reasoning_content": "think"}}]},
            "{not json",
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}, "finish_reason": "length"}]},
            {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 3}},
            "[DONE]",
        )

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["accept"] = request.headers["Accept"]
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        adapter = await make_adapter(handler)
        chunks = await drain(adapter.complete(enriched(stream=True, model_id="deepseek-reasoner")))

        assert chunks[0].reasoning_content == "think"
        assert [c.content for c in chunks[1:3]] == ["Hel", "lo"]
        final = chunks[-1]
        assert final.is_final
        assert final.content == "Hello"
        assert final.reasoning_content == "think"
        assert final.finish_reason == "length"
        assert final.usage.total_tokens == 10
        assert seen["body"]["stream_options"] == {"include_usage": True}
        assert seen["accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_reasoning_extraction_can_be_disabled(self):
        body = sse(
            {"choices": [{"delta": {"reasoning_content": "think"}}]},
            {"choices": [{"delta": {"content": "answer"}}]},
            "[DONE]",
        )
        adapter = OpenAICompatibleAdapter(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)),
            enable_reasoning_extraction=False,
        )
        await adapter.initialize(ProviderConfig(api_key="sk-test"))

        chunks = await drain(adapter.complete(enriched(stream=True)))

        assert [c.content for c in chunks] == ["answer", "answer"]
        assert chunks[-1].reasoning_content is None

    @pytest.mark.asyncio
    async def test_stream_without_done_has_no_final(self):
        body = sse({"choices": [{"delta": {"content": "cut"}}]})
        adapter = await make_adapter(lambda request: httpx.Response(200, content=body))

        chunks = await drain(adapter.complete(enriched(stream=True)))

        assert [c.kind for c in chunks] == ["delta"]

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        adapter = await make_adapter(
            lambda request: httpx.Response(429, json={"error": {"message": "Rate limit reached"}})
        )

        with pytest.raises(LLMError) as exc_info:
            await drain(adapter.complete(enriched(stream=True)))

        assert exc_info.value.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert exc_info.value.message == "Rate limit reached"
        assert exc_info.value.status_code == 429


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_without_key(self):
        adapter = OpenAICompatibleAdapter()

        with pytest.raises(LLMError) as exc_info:
            await adapter.initialize(ProviderConfig())

        assert exc_info.value.code == ErrorCode.INVALID_API_KEY
        assert not (await adapter.test_connection()).ok

    @pytest.mark.asyncio
    async def test_keyless_endpoint(self):
        adapter = OpenAICompatibleAdapter(
            provider_id="local",
            requires_api_key=False,
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})
            ),
        )
        await adapter.initialize(ProviderConfig(base_url="http://localhost:11434/v1"))

        assert (await adapter.test_connection()).ok

    @pytest.mark.asyncio
    async def test_uninitialized_adapter_rejects_requests(self):
        adapter = OpenAICompatibleAdapter()

        with pytest.raises(LLMError):
            await adapter.complete(enriched(stream=False))

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        adapter = await make_adapter(handler)
        result = await adapter.test_connection()

        assert not result.ok
        assert "connection refused" in result.error

        with pytest.raises(LLMError) as exc_info:
            await adapter.complete(enriched(stream=False))
        assert exc_info.value.code == ErrorCode.CONNECTION_FAILED
        assert exc_info.value.retryable


class TestErrorClassification:
    """
    Property 18: 错误分类

    HTTP statuses map to stable error codes, and retryability follows the
    code: rate limits, server errors, timeouts and network failures only.
    """

    @pytest.mark.parametrize(
        "status,message,code",
        [
            (401, "Invalid key", ErrorCode.INVALID_API_KEY),
            (403, "Forbidden", ErrorCode.AUTHENTICATION_FAILED),
            (429, "Too many requests", ErrorCode.RATE_LIMIT_EXCEEDED),
            (429, "Insufficient quota", ErrorCode.QUOTA_EXCEEDED),
            (402, "Payment required", ErrorCode.QUOTA_EXCEEDED),
            (400, "maximum context length exceeded", ErrorCode.CONTEXT_LENGTH_EXCEEDED),
            (400, "blocked by safety system", ErrorCode.SAFETY_FILTER),
            (400, "content filter triggered", ErrorCode.CONTENT_FILTER),
            (400, "bad field", ErrorCode.INVALID_REQUEST),
            (404, "no such model", ErrorCode.MODEL_NOT_FOUND),
            (408, "timeout", ErrorCode.TIMEOUT),
            (413, "too large", ErrorCode.CONTEXT_LENGTH_EXCEEDED),
            (422, "bad params", ErrorCode.INVALID_PARAMETERS),
            (500, "oops", ErrorCode.SERVER_ERROR),
            (502, "bad gateway", ErrorCode.SERVER_ERROR),
            (503, "overloaded", ErrorCode.SERVICE_UNAVAILABLE),
            (504, "gateway timeout", ErrorCode.SERVICE_UNAVAILABLE),
            (418, "teapot", ErrorCode.UNKNOWN_ERROR),
        ],
    )
    def test_status_mapping(self, status, message, code):
        error = error_from_status("deepseek", status, message)

        assert error.code == code
        assert error.status_code == status
        assert error.retryable == (code in RETRYABLE_CODES)

    @settings(max_examples=100)
    @given(status=st.integers(min_value=400, max_value=599))
    def test_only_transient_statuses_are_retryable(self, status):
        error = error_from_status("p", status, "failure")

        if error.retryable:
            assert status in (408, 429) or status >= 500
        if status >= 500:
            assert error.retryable

    @pytest.mark.parametrize(
        "exc,code",
        [
            (httpx.ReadTimeout("slow"), ErrorCode.TIMEOUT),
            (httpx.ConnectError("refused"), ErrorCode.CONNECTION_FAILED),
            (httpx.ReadError("reset"), ErrorCode.NETWORK_ERROR),
            (TimeoutError(), ErrorCode.TIMEOUT),
            (KeyError("x"), ErrorCode.UNKNOWN_ERROR),
        ],
    )
    def test_exception_classification(self, exc, code):
        error = classify_exception("p", exc)

        assert error.code == code
        assert error.details is exc

    def test_llm_error_passes_through(self):
        original = LLMError("p", "x", code=ErrorCode.TIMEOUT, retryable=False)

        assert classify_exception("q", original) is original
        assert not original.retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 400, 404, 500, 503])
    async def test_adapter_maps_http_errors(self, status):
        adapter = await make_adapter(
            lambda request: httpx.Response(status, json={"error": {"message": f"failure {status}"}})
        )

        with pytest.raises(LLMError) as exc_info:
            await adapter.complete(enriched(stream=False))

        assert exc_info.value.code == error_from_status("deepseek", status, "").code
        assert exc_info.value.message == f"failure {status}"
        assert exc_info.value.provider_id == "deepseek"
