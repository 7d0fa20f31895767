"""
OpenAI-compatible provider adapter implementation.

Works with any endpoint that speaks the ``/chat/completions`` protocol
(DeepSeek, OpenAI, and most self-hosted gateways), including SSE streaming
and DeepSeek Reasoner ``reasoning_content``.
"""

import json
import logging
from typing import AsyncIterator

import httpx

from ..config import HttpClientConfig, ProviderConfig
from ..errors import ErrorCode, LLMError, classify_exception, error_from_status
from ..models import EnrichedRequest, ModelDescriptor, ResponseChunk, TokenUsage
from .base import CompletionResult, ConnectionResult, ProviderAdapter

logger = logging.getLogger(__name__)


DEEPSEEK_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="deepseek-chat",
        provider="deepseek",
        label="DeepSeek Chat",
        context_window=64000,
        max_output_tokens=8192,
        default_temperature=0.7,
        capabilities=frozenset({"text", "vision", "streaming"}),
        input_cost_per_1m=0.14,
        output_cost_per_1m=0.28,
        recommended_use=("general", "coding", "meeting", "fast"),
        cost_tier="low",
    ),
    ModelDescriptor(
        id="deepseek-reasoner",
        provider="deepseek",
        label="DeepSeek Reasoner",
        context_window=64000,
        max_output_tokens=8192,
        default_temperature=0.6,
        capabilities=frozenset({"text", "reasoning", "streaming"}),
        input_cost_per_1m=0.55,
        output_cost_per_1m=2.19,
        recommended_use=("reasoning", "research", "meeting"),
        cost_tier="medium",
    ),
]


def parse_usage(data: dict | None) -> TokenUsage | None:
    """Convert an OpenAI-style ``usage`` object into TokenUsage."""
    if not data:
        return None
    return TokenUsage(
        input_tokens=data.get("prompt_tokens") or 0,
        output_tokens=data.get("completion_tokens") or 0,
        cached_tokens=data.get("prompt_cache_hit_tokens"),
        reasoning_tokens=data.get("completion_reasoning_tokens"),
    )


class OpenAICompatibleAdapter(ProviderAdapter):
    """
    Adapter for OpenAI-compatible chat completion APIs.

    Defaults to the DeepSeek endpoint and model presets. Pass ``provider_id``,
    ``base_url`` and ``models`` to target another compatible service.
    """

    DEFAULT_BASE_URL = "https://api.deepseek.com/v1"
    DEFAULT_TIMEOUT_MS = 60_000

    def __init__(
        self,
        provider_id: str = "deepseek",
        label: str = "DeepSeek",
        models: list[ModelDescriptor] | None = None,
        base_url: str | None = None,
        http_config: HttpClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        enable_reasoning_extraction: bool = True,
        requires_api_key: bool = True,
    ):
        """
        Initialize the adapter.

        Args:
            provider_id: Provider id used in the registry and errors
            label: Human readable name
            models: Model descriptors served by this endpoint
            base_url: API base URL; overridden by ProviderConfig.base_url
            http_config: Connection pool limits
            transport: Custom httpx transport (used by tests)
            enable_reasoning_extraction: Emit ``reasoning_content`` deltas
            requires_api_key: Whether initialize() insists on a key
        """
        self.id = provider_id
        self.label = label
        self.models = list(models) if models is not None else list(DEEPSEEK_MODELS)
        self.requires_api_key = requires_api_key
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.enable_reasoning_extraction = enable_reasoning_extraction
        self._http_config = http_config or HttpClientConfig()
        self._transport = transport
        self._api_key: str | None = None
        self._headers: dict[str, str] = {}
        self._timeout_ms = self.DEFAULT_TIMEOUT_MS
        self._client: httpx.AsyncClient | None = None

    async def initialize(self, config: ProviderConfig) -> None:
        if config.api_key:
            self._api_key = config.api_key
        if config.base_url:
            self.base_url = config.base_url.rstrip("/")
        if config.timeout_ms:
            self._timeout_ms = config.timeout_ms
        self._headers = dict(config.headers)
        if config.organization:
            self._headers["OpenAI-Organization"] = config.organization

        if self.requires_api_key and not self._api_key:
            raise LLMError(
                self.id,
                f"{self.label} API key is required",
                code=ErrorCode.INVALID_API_KEY,
            )

        if self._client is not None:
            await self._client.aclose()

        client_kwargs = {
            "timeout": self._timeout_ms / 1000,
            "limits": httpx.Limits(
                max_connections=self._http_config.max_connections,
                max_keepalive_connections=self._http_config.max_keepalive_connections,
            ),
        }
        if self._transport is not None:
            client_kwargs["transport"] = self._transport
        self._client = httpx.AsyncClient(**client_kwargs)

    async def test_connection(self) -> ConnectionResult:
        if self.requires_api_key and not self._api_key:
            return ConnectionResult(ok=False, error="API key not configured")
        payload = {
            "model": self.models[0].id if self.models else "",
            "messages": [{"role": "user", "content": "Hello"}],
            "max_tokens": 10,
        }
        try:
            await self._post_json(payload)
        except LLMError as e:
            return ConnectionResult(ok=False, error=e.message)
        return ConnectionResult(ok=True)

    def complete(self, request: EnrichedRequest) -> CompletionResult:
        payload = self._build_payload(request)
        if request.stream:
            return self._stream(payload)
        return self._complete(payload)

    def _build_payload(self, request: EnrichedRequest) -> dict:
        payload = {
            "model": request.model_id,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "stream": request.stream,
        }
        payload.update(request.params.to_dict())
        if request.stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _headers_for(self, stream: bool) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self._headers}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise LLMError(
                self.id,
                f"{self.label} adapter is not initialized",
                code=ErrorCode.INVALID_REQUEST,
            )
        return self._client

    def _error_from_response(self, response: httpx.Response) -> LLMError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message")
        if not message:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"
        return error_from_status(self.id, response.status_code, message, details=body)

    async def _post_json(self, payload: dict) -> dict:
        client = self._require_client()
        url = f"{self.base_url}/chat/completions"
        try:
            response = await client.post(url, headers=self._headers_for(False), json=payload)
        except httpx.HTTPError as e:
            raise classify_exception(self.id, e)

        if response.is_error:
            raise self._error_from_response(response)
        if not response.content:
            raise LLMError(self.id, "No response body", code=ErrorCode.SERVER_ERROR)
        try:
            return response.json()
        except ValueError as e:
            raise LLMError(
                self.id,
                f"Invalid JSON in response: {e}",
                code=ErrorCode.SERVER_ERROR,
            )

    async def _complete(self, payload: dict) -> ResponseChunk:
        data = await self._post_json(payload)
        try:
            choice = data["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(
                self.id,
                f"Invalid response format: {e}",
                code=ErrorCode.SERVER_ERROR,
            )
        return ResponseChunk.final(
            content=message.get("content") or "",
            usage=parse_usage(data.get("usage")),
            finish_reason=choice.get("finish_reason") or "stop",
            reasoning_content=message.get("reasoning_content"),
        )

    async def _stream(self, payload: dict) -> AsyncIterator[ResponseChunk]:
        client = self._require_client()
        url = f"{self.base_url}/chat/completions"
        content = ""
        reasoning = ""
        usage: TokenUsage | None = None
        finish_reason = "stop"

        try:
            async with client.stream(
                "POST", url, headers=self._headers_for(True), json=payload
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise self._error_from_response(response)

                async for line in response.aiter_lines():
                    if not line or not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        yield ResponseChunk.final(
                            content=content,
                            usage=usage,
                            finish_reason=finish_reason,
                            reasoning_content=reasoning or None,
                        )
                        return
                    try:
                        frame = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed SSE frame from %s: %.80s", self.id, data)
                        continue
                    if not isinstance(frame, dict):
                        continue

                    if frame.get("usage"):
                        usage = parse_usage(frame["usage"])
                    choices = frame.get("choices") or []
                    if not choices:
                        continue
                    choice = choices[0]
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]
                    delta = choice.get("delta") or {}

                    text = delta.get("content")
                    if text:
                        content += text
                        yield ResponseChunk.delta(content=text)
                    thought = delta.get("reasoning_content")
                    if thought and self.enable_reasoning_extraction:
                        reasoning += thought
                        yield ResponseChunk.delta(reasoning_content=thought)
        except httpx.HTTPError as e:
            raise classify_exception(self.id, e)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
