"""
Abstract base class for LLM provider adapters.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Union

from ..config import ProviderConfig
from ..models import EnrichedRequest, ModelDescriptor, ResponseChunk


CompletionResult = Union[AsyncIterator[ResponseChunk], Awaitable[ResponseChunk]]


@dataclass
class ConnectionResult:
    """Outcome of a provider connection test."""
    ok: bool
    error: str | None = None


class ProviderAdapter(ABC):
    """
    Abstract base class for LLM provider adapters.

    All provider adapters must implement:
    - initialize(): Apply credentials and endpoint configuration
    - test_connection(): Minimal round trip to verify the configuration
    - complete(): Produce the chunks of one completion

    ``complete`` may return either an async iterator of ResponseChunk
    (streaming, terminated by one ``final`` chunk) or an awaitable of a
    single ``final`` ResponseChunk.
    """

    id: str = "base"
    label: str = "Base"
    models: list[ModelDescriptor] = []
    requires_api_key: bool = True
    supports_streaming: bool = True

    @abstractmethod
    async def initialize(self, config: ProviderConfig) -> None:
        """
        Apply provider configuration.

        Raises:
            LLMError: INVALID_API_KEY when a required key is missing
        """
        pass

    @abstractmethod
    async def test_connection(self) -> ConnectionResult:
        pass

    @abstractmethod
    def complete(self, request: EnrichedRequest) -> CompletionResult:
        """
        Start a completion.

        Args:
            request: Fully resolved request addressed to this provider

        Returns:
            Async iterator of chunks, or an awaitable of one final chunk

        Raises:
            LLMError: Classified provider failure
        """
        pass

    async def cancel(self, request_id: str) -> None:
        """Abort provider-side work for a request. Default is a no-op."""
        return None

    async def list_models(self) -> list[ModelDescriptor]:
        return list(self.models)

    async def aclose(self) -> None:
        """Optional async cleanup hook for adapters."""
        return None
