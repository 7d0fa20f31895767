"""
Streaming channel between a request's producer task and its consumer.

The producer runs as its own asyncio task and pushes chunks into a bounded
queue; the consumer pulls them with ``async for``. Cancelling the stream
cancels the producer (aborting in-flight I/O) and makes the consumer raise
``RequestCancelledError`` instead of receiving further chunks.

The engine holds the channel, the caller holds the ``CompletionStream``
handle. Once the handle is garbage collected the producer is cancelled,
so a consumer that stops reading early does not keep the request alive.
"""

import asyncio
import logging
import weakref
from typing import AsyncIterator, Callable

from .errors import RequestCancelledError
from .models import LLMResponse, ResponseChunk

logger = logging.getLogger(__name__)

_END = object()
_CANCELLED = object()

DEFAULT_BUFFER = 64


class StreamChannel:
    """
    Producer side of a stream: the queue, the producer task and the
    completion callback.

    Args:
        request_id: Id used for cancellation
        provider_id: Provider the request was addressed to
        source: Async iterator producing the chunks
        buffer_size: Queue bound; the producer waits when the consumer lags
        on_done: Called once when the producer finishes, with the error
            (None on success). Runs before the consumer sees the end.
    """

    def __init__(
        self,
        request_id: str,
        provider_id: str,
        source: AsyncIterator[ResponseChunk],
        buffer_size: int = DEFAULT_BUFFER,
        on_done: Callable[[BaseException | None], None] | None = None,
    ):
        self.request_id = request_id
        self.provider_id = provider_id
        self.response: LLMResponse | None = None
        self.cancelled = False
        self.finished = False
        self._source = source
        self._on_done = on_done
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._terminal: object | None = None
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._produce())
        self._task.add_done_callback(self._task_done)

    async def _produce(self) -> None:
        error: BaseException | None = None
        try:
            async for chunk in self._source:
                await self._queue.put(chunk)
        except asyncio.CancelledError:
            error = RequestCancelledError(self.provider_id, self.request_id)
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
            raise
        except Exception as e:
            error = e
            await self._queue.put(e)
        else:
            await self._queue.put(_END)
        finally:
            self._finish(error)

    def _task_done(self, task: asyncio.Task) -> None:
        # Covers a task cancelled before its first step
        if task.cancelled():
            self._finish(RequestCancelledError(self.provider_id, self.request_id))

    def _finish(self, error: BaseException | None) -> None:
        if self.finished:
            return
        self.finished = True
        if self._on_done is not None:
            try:
                self._on_done(error)
            except Exception:
                logger.exception("Completion callback failed for %s", self.request_id)

    def cancel(self) -> bool:
        """
        Cancel the request.

        Returns:
            False if the stream had already finished or been cancelled
        """
        if self.cancelled or self.finished:
            return False
        self.cancelled = True
        self._task.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CANCELLED)
        return True

    def abandon(self) -> None:
        """Cancel the producer once nobody holds the stream any more."""
        if self.finished or self._loop.is_closed():
            return
        if self.cancel():
            logger.info("Stream %s abandoned by its consumer, cancelling", self.request_id)

    async def next(self) -> ResponseChunk:
        if self._terminal is None:
            if self.cancelled:
                raise RequestCancelledError(self.provider_id, self.request_id)
            item = await self._queue.get()
            if item is _END or item is _CANCELLED or isinstance(item, BaseException):
                self._terminal = item
            elif self.cancelled:
                raise RequestCancelledError(self.provider_id, self.request_id)
            else:
                return item

        # End, error and cancellation are repeated to every later read
        if self._terminal is _END:
            raise StopAsyncIteration
        if self._terminal is _CANCELLED:
            raise RequestCancelledError(self.provider_id, self.request_id)
        raise self._terminal

    async def wait(self) -> None:
        await asyncio.gather(self._task, return_exceptions=True)


class CompletionStream:
    """
    Async iterator over the chunks of one request.

    Prefer ``async with`` so the request is released even when the
    consumer stops reading early::

        async with await engine.stream(request) as stream:
            async for chunk in stream:
                ...
    """

    def __init__(self, channel: StreamChannel):
        self._channel = channel
        finalizer = weakref.finalize(self, channel.abandon)
        finalizer.atexit = False

    @property
    def request_id(self) -> str:
        return self._channel.request_id

    @property
    def provider_id(self) -> str:
        return self._channel.provider_id

    @property
    def response(self) -> LLMResponse | None:
        return self._channel.response

    @property
    def cancelled(self) -> bool:
        return self._channel.cancelled

    @property
    def done(self) -> bool:
        return self._channel.finished

    def cancel(self) -> bool:
        return self._channel.cancel()

    def __aiter__(self) -> "CompletionStream":
        return self

    async def __anext__(self) -> ResponseChunk:
        return await self._channel.next()

    async def collect(self) -> LLMResponse:
        """
        Drain the stream and return the buffered response.

        Raises:
            LLMError: The terminal error of the request
        """
        async for _ in self:
            pass
        if self.response is None:
            raise RequestCancelledError(self.provider_id, self.request_id)
        return self.response

    async def aclose(self) -> None:
        """Stop the stream, cancelling it if still running."""
        self._channel.cancel()
        await self._channel.wait()

    async def __aenter__(self) -> "CompletionStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
