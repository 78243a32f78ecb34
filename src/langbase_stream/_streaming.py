from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
from collections import deque
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Iterable, TypeVar

import httpx

from langbase_stream._abort import AbortController
from langbase_stream._config import StreamConfig
from langbase_stream._decoders import LineDecoder, RawChunk, iter_sse_chunks
from langbase_stream._errors import (
    AbortError,
    EmptyBodyError,
    MalformedPayloadError,
    StreamConsumedError,
    UpstreamError,
)
from langbase_stream._sse import SSEDecoder, ServerSentEvent

Item = TypeVar("Item")

_END = object()

# ---------------------------------------------------------------------------
# Transport reading
# ---------------------------------------------------------------------------


def _response_body(response: Any) -> Any | None:
    """Readable body of a response-like object, or None if there is nothing to read."""
    if isinstance(response, httpx.Response):
        try:
            response.content
        except httpx.ResponseNotRead:
            if response.is_stream_consumed or response.is_closed:
                return None
        return response.aiter_bytes()
    return getattr(response, "body", None)


def _transport_closer(transport: Any) -> Callable[[], Awaitable[Any]] | None:
    aclose = getattr(transport, "aclose", None)
    return aclose if callable(aclose) else None


async def _from_sync(chunks: Iterable[RawChunk]) -> AsyncIterator[RawChunk]:
    for chunk in chunks:
        yield chunk


def _as_async_iterator(body: Any) -> AsyncIterator[RawChunk]:
    if hasattr(body, "__aiter__"):
        return body.__aiter__()
    if isinstance(body, (str, bytes, bytearray, memoryview)):
        return _from_sync([body])
    return _from_sync(body)


async def _next_chunk(iterator: AsyncIterator[RawChunk]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


async def _read_body(
    body: Any,
    controller: AbortController,
    close: Callable[[], Awaitable[Any]] | None = None,
) -> AsyncIterator[RawChunk]:
    """
    Yield raw chunks from `body` until it ends.

    Every read races against the controller: once it is aborted the pending
    read is cancelled and AbortError is raised in its place. The body and
    the transport are closed on every exit path.
    """
    iterator = _as_async_iterator(body)
    abort_waiter = asyncio.ensure_future(controller.wait())
    read: asyncio.Future[Any] | None = None
    try:
        while True:
            if controller.aborted:
                raise AbortError(controller.reason)

            read = asyncio.ensure_future(_next_chunk(iterator))
            await asyncio.wait({read, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not read.done():
                raise AbortError(controller.reason)

            pending, read = read, None
            try:
                chunk = pending.result()
            except Exception as e:
                if controller.aborted:
                    raise AbortError(controller.reason) from e
                raise

            if chunk is _END:
                return
            yield chunk
    finally:
        abort_waiter.cancel()
        if read is not None and not read.done():
            read.cancel()
        await asyncio.gather(abort_waiter, *([read] if read is not None else []), return_exceptions=True)

        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
        if close is not None:
            await close()


# ---------------------------------------------------------------------------
# SSE pipeline
# ---------------------------------------------------------------------------


async def _decode_sse_body(
    body: Any,
    controller: AbortController,
    close: Callable[[], Awaitable[Any]] | None,
) -> AsyncIterator[ServerSentEvent]:
    sse_decoder = SSEDecoder()
    line_decoder = LineDecoder()

    reader = _read_body(body, controller, close)
    async with contextlib.aclosing(reader), contextlib.aclosing(iter_sse_chunks(reader)) as sse_chunks:
        async for sse_chunk in sse_chunks:
            for line in line_decoder.decode(sse_chunk):
                sse = sse_decoder.decode(line)
                if sse is not None:
                    yield sse

    for line in line_decoder.flush():
        sse = sse_decoder.decode(line)
        if sse is not None:
            yield sse


def _iter_sse_messages(response: Any, controller: AbortController) -> AsyncIterator[ServerSentEvent]:
    """
    Async iterator over the ServerSentEvents in a response body.

    Raises:
        EmptyBodyError: right away, after aborting `controller`, when the
            response has no readable body.
    """
    body = _response_body(response)
    if body is None:
        controller.abort()
        raise EmptyBodyError()
    return _decode_sse_body(body, controller, _transport_closer(response))


def _parse_json(data: str, raw: list[str]) -> Any:
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        logging.error("Could not parse message into JSON: %s", data)
        logging.error("From chunk: %s", raw)
        raise MalformedPayloadError(data=data, raw=list(raw), reason=str(e)) from e


async def _iter_sse_items(messages: AsyncIterator[ServerSentEvent], config: StreamConfig) -> AsyncIterator[Any]:
    done = False
    async with contextlib.aclosing(messages):
        async for sse in messages:
            if config.debug:
                logging.warning("SSE EVENT event=%s data=%s", sse.event, sse.data)

            # after [DONE] keep reading so the transport can finish cleanly
            if done:
                continue

            if sse.data.startswith("[DONE]"):
                done = True
                continue

            data = _parse_json(sse.data, sse.raw)

            if sse.event == "error" or (isinstance(data, dict) and data.get("error")):
                raise UpstreamError.from_payload(data, event=sse.event)

            if sse.event is None:
                yield data
            else:
                yield {"event": sse.event, "data": data}


async def _iter_json_lines(
    body: Any,
    controller: AbortController,
    close: Callable[[], Awaitable[Any]] | None,
    config: StreamConfig,
) -> AsyncIterator[Any]:
    line_decoder = LineDecoder()

    async def iter_lines() -> AsyncIterator[str]:
        async with contextlib.aclosing(_read_body(body, controller, close)) as reader:
            async for chunk in reader:
                for line in line_decoder.decode(chunk):
                    yield line
        for line in line_decoder.flush():
            yield line

    async with contextlib.aclosing(iter_lines()) as lines:
        async for line in lines:
            if config.debug:
                logging.warning("NDJSON LINE %s", line)
            if line:
                yield _parse_json(line, [line])


# ---------------------------------------------------------------------------
# Iterators
# ---------------------------------------------------------------------------


class _GuardedIterator(Generic[Item]):
    """
    Iterator over a production generator, bound to the transport controller.

    Leaving before the source is drained (aclose, error, cancellation)
    aborts the controller. An AbortError coming out of the source ends the
    iteration as if the sequence had completed.
    """

    def __init__(self, source: AsyncIterator[Item], controller: AbortController) -> None:
        self._source = source
        self._controller = controller
        self._done = False

    def __aiter__(self) -> _GuardedIterator[Item]:
        return self

    async def __anext__(self) -> Item:
        if self._done:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._done = True
            raise
        except AbortError:
            self._done = True
            raise StopAsyncIteration from None
        except BaseException:
            await self._finish()
            raise

    async def aclose(self) -> None:
        await self._finish()

    async def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._controller.abort()
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


class _Outcome:
    __slots__ = ("value", "error", "end")

    def __init__(self, value: Any = None, error: BaseException | None = None, end: bool = False) -> None:
        self.value = value
        self.error = error
        self.end = end

    def unwrap(self) -> Any:
        if self.end:
            raise StopAsyncIteration
        if self.error is not None:
            raise self.error
        return self.value


class _TeeSource:
    """
    One shared iterator feeding two FIFO queues.

    A pull from the shared iterator runs as its own task and its outcome is
    appended to every open side's queue. A requester that gets cancelled
    leaves that task running, so the other side still sees every item.
    A side that is never drained keeps growing its queue without bound.
    """

    def __init__(self, iterator: AsyncIterator[Any]) -> None:
        self._iterator = iterator
        self._queues: tuple[deque[_Outcome], deque[_Outcome]] = (deque(), deque())
        self._closed = [False, False]
        self._fetching: asyncio.Future[None] | None = None

    async def _fetch(self) -> None:
        try:
            outcome = _Outcome(value=await self._iterator.__anext__())
        except StopAsyncIteration:
            outcome = _Outcome(end=True)
        except Exception as e:
            outcome = _Outcome(error=e)
        finally:
            self._fetching = None

        for side, queue in enumerate(self._queues):
            if not self._closed[side]:
                queue.append(outcome)

    async def pull(self, side: int) -> Any:
        queue = self._queues[side]
        while not queue:
            # at most one pull in flight, shared by both sides
            if self._fetching is None:
                self._fetching = asyncio.ensure_future(self._fetch())
            await asyncio.shield(self._fetching)
        return queue.popleft().unwrap()

    async def close(self, side: int) -> None:
        if self._closed[side]:
            return
        self._closed[side] = True
        self._queues[side].clear()
        if not all(self._closed):
            return

        fetching, self._fetching = self._fetching, None
        if fetching is not None:
            fetching.cancel()
            await asyncio.gather(fetching, return_exceptions=True)
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()


class _TeeBranch:
    def __init__(self, source: _TeeSource, side: int) -> None:
        self._source = source
        self._side = side

    def __aiter__(self) -> _TeeBranch:
        return self

    async def __anext__(self) -> Any:
        try:
            return await self._source.pull(self._side)
        except asyncio.CancelledError:
            await self._source.close(self._side)
            raise

    async def aclose(self) -> None:
        await self._source.close(self._side)


class _IterationState(enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    CONSUMED = "consumed"


# ---------------------------------------------------------------------------
# Public stream types
# ---------------------------------------------------------------------------


class ReadableStream(httpx.AsyncByteStream):
    """
    Pull-based byte stream over an item iterator.

    Each pull produces one item serialized as `JSON + "\\n"`, which is the
    format `EventStream.from_readable_stream()` reads back. It can be handed
    to `httpx.Response(stream=...)` or any consumer of an async byte stream.
    """

    def __init__(self, iterator: AsyncIterator[Any]) -> None:
        self._iterator = iterator

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            try:
                item = await self._iterator.__anext__()
            except StopAsyncIteration:
                return
            yield (json.dumps(item, separators=(",", ":"), ensure_ascii=False) + "\n").encode("utf-8")

    async def aclose(self) -> None:
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()


class EventStream(Generic[Item]):
    """
    Async-iterable stream of decoded items bound to one transport.

    The default iteration may run only once. Use `tee()` for two independent
    views of the same source, and `aclose()` (or `async with`) to stop early
    and release the transport. Leaving an `async for` loop with `break` does
    not close anything by itself: the controller stays live and the
    connection stays open until `aclose()` is called.

    Usage:
        controller = AbortController()
        async with EventStream.from_sse_response(response, controller) as stream:
            async for item in stream:
                ...
    """

    def __init__(self, iterator: Callable[[], AsyncIterator[Item]], controller: AbortController) -> None:
        self._factory = iterator
        self.controller = controller
        self._state = _IterationState.NOT_STARTED
        self._iterator: AsyncIterator[Item] | None = None

    def __repr__(self) -> str:
        return f"EventStream(state={self._state.value}, aborted={self.controller.aborted})"

    def _take_iterator(self) -> AsyncIterator[Item]:
        if self._state is not _IterationState.NOT_STARTED:
            raise StreamConsumedError()
        self._state = _IterationState.IN_PROGRESS
        return self._factory()

    def __aiter__(self) -> EventStream[Item]:
        self._iterator = self._take_iterator()
        return self

    async def __anext__(self) -> Item:
        if self._state is _IterationState.NOT_STARTED:
            self.__aiter__()
        if self._iterator is None:
            raise StopAsyncIteration
        try:
            return await self._iterator.__anext__()
        except BaseException:
            self._state = _IterationState.CONSUMED
            self._iterator = None
            raise

    async def aclose(self) -> None:
        """Stop iterating and release the transport."""
        if self._state is _IterationState.NOT_STARTED:
            self._iterator = self._take_iterator()
        iterator, self._iterator = self._iterator, None
        self._state = _IterationState.CONSUMED
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> EventStream[Item]:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def tee(self) -> tuple[EventStream[Item], EventStream[Item]]:
        """
        Split the stream into two streams which can be independently read
        from at different speeds.
        """
        source = _TeeSource(self._take_iterator())
        self._state = _IterationState.CONSUMED
        return (
            EventStream(lambda: _TeeBranch(source, 0), self.controller),
            EventStream(lambda: _TeeBranch(source, 1), self.controller),
        )

    def to_readable_stream(self) -> ReadableStream:
        """
        Convert this stream into a newline-separated byte stream of JSON
        values, which can be turned back into an EventStream with
        `EventStream.from_readable_stream()`.
        """
        return ReadableStream(self.__aiter__())

    @classmethod
    def from_sse_response(
        cls,
        response: Any,
        controller: AbortController,
        *,
        config: StreamConfig | None = None,
    ) -> EventStream[Any]:
        """
        Create a stream from a Server-Sent Events (SSE) response.

        Args:
            response: An `httpx.Response` or any object with a `body` async iterable.
            controller: The AbortController used to cancel the ongoing request.
            config: Optional StreamConfig; read from the environment when omitted.

        Returns:
            EventStream yielding parsed JSON payloads, or `{"event", "data"}`
            dicts for blocks that carry an event name.

        Raises:
            EmptyBodyError: If the response has no body.
        """
        config = config or StreamConfig.from_env_or_value()
        messages = _iter_sse_messages(response, controller)

        def iterator() -> AsyncIterator[Any]:
            return _GuardedIterator(_iter_sse_items(messages, config), controller)

        return cls(iterator, controller)

    @classmethod
    def from_readable_stream(
        cls,
        body: Any,
        controller: AbortController,
        *,
        config: StreamConfig | None = None,
    ) -> EventStream[Any]:
        """
        Create a stream from a newline-separated body where each line is a JSON value.

        Args:
            body: An (async) iterable of bytes or str, an `httpx.AsyncByteStream`,
                or an `httpx.Response`.
            controller: The AbortController used to cancel the read.
            config: Optional StreamConfig; read from the environment when omitted.
        """
        config = config or StreamConfig.from_env_or_value()
        close = _transport_closer(body)
        if isinstance(body, httpx.Response):
            body = body.aiter_bytes()

        def iterator() -> AsyncIterator[Any]:
            return _GuardedIterator(_iter_json_lines(body, controller, close, config), controller)

        return cls(iterator, controller)
