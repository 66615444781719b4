"""
Top-level fetch_event_source() function for consuming event streams.

This is the primary API: it opens the request, decodes the SSE body and
yields OPEN, MESSAGE, CLOSE and ERROR events, retrying failed attempts.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Iterator
from contextlib import aclosing
from typing import Any, TypeVar

import httpx
import structlog

from fetch_event_source._errors import EventSourceError, fetch_error_from_exception
from fetch_event_source._events import EventMapper
from fetch_event_source._reducer import StateReducer
from fetch_event_source._sse import LineSplitter, MessageAssembler
from fetch_event_source._types import (
    ACCEPT_HEADER,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_INTERVAL,
    EVENT_STREAM_CONTENT_TYPE,
    EventSourceEvent,
    EventSourceResponse,
    HeadersLike,
    LineRecord,
)

log = structlog.get_logger()

T = TypeVar("T")

# Alternate request-issuing function: takes the built request, returns a
# streaming response exposing aiter_bytes() and aclose()
FetchFunction = Callable[[httpx.Request], Awaitable[Any]]


class _StreamCancelled(Exception):
    """Raised internally when the cancellation signal interrupts an await."""


class _RetryingDriver:
    """
    Runs attempts until one ends cleanly, retries are exhausted, or the
    caller cancels.

    The aggregated state lives here and carries over between attempts.
    Parsing state does not: every attempt gets a new splitter and assembler.
    """

    def __init__(
        self,
        *,
        url: str,
        build_request: Callable[[], httpx.Request],
        send: FetchFunction,
        signal: asyncio.Event | None,
        reducer: StateReducer | None,
    ) -> None:
        self._url = url
        self._build_request = build_request
        self._send = send
        self._signal = signal
        self._mapper = EventMapper(reducer)
        self._state: Any = None

    def _cancelled(self) -> bool:
        return self._signal is not None and self._signal.is_set()

    async def _until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, abandoning it if the signal fires first."""
        if self._signal is None:
            return await awaitable

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [f for f in (task, waiter) if not f.done()]
            for f in pending:
                f.cancel()
            # Let the abandoned read unwind before the response is closed
            if pending:
                await asyncio.wait(pending)

        if task in done:
            return task.result()
        raise _StreamCancelled()

    async def run(self) -> AsyncIterator[EventSourceResponse]:
        retries = 0

        while True:
            if self._cancelled():
                log.info("event_source_cancelled", url=self._url, retries=retries)
                yield EventSourceResponse(event=EventSourceEvent.CLOSE)
                return

            try:
                async with aclosing(self._attempt()) as events:
                    async for event in events:
                        yield event
                break
            except _StreamCancelled:
                log.info("event_source_cancelled", url=self._url, retries=retries)
                yield EventSourceResponse(event=EventSourceEvent.CLOSE)
                return
            except Exception as e:
                if retries >= DEFAULT_RETRIES:
                    log.error(
                        "event_source_failed",
                        url=self._url,
                        retries=retries,
                        error=str(e),
                    )
                    yield EventSourceResponse(
                        event=EventSourceEvent.ERROR,
                        error=fetch_error_from_exception(e, self._url),
                    )
                    return

                retries += 1
                log.warning(
                    "event_source_retry",
                    url=self._url,
                    attempt=retries,
                    delay=DEFAULT_RETRY_INTERVAL,
                    error=str(e),
                )

            try:
                await self._until_cancelled(asyncio.sleep(DEFAULT_RETRY_INTERVAL))
            except _StreamCancelled:
                log.info("event_source_cancelled", url=self._url, retries=retries)
                yield EventSourceResponse(event=EventSourceEvent.CLOSE)
                return

        log.debug("event_source_closed", url=self._url)
        yield EventSourceResponse(event=EventSourceEvent.CLOSE)

    async def _attempt(self) -> AsyncIterator[EventSourceResponse]:
        """One request-open-through-end-of-body cycle."""
        response = await self._until_cancelled(self._send(self._build_request()))
        try:
            log.debug(
                "event_source_open",
                url=self._url,
                status=getattr(response, "status_code", None),
            )
            yield EventSourceResponse(event=EventSourceEvent.OPEN)

            splitter = LineSplitter()
            assembler = MessageAssembler()

            async with aclosing(response.aiter_bytes()) as chunks:
                while True:
                    chunk = await self._until_cancelled(_next_chunk(chunks))
                    if chunk is None:
                        break
                    for event in self._decode(splitter.feed(chunk), assembler):
                        yield event

            for event in self._decode(splitter.flush(), assembler):
                yield event
        finally:
            await response.aclose()

    def _decode(
        self, records: Iterable[LineRecord], assembler: MessageAssembler
    ) -> Iterator[EventSourceResponse]:
        for record in records:
            for message in assembler.feed(record.line, record.field_length):
                try:
                    event, self._state = self._mapper.map(message, self._state)
                except EventSourceError as e:
                    log.warning(
                        "event_payload_rejected", url=self._url, error=str(e)
                    )
                    yield EventSourceResponse(event=EventSourceEvent.ERROR, error=e)
                    continue
                if event is not None:
                    yield event


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


def _with_default_accept(headers: HeadersLike | None) -> dict[str, str]:
    # Copy, since the default accept header is added in place
    resolved = dict(headers or {})
    if ACCEPT_HEADER not in {k.lower() for k in resolved}:
        resolved[ACCEPT_HEADER] = EVENT_STREAM_CONTENT_TYPE
    return resolved


async def fetch_event_source(
    url: str,
    *,
    method: str = "GET",
    headers: HeadersLike | None = None,
    content: str | bytes | None = None,
    json: Any = None,
    signal: asyncio.Event | None = None,
    fetch: FetchFunction | None = None,
    client: httpx.AsyncClient | None = None,
    reducer: StateReducer | None = None,
    timeout: float | httpx.Timeout | None = None,
    **kwargs: Any,
) -> AsyncIterator[EventSourceResponse]:
    """
    Stream high-level events from a server-sent-events endpoint.

    Each ``event: data`` message carries ``{"ops": [...]}`` JSON Patch
    operations which are folded into an aggregated state, yielded with every
    MESSAGE event. Failed attempts are retried from scratch up to two times,
    one second apart; the aggregated state carries over.

    Args:
        url: The URL of the event stream
        method: HTTP method
        headers: HTTP headers; ``accept: text/event-stream`` is added unless
            an accept header is present
        content: Raw request body
        json: JSON request body
        signal: Set this event to stop; the stream ends with CLOSE
        fetch: Optional alternate request-issuing coroutine function
        client: Optional httpx.AsyncClient to use (will not be closed)
        reducer: Optional state reducer (defaults to JSON Patch application)
        timeout: Request timeout
        **kwargs: Additional arguments passed to httpx's build_request

    Yields:
        OPEN per attempt, MESSAGE per payload, then a final CLOSE, or a final
        ERROR once retries are exhausted. Malformed payloads yield a
        non-terminal ERROR.

    Example:
        >>> async for ev in fetch_event_source("https://example.com/stream"):
        ...     if ev.event is EventSourceEvent.MESSAGE:
        ...         print(ev.aggregated_state)
    """
    request_headers = _with_default_accept(headers)

    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=timeout or 30.0)

    def build_request() -> httpx.Request:
        return http_client.build_request(
            method,
            url,
            headers=request_headers,
            content=content,
            json=json,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            **kwargs,
        )

    async def send(request: httpx.Request) -> httpx.Response:
        # Use streaming mode to avoid buffering the entire response
        return await http_client.send(request, stream=True)

    driver = _RetryingDriver(
        url=str(url),
        build_request=build_request,
        send=fetch or send,
        signal=signal,
        reducer=reducer,
    )

    try:
        async with aclosing(driver.run()) as events:
            async for event in events:
                yield event
    finally:
        if own_client:
            await http_client.aclose()
