"""
fetch-event-source

An asyncio client for server-sent-event streams whose ``data`` messages carry
JSON Patch operations. Messages are decoded incrementally, folded into an
aggregated state and handed out as high-level events; failed attempts are
retried from scratch.

Example usage:
    >>> from fetch_event_source import EventSourceEvent, fetch_event_source
    >>>
    >>> async for ev in fetch_event_source(
    ...     "https://example.com/runs/stream",
    ...     method="POST",
    ...     json={"input": "hello"},
    ... ):
    ...     if ev.event is EventSourceEvent.MESSAGE:
    ...         print(ev.aggregated_state)
"""

from importlib.metadata import PackageNotFoundError, version

from fetch_event_source._errors import (
    EventSourceError,
    FetchError,
    PatchApplyError,
    PayloadDecodeError,
)
from fetch_event_source._events import EventMapper, decode_payload
from fetch_event_source._logging import configure_logging
from fetch_event_source._reducer import StateReducer, apply_patch_reducer
from fetch_event_source._sse import (
    LineSplitter,
    MessageAssembler,
    parse_sse_async,
    parse_sse_sync,
)
from fetch_event_source._types import (
    EVENT_STREAM_CONTENT_TYPE,
    EventSourceEvent,
    EventSourceMessage,
    EventSourceResponse,
    HeadersLike,
    LineRecord,
    LogEntry,
    PatchOperation,
    RunState,
)
from fetch_event_source.afetch import FetchFunction, fetch_event_source

__all__ = [
    # Types
    "EVENT_STREAM_CONTENT_TYPE",
    "EventSourceEvent",
    "EventSourceMessage",
    "EventSourceResponse",
    "HeadersLike",
    "LineRecord",
    "LogEntry",
    "PatchOperation",
    "RunState",
    "FetchFunction",
    # Errors
    "EventSourceError",
    "FetchError",
    "PayloadDecodeError",
    "PatchApplyError",
    # Parsing
    "LineSplitter",
    "MessageAssembler",
    "parse_sse_async",
    "parse_sse_sync",
    # State
    "EventMapper",
    "StateReducer",
    "apply_patch_reducer",
    "decode_payload",
    # Top-level functions
    "fetch_event_source",
    "configure_logging",
]

# Use importlib.metadata for version (works with installed package)
# Fall back to hard-coded version for editable installs
try:
    __version__ = version("fetch-event-source")
except PackageNotFoundError:
    __version__ = "0.1.0"
