"""
Core types for the fetch-event-source client.

This module defines the records passed between the parsing stages and the
events handed to consumers.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Literal

# pydantic needs typing_extensions.TypedDict on Python < 3.12
from typing_extensions import Required, TypedDict

# Protocol constants
EVENT_STREAM_CONTENT_TYPE = "text/event-stream"
ACCEPT_HEADER = "accept"

# Retry policy: additional attempts after the first, and seconds between them
DEFAULT_RETRIES = 2
DEFAULT_RETRY_INTERVAL = 1.0

# Event name that carries patch payloads
DATA_EVENT = "data"

# Type for headers - flat string mapping only
HeadersLike = dict[str, str]


class EventSourceEvent(enum.Enum):
    """Kinds of high-level events yielded by fetch_event_source()."""

    OPEN = "onOpen"
    MESSAGE = "onMessage"
    CLOSE = "onClose"
    ERROR = "onError"


@dataclass(frozen=True, slots=True)
class LineRecord:
    """
    One line split off the byte stream.

    Attributes:
        line: Raw line bytes, without the terminator
        field_length: -1 if the line has no ``:`` (or is empty), 0 for a
            comment line, otherwise the offset of the first ``:``
    """

    line: bytes
    field_length: int


@dataclass(slots=True)
class EventSourceMessage:
    """
    An assembled SSE message.

    Attributes:
        id: Last event id (sticky across messages)
        event: Event type, empty if the message had no ``event`` field
        data: Data lines joined with ``\\n``
        retry: Reconnection time sent by the server (sticky, never reset)
    """

    id: str = ""
    event: str = ""
    data: str = ""
    retry: int | None = None


# JSON Patch (RFC 6902) operation; functional form because "from" is a keyword
PatchOperation = TypedDict(
    "PatchOperation",
    {
        "op": Required[Literal["add", "remove", "replace", "move", "copy", "test"]],
        "path": Required[str],
        "value": Any,
        "from": str,
    },
    total=False,
)


class PatchPayload(TypedDict):
    ops: list[PatchOperation]


class LogEntry(TypedDict, total=False):
    id: str
    name: str
    type: str
    tags: list[str]
    metadata: dict[str, Any]
    # ISO-8601 timestamps
    start_time: str
    end_time: str
    streamed_output_str: list[str]
    # Only present once the sub-run finished successfully
    final_output: Any


class RunState(TypedDict, total=False):
    """Aggregated state most servers build up through patch messages."""

    id: str
    streamed_output: list[Any]
    final_output: Any
    logs: dict[str, LogEntry]


@dataclass(frozen=True, slots=True)
class EventSourceResponse:
    """
    A high-level event yielded to the consumer.

    Attributes:
        event: Which kind of event this is
        data: Patch operations applied for this MESSAGE
        aggregated_state: State after applying ``data`` (MESSAGE only),
            usually shaped like :class:`RunState`
        error: The failure being reported (ERROR only)
    """

    event: EventSourceEvent
    data: list[PatchOperation] | None = None
    aggregated_state: RunState | Any = None
    error: BaseException | None = None
