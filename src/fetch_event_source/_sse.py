"""
Server-Sent Events (SSE) parsing.

Parsing happens in two incremental stages:
- LineSplitter turns arbitrary byte chunks into line records
- MessageAssembler turns line records into EventSourceMessage objects

Both are stateful and scoped to a single response body.
"""

from collections.abc import AsyncIterator, Iterable, Iterator

from fetch_event_source._types import EventSourceMessage, LineRecord

_LF = 0x0A
_CR = 0x0D
_COLON = 0x3A
_SPACE = b" "


class LineSplitter:
    """
    Incremental line splitter.

    Accepts ``\\n``, ``\\r\\n`` and bare ``\\r`` terminators, and records the
    offset of the first ``:`` of each line as its field length.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        # Next byte to scan, relative to the start of the buffer
        self._position = 0
        self._field_length = -1

    def feed(self, chunk: bytes) -> list[LineRecord]:
        """
        Feed the next chunk and return every line it completes.

        A ``\\r`` that ends the available bytes is held back until the next
        byte shows whether it starts a ``\\r\\n`` pair.

        Args:
            chunk: Next bytes of the stream

        Returns:
            Complete line records, in stream order
        """
        if not chunk:
            return []

        buffer = self._buffer
        buffer.extend(chunk)
        length = len(buffer)
        lines: list[LineRecord] = []
        line_start = 0
        position = self._position

        while position < length:
            byte = buffer[position]

            if byte == _COLON:
                if self._field_length == -1:
                    self._field_length = position - line_start
                position += 1
                continue

            if byte == _LF:
                next_start = position + 1
            elif byte == _CR:
                if position + 1 == length:
                    break
                next_start = position + 2 if buffer[position + 1] == _LF else position + 1
            else:
                position += 1
                continue

            lines.append(
                LineRecord(bytes(buffer[line_start:position]), self._field_length)
            )
            self._field_length = -1
            line_start = position = next_start

        del buffer[:line_start]
        self._position = position - line_start
        return lines

    def flush(self) -> list[LineRecord]:
        """
        Finish the stream and return the line held back by a trailing ``\\r``.

        An unterminated remainder is discarded: an SSE line only counts once
        its terminator has arrived.
        """
        lines: list[LineRecord] = []
        buffer = self._buffer
        if self._position < len(buffer) and buffer[self._position] == _CR:
            lines.append(
                LineRecord(bytes(buffer[: self._position]), self._field_length)
            )

        buffer.clear()
        self._position = 0
        self._field_length = -1
        return lines


class MessageAssembler:
    """
    Incremental SSE message assembler.

    Keeps the message under construction between calls. ``id`` and ``retry``
    carry over to the next message after a dispatch; ``event`` and ``data``
    start empty again.
    """

    def __init__(self) -> None:
        self._message = EventSourceMessage()

    def feed(self, line: bytes, field_length: int) -> list[EventSourceMessage]:
        """
        Feed one line record and return the message it completes, if any.

        Args:
            line: Line bytes without terminator
            field_length: Field length as produced by LineSplitter

        Returns:
            A single dispatched message for an empty line, otherwise nothing
        """
        if field_length == -1:
            if line:
                # No field separator: not a line shape SSE defines
                return []
            return [self._dispatch()]

        if field_length == 0:
            # Comment
            return []

        name = line[:field_length]
        value_offset = field_length + 1
        if line[value_offset : value_offset + 1] == _SPACE:
            value_offset += 1
        value = line[value_offset:].decode("utf-8", errors="replace")

        message = self._message
        if name == b"data":
            message.data = f"{message.data}\n{value}" if message.data else value
        elif name == b"event":
            message.event = value
        elif name == b"id":
            message.id = value
        elif name == b"retry":
            try:
                message.retry = int(value, 10)
            except ValueError:
                pass
        # Unknown field names are ignored

        return []

    def _dispatch(self) -> EventSourceMessage:
        message = self._message
        self._message = EventSourceMessage(id=message.id, retry=message.retry)
        return message


def _assemble(
    assembler: MessageAssembler, records: Iterable[LineRecord]
) -> Iterator[EventSourceMessage]:
    for record in records:
        yield from assembler.feed(record.line, record.field_length)


def parse_sse_sync(byte_iterator: Iterator[bytes]) -> Iterator[EventSourceMessage]:
    """
    Parse SSE messages from a synchronous byte iterator.

    Args:
        byte_iterator: Iterator yielding bytes

    Yields:
        Assembled messages, including empty-data pings
    """
    splitter = LineSplitter()
    assembler = MessageAssembler()

    for chunk in byte_iterator:
        yield from _assemble(assembler, splitter.feed(chunk))

    yield from _assemble(assembler, splitter.flush())


async def parse_sse_async(
    byte_iterator: AsyncIterator[bytes],
) -> AsyncIterator[EventSourceMessage]:
    """
    Parse SSE messages from an asynchronous byte iterator.

    Lines are split on raw bytes, so multi-byte UTF-8 characters split
    across chunk boundaries decode correctly.

    Args:
        byte_iterator: Async iterator yielding bytes

    Yields:
        Assembled messages, including empty-data pings
    """
    splitter = LineSplitter()
    assembler = MessageAssembler()

    async for chunk in byte_iterator:
        for message in _assemble(assembler, splitter.feed(chunk)):
            yield message

    for message in _assemble(assembler, splitter.flush()):
        yield message
