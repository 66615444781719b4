"""
Mapping of assembled SSE messages to high-level events.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from fetch_event_source._errors import PatchApplyError, PayloadDecodeError
from fetch_event_source._reducer import StateReducer, apply_patch_reducer
from fetch_event_source._types import (
    DATA_EVENT,
    EventSourceEvent,
    EventSourceMessage,
    EventSourceResponse,
    PatchOperation,
    PatchPayload,
)


_payload_adapter: TypeAdapter[PatchPayload] = TypeAdapter(PatchPayload)


def decode_payload(data: str) -> list[PatchOperation]:
    """
    Decode the ``data`` of a payload message into patch operations.

    Raises:
        PayloadDecodeError: If the data is not JSON or has no valid ``ops`` list
    """
    try:
        payload = _payload_adapter.validate_python(json.loads(data))
    except ValidationError as e:
        raise PayloadDecodeError(
            f"{e.error_count()} validation error(s) in patch envelope", data
        ) from e
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, oversized integers and too-deep nesting
        raise PayloadDecodeError(f"invalid JSON ({e})", data) from e
    return payload["ops"]


class EventMapper:
    """
    Turns messages into MESSAGE events and folds their patches into state.

    Only ``event: data`` messages with a non-empty payload produce events;
    everything else is treated as a keep-alive.
    """

    def __init__(self, reducer: StateReducer | None = None) -> None:
        self._reducer: StateReducer = reducer or apply_patch_reducer

    def map(
        self, message: EventSourceMessage, state: Any
    ) -> tuple[EventSourceResponse | None, Any]:
        """
        Map one message against the current aggregated state.

        Args:
            message: Dispatched SSE message
            state: Aggregated state before this message

        Returns:
            The event to emit (or None for pings) and the new state

        Raises:
            PayloadDecodeError: If the payload cannot be decoded
            PatchApplyError: If the reducer rejects the operations
        """
        if message.event != DATA_EVENT or not message.data:
            return None, state

        ops = decode_payload(message.data)
        try:
            new_state = self._reducer(state, ops)
        except Exception as e:
            raise PatchApplyError(str(e) or e.__class__.__name__, ops) from e

        return (
            EventSourceResponse(
                event=EventSourceEvent.MESSAGE,
                data=ops,
                aggregated_state=new_state,
            ),
            new_state,
        )
