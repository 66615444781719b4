"""
State reducers fold patch operations into the aggregated state.

A reducer is any callable ``(state, ops) -> new_state``. It must return a
new document rather than mutate ``state``; the driver keeps the previous
state when a reducer raises.
"""

from __future__ import annotations

from typing import Any, Protocol

import jsonpatch

from fetch_event_source._types import PatchOperation


class StateReducer(Protocol):
    def __call__(self, state: Any, ops: list[PatchOperation]) -> Any: ...


def apply_patch_reducer(state: Any, ops: list[PatchOperation]) -> Any:
    """
    Apply JSON Patch (RFC 6902) operations to a copy of ``state``.

    ``state`` starts out as None; the first message normally replaces the
    document root (``{"op": "replace", "path": "", "value": ...}``) with a
    :class:`~fetch_event_source.RunState` document whose ``logs`` map holds
    one :class:`~fetch_event_source.LogEntry` per sub-run.

    Raises:
        jsonpatch.JsonPatchException: If an operation is invalid or fails
        jsonpointer.JsonPointerException: If a path does not resolve
    """
    patch = jsonpatch.JsonPatch(list(ops))
    return patch.apply(state, in_place=False)
