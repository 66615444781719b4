"""Tests for payload decoding, the default reducer and the event mapper."""

import json

import jsonpatch
import pytest

from fetch_event_source import (
    EventMapper,
    EventSourceEvent,
    EventSourceMessage,
    LogEntry,
    PatchApplyError,
    PayloadDecodeError,
    RunState,
    apply_patch_reducer,
    decode_payload,
)


def _data_message(payload: object) -> EventSourceMessage:
    return EventSourceMessage(event="data", data=json.dumps(payload))


class TestDecodePayload:
    """Tests for decode_payload."""

    def test_decodes_ops(self) -> None:
        ops = decode_payload('{"ops": [{"op": "add", "path": "/a", "value": 1}]}')
        assert ops == [{"op": "add", "path": "/a", "value": 1}]

    def test_keeps_from_member(self) -> None:
        ops = decode_payload('{"ops": [{"op": "move", "from": "/a", "path": "/b"}]}')
        assert ops == [{"op": "move", "from": "/a", "path": "/b"}]

    def test_rejects_invalid_json(self) -> None:
        with pytest.raises(PayloadDecodeError) as exc_info:
            decode_payload("{not json")

        assert exc_info.value.code == "PARSE_ERROR"
        assert exc_info.value.details == "{not json"
        assert isinstance(exc_info.value.__cause__, json.JSONDecodeError)

    def test_rejects_missing_ops(self) -> None:
        with pytest.raises(PayloadDecodeError):
            decode_payload('{"data": []}')

    def test_rejects_non_list_ops(self) -> None:
        with pytest.raises(PayloadDecodeError):
            decode_payload('{"ops": "nope"}')

    def test_rejects_unknown_operation(self) -> None:
        with pytest.raises(PayloadDecodeError):
            decode_payload('{"ops": [{"op": "merge", "path": "/a"}]}')

    def test_truncates_long_payload_in_message(self) -> None:
        data = "x" * 500
        with pytest.raises(PayloadDecodeError) as exc_info:
            decode_payload(data)

        assert "x" * 100 + "..." in str(exc_info.value)
        assert "x" * 101 not in str(exc_info.value)

    def test_rejects_too_deeply_nested_json(self) -> None:
        data = "[" * 200_000
        with pytest.raises(PayloadDecodeError) as exc_info:
            decode_payload(data)

        assert exc_info.value.code == "PARSE_ERROR"
        assert isinstance(exc_info.value.__cause__, RecursionError)


class TestApplyPatchReducer:
    """Tests for the default JSON Patch reducer."""

    def test_replaces_root_of_unset_state(self) -> None:
        state = apply_patch_reducer(
            None,
            [{"op": "replace", "path": "", "value": {"id": "run", "logs": {}}}],
        )
        assert state == {"id": "run", "logs": {}}

    def test_appends_to_list(self) -> None:
        state = {"streamed_output": ["a"]}
        new_state = apply_patch_reducer(
            state, [{"op": "add", "path": "/streamed_output/-", "value": "b"}]
        )
        assert new_state == {"streamed_output": ["a", "b"]}

    def test_does_not_mutate_input(self) -> None:
        state = {"logs": {}}
        apply_patch_reducer(state, [{"op": "add", "path": "/logs/llm", "value": {}}])
        assert state == {"logs": {}}

    def test_builds_run_state_logs(self) -> None:
        entry: LogEntry = {
            "id": "llm-1",
            "name": "llm",
            "type": "llm",
            "streamed_output_str": [],
        }
        state: RunState = {"id": "run", "streamed_output": [], "logs": {}}

        state = apply_patch_reducer(
            state, [{"op": "add", "path": "/logs/llm", "value": entry}]
        )
        state = apply_patch_reducer(
            state,
            [
                {
                    "op": "add",
                    "path": "/logs/llm/streamed_output_str/-",
                    "value": "hi",
                },
                {"op": "add", "path": "/logs/llm/final_output", "value": "hi"},
            ],
        )

        assert state["logs"]["llm"]["streamed_output_str"] == ["hi"]
        assert state["logs"]["llm"]["final_output"] == "hi"
        assert entry["streamed_output_str"] == []

    def test_raises_on_conflict(self) -> None:
        with pytest.raises(jsonpatch.JsonPatchConflict):
            apply_patch_reducer({"a": 1}, [{"op": "remove", "path": "/b"}])


class TestEventMapper:
    """Tests for EventMapper."""

    def test_maps_data_message(self) -> None:
        mapper = EventMapper()
        ops = [{"op": "replace", "path": "", "value": {"streamed_output": []}}]

        event, state = mapper.map(_data_message({"ops": ops}), None)

        assert event is not None
        assert event.event is EventSourceEvent.MESSAGE
        assert event.data == ops
        assert event.aggregated_state == {"streamed_output": []}
        assert state == {"streamed_output": []}

    def test_threads_state(self) -> None:
        mapper = EventMapper()
        state = {"streamed_output": []}

        _, state = mapper.map(
            _data_message(
                {"ops": [{"op": "add", "path": "/streamed_output/-", "value": 1}]}
            ),
            state,
        )
        event, state = mapper.map(
            _data_message(
                {"ops": [{"op": "add", "path": "/streamed_output/-", "value": 2}]}
            ),
            state,
        )

        assert event is not None
        assert event.aggregated_state == {"streamed_output": [1, 2]}

    def test_ignores_other_events(self) -> None:
        mapper = EventMapper()
        state = {"x": 1}

        event, new_state = mapper.map(
            EventSourceMessage(event="metadata", data='{"run_id": "1"}'), state
        )

        assert event is None
        assert new_state is state

    def test_ignores_empty_data(self) -> None:
        mapper = EventMapper()

        event, new_state = mapper.map(EventSourceMessage(event="data"), None)

        assert event is None
        assert new_state is None

    def test_raises_on_malformed_payload(self) -> None:
        mapper = EventMapper()

        with pytest.raises(PayloadDecodeError):
            mapper.map(EventSourceMessage(event="data", data="oops"), None)

    def test_wraps_reducer_failure(self) -> None:
        mapper = EventMapper()

        with pytest.raises(PatchApplyError) as exc_info:
            mapper.map(
                _data_message({"ops": [{"op": "remove", "path": "/missing"}]}),
                {"a": 1},
            )

        assert exc_info.value.code == "PATCH_ERROR"
        assert exc_info.value.details == [{"op": "remove", "path": "/missing"}]
        assert isinstance(exc_info.value.__cause__, jsonpatch.JsonPatchConflict)

    def test_uses_custom_reducer(self) -> None:
        calls = []

        def reducer(state, ops):
            calls.append((state, ops))
            return (state or 0) + len(ops)

        mapper = EventMapper(reducer)
        ops = [{"op": "test", "path": "/a", "value": 1}]

        event, state = mapper.map(_data_message({"ops": ops}), 41)

        assert calls == [(41, ops)]
        assert state == 42
        assert event is not None
        assert event.aggregated_state == 42
