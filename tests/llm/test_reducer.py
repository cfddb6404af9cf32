# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the streaming reducer."""
import json
import pytest

from agent_loop.llm.reducer import StreamReducer, merge_delta, reduce_chunks
from agent_loop.types.event_types import EventType
from agent_loop.types.llm_types import StopReason

from tests.helpers import text_response, tool_call, tool_response


def _tool_delta(tool_calls, finish_reason=None):
    return {
        "choices": [
            {"index": 0, "delta": {"tool_calls": tool_calls}, "finish_reason": finish_reason}
        ]
    }


class TestMergeDelta:
    def test_strings_concatenate(self):
        assert merge_delta("Hel", "lo") == "Hello"

    def test_none_is_noop(self):
        assert merge_delta({"content": "a"}, None) == {"content": "a"}
        assert merge_delta({"content": "a"}, {"content": None}) == {"content": "a"}

    def test_dicts_merge_recursively(self):
        acc = {"function": {"name": "view", "arguments": '{"pa'}}
        merged = merge_delta(acc, {"function": {"arguments": 'th": 1}'}})
        assert merged == {"function": {"name": "view", "arguments": '{"path": 1}'}}

    def test_identity_keys_not_doubled(self):
        acc = {"id": "call_1", "type": "function", "role": "assistant"}
        merged = merge_delta(acc, {"id": "call_1", "type": "function", "role": "assistant"})
        assert merged == acc

    def test_lists_merge_by_index(self):
        acc = [{"index": 0, "x": "a"}, {"index": 1, "x": "b"}]
        merged = merge_delta(acc, [{"index": 1, "x": "c"}, {"index": 2, "x": "d"}])
        assert merged == [
            {"index": 0, "x": "a"},
            {"index": 1, "x": "bc"},
            {"index": 2, "x": "d"},
        ]

    def test_inputs_not_mutated(self):
        acc = {"content": "a", "nested": {"k": "v"}}
        merge_delta(acc, {"content": "b", "nested": {"k": "w"}})
        assert acc == {"content": "a", "nested": {"k": "v"}}

    def test_scalars_overwrite(self):
        assert merge_delta(1, 2) == 2


class TestStreamReducer:
    def test_text_response(self):
        turn = reduce_chunks(text_response("Hello there, world"))

        assert turn.content == "Hello there, world"
        assert turn.role == "assistant"
        assert not turn.has_tool_calls
        assert turn.stop_reason == StopReason.COMPLETE
        assert turn.usage.prompt_tokens == 10
        assert turn.usage.completion_tokens == 5

    def test_content_events_per_delta(self):
        reducer = StreamReducer("task_1")
        events = []
        for chunk in text_response("abcdefghij", piece_size=5):
            events.extend(reducer.feed(chunk))

        content = [e.content for e in events if e.type == EventType.CONTENT]
        assert content == ["abcde", "fghij"]
        assert any(e.type == EventType.TOKEN_COUNT for e in events)

    def test_reasoning_events(self):
        reducer = StreamReducer()
        events = reducer.feed(
            {"choices": [{"index": 0, "delta": {"reasoning_content": "hmm"}}]}
        )
        assert [e.type for e in events] == [EventType.REASONING]
        assert reducer.turn().reasoning_content == "hmm"

    def test_fragmented_tool_calls(self):
        chunks = tool_response(
            tool_call("view_file", {"path": "a.py"}, "call_a"),
            tool_call("search", {"query": "needle", "max_results": 5}, "call_b"),
        )
        turn = reduce_chunks(chunks)

        assert turn.stop_reason == StopReason.TOOL_CALLS
        assert [tc.id for tc in turn.tool_calls] == ["call_a", "call_b"]
        assert [tc.function_name for tc in turn.tool_calls] == ["view_file", "search"]
        assert json.loads(turn.tool_calls[0].raw_arguments) == {"path": "a.py"}
        assert json.loads(turn.tool_calls[1].raw_arguments) == {
            "query": "needle",
            "max_results": 5,
        }
        assert all(tc.complete for tc in turn.tool_calls)

    def test_incremental_matches_all_at_once(self):
        chunks = tool_response(
            tool_call("view_file", {"path": "a.py"}),
            tool_call("bash", {"command": "ls -la"}),
            content="Looking around",
        )
        reducer = StreamReducer()
        for chunk in chunks:
            reducer.feed(chunk)

        assert reducer.turn() == reduce_chunks(chunks)

    def test_tool_call_ready_emitted_once_per_index(self):
        chunks = tool_response(
            tool_call("view_file", {"path": "a.py"}),
            tool_call("view_file", {"path": "b.py"}),
        )
        reducer = StreamReducer()
        ready = []
        for chunk in chunks:
            ready.extend(e for e in reducer.feed(chunk) if e.type == EventType.TOOL_CALL_READY)

        assert len(ready) == 2
        drafts = [e.metadata["tool_call"] for e in ready]
        assert [d.index for d in drafts] == [0, 1]
        assert all(d.complete for d in drafts)

    def test_late_fragments_are_discarded(self):
        reducer = StreamReducer()
        reducer.feed(
            _tool_delta(
                [
                    {
                        "index": 0,
                        "id": "call_x",
                        "function": {"name": "view_file", "arguments": '{"path": "a.py"}'},
                    }
                ]
            )
        )
        # The call already parsed, so this fragment arrives too late
        events = reducer.feed(_tool_delta([{"index": 0, "function": {"arguments": "}}"}}]))
        assert events == []

        turn = reducer.turn()
        assert turn.tool_calls[0].raw_arguments == '{"path": "a.py"}'

    def test_finish_reason_completes_unparseable_drafts(self):
        reducer = StreamReducer()
        reducer.feed(
            _tool_delta(
                [{"index": 0, "id": "call_1", "function": {"name": "bash", "arguments": '{"comm'}}]
            )
        )
        events = reducer.feed(_tool_delta([], finish_reason="tool_calls"))

        ready = [e for e in events if e.type == EventType.TOOL_CALL_READY]
        assert len(ready) == 1
        assert ready[0].metadata["tool_call"].raw_arguments == '{"comm'

    def test_missing_id_gets_synthesised(self):
        turn = reduce_chunks(
            [
                _tool_delta([{"index": 3, "function": {"name": "bash", "arguments": "{}"}}]),
                _tool_delta([], finish_reason="tool_calls"),
            ]
        )
        assert turn.tool_calls[0].id == "call_3"

    def test_synthesised_id_prefix(self):
        reducer = StreamReducer(id_prefix="call_r2_")
        reducer.feed(_tool_delta([{"index": 0, "function": {"name": "bash", "arguments": "{}"}}]))
        reducer.feed(_tool_delta([], finish_reason="tool_calls"))

        assert reducer.turn().tool_calls[0].id == "call_r2_0"

    def test_missing_index_uses_position(self):
        turn = reduce_chunks(
            [
                _tool_delta(
                    [
                        {"id": "a", "function": {"name": "bash", "arguments": "{}"}},
                        {"id": "b", "function": {"name": "search", "arguments": "{}"}},
                    ],
                    finish_reason="tool_calls",
                )
            ]
        )
        assert [(tc.index, tc.id) for tc in turn.tool_calls] == [(0, "a"), (1, "b")]

    def test_non_string_arguments_are_serialised(self):
        turn = reduce_chunks(
            [
                _tool_delta(
                    [{"index": 0, "id": "c", "function": {"name": "bash", "arguments": {"command": "ls"}}}],
                    finish_reason="tool_calls",
                )
            ]
        )
        assert json.loads(turn.tool_calls[0].raw_arguments) == {"command": "ls"}

    def test_saw_choices(self):
        reducer = StreamReducer()
        reducer.feed({"usage": {"prompt_tokens": 1, "completion_tokens": 1}})
        assert not reducer.saw_choices
        reducer.feed({"choices": []})
        assert reducer.saw_choices

    def test_cached_tokens_are_read(self):
        reducer = StreamReducer()
        reducer.feed(
            {
                "choices": [],
                "usage": {
                    "prompt_tokens": 100,
                    "completion_tokens": 10,
                    "prompt_tokens_details": {"cached_tokens": 64},
                },
            }
        )
        assert reducer.usage.cached_prompt_tokens == 64
        assert reducer.usage.total_tokens == 110

    @pytest.mark.parametrize(
        "finish_reason,expected",
        [
            ("stop", StopReason.COMPLETE),
            ("length", StopReason.LENGTH),
            ("tool_calls", StopReason.TOOL_CALLS),
            ("content_filter", StopReason.COMPLETE),
        ],
    )
    def test_stop_reason_mapping(self, finish_reason, expected):
        turn = reduce_chunks(
            [{"choices": [{"index": 0, "delta": {"content": "x"}, "finish_reason": finish_reason}]}]
        )
        assert turn.stop_reason == expected
