# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Reconstruction of a complete assistant turn from streamed chunk deltas.

The merge rule, applied field by field:

- ``None`` in the delta is a no-op
- a field absent from the accumulation takes the delta's value
- strings concatenate
- lists merge element-wise, matching elements on their ``index`` key when
  present (tool call fragments) and on position otherwise
- dicts merge recursively
- any other scalar is overwritten

Identity fields (``id``, ``type``, ``role``, ``name``) that some providers repeat
on every chunk are not concatenated with themselves.
"""

import json
import logging

from typing import Any

from ..types.event_types import Event, EventType
from ..types.llm_types import StopReason, TokenUsage, ToolCallDraft, Turn

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_IDENTITY_KEYS = frozenset({"id", "type", "role", "name"})


def merge_delta(acc: Any, delta: Any) -> Any:
    """Merge ``delta`` into ``acc`` and return the result. Neither input is
    mutated."""
    if delta is None:
        return acc
    if acc is None:
        if isinstance(delta, dict):
            return merge_delta({}, delta)
        if isinstance(delta, list):
            return merge_delta([], delta)
        return delta
    if isinstance(acc, str) and isinstance(delta, str):
        return acc + delta
    if isinstance(acc, list) and isinstance(delta, list):
        return _merge_list(acc, delta)
    if isinstance(acc, dict) and isinstance(delta, dict):
        merged = dict(acc)
        for key, value in delta.items():
            if value is None:
                continue
            if key in _IDENTITY_KEYS and merged.get(key) == value:
                continue
            merged[key] = merge_delta(merged.get(key), value)
        return merged
    return delta


def _merge_list(acc: list, delta: list) -> list:
    merged = list(acc)
    for position, item in enumerate(delta):
        if item is None:
            continue
        slot = _find_slot(merged, item, position)
        if slot is None:
            merged.append(merge_delta(None, item))
        else:
            merged[slot] = merge_delta(merged[slot], item)
    return merged


def _find_slot(merged: list, item: Any, position: int) -> int | None:
    if isinstance(item, dict) and isinstance(item.get("index"), int):
        for i, existing in enumerate(merged):
            if isinstance(existing, dict) and existing.get("index") == item["index"]:
                return i
        return None
    return position if position < len(merged) else None


def _normalise_tool_calls(delta: dict) -> dict:
    """Give every tool call fragment an explicit index."""
    tool_calls = delta.get("tool_calls")
    if not tool_calls:
        return delta
    normalised = []
    for position, tc in enumerate(tool_calls):
        if isinstance(tc, dict) and not isinstance(tc.get("index"), int):
            tc = {**tc, "index": position}
        normalised.append(tc)
    return {**delta, "tool_calls": normalised}


def _draft_from_raw(raw: dict, complete: bool = False) -> ToolCallDraft:
    function = raw.get("function") or {}
    arguments = function.get("arguments")
    if arguments is None:
        raw_arguments = ""
    elif isinstance(arguments, str):
        raw_arguments = arguments
    else:
        raw_arguments = json.dumps(arguments)
    return ToolCallDraft(
        index=raw.get("index", 0),
        id=raw.get("id") or "",
        function_name=function.get("name") or "",
        raw_arguments=raw_arguments,
        complete=complete,
    )


class StreamReducer:
    """
    Accumulates the chunks of one model response.

    ``feed`` merges a chunk and returns the streaming events it produced:
    content and reasoning deltas as they arrive, ``token-count`` whenever
    usage is reported, and ``tool-call-ready`` exactly once per tool call
    index, the first time that call is complete. Once a call has been
    announced, further fragments for its index are discarded.
    """

    def __init__(self, publisher_id: str | None = None, id_prefix: str = "call_"):
        self.publisher_id = publisher_id
        self.id_prefix = id_prefix
        self._message: dict[str, Any] = {}
        self._emitted: set[int] = set()
        self._usage = TokenUsage()
        self._finish_reason: str | None = None
        self._saw_choices = False
        self.chunk_count = 0

    @property
    def saw_choices(self) -> bool:
        """Whether any chunk carried a ``choices`` array, even an empty one."""
        return self._saw_choices

    @property
    def usage(self) -> TokenUsage:
        return self._usage

    @property
    def accumulated(self) -> dict[str, Any]:
        return self._message

    def feed(self, chunk: dict[str, Any]) -> list[Event]:
        self.chunk_count += 1
        events: list[Event] = []

        usage = chunk.get("usage")
        if usage:
            self._usage = TokenUsage.from_usage(usage)
            events.append(
                Event(
                    type=EventType.TOKEN_COUNT,
                    content=str(self._usage.total_tokens),
                    metadata={"usage": self._usage},
                )
            )

        choices = chunk.get("choices")
        if choices is None:
            return events
        self._saw_choices = True
        if not choices:
            return events

        choice = choices[0] or {}
        delta = choice.get("delta") or {}
        delta = self._drop_emitted(_normalise_tool_calls(delta))
        self._message = merge_delta(self._message, delta)

        if delta.get("reasoning_content"):
            events.append(
                Event(type=EventType.REASONING, content=delta["reasoning_content"])
            )
        if delta.get("content"):
            events.append(Event(type=EventType.CONTENT, content=delta["content"]))

        if choice.get("finish_reason") is not None:
            self._finish_reason = choice["finish_reason"]

        events.extend(self._newly_complete())
        return events

    def _drop_emitted(self, delta: dict) -> dict:
        tool_calls = delta.get("tool_calls")
        if not tool_calls or not self._emitted:
            return delta
        kept = [
            tc
            for tc in tool_calls
            if not (isinstance(tc, dict) and tc.get("index") in self._emitted)
        ]
        if len(kept) != len(tool_calls):
            logger.debug(
                f"Discarding {len(tool_calls) - len(kept)} late tool call fragment(s)"
            )
        return {**delta, "tool_calls": kept}

    def _newly_complete(self) -> list[Event]:
        events = []
        finished = self._finish_reason is not None
        for raw in self._message.get("tool_calls") or []:
            if not isinstance(raw, dict):
                continue
            index = raw.get("index", 0)
            if index in self._emitted:
                continue
            draft = _draft_from_raw(raw)
            if draft.is_syntactically_complete() or finished:
                self._emitted.add(index)
                events.append(
                    Event(
                        type=EventType.TOOL_CALL_READY,
                        content=draft.function_name,
                        metadata={"tool_call": draft.model_copy(update={"complete": True})},
                    )
                )
        return events

    def turn(self) -> Turn:
        """The fully reduced turn. Drafts missing an id get ``<id_prefix><index>``."""
        drafts = []
        raw_calls = [
            tc for tc in self._message.get("tool_calls") or [] if isinstance(tc, dict)
        ]
        for raw in sorted(raw_calls, key=lambda tc: tc.get("index", 0)):
            draft = _draft_from_raw(raw, complete=True)
            if not draft.id:
                draft = draft.model_copy(update={"id": f"{self.id_prefix}{draft.index}"})
            drafts.append(draft)

        stop_reason = StopReason.from_finish_reason(self._finish_reason)
        if stop_reason is None:
            stop_reason = StopReason.TOOL_CALLS if drafts else StopReason.COMPLETE

        return Turn(
            role=self._message.get("role") or "assistant",
            content=self._message.get("content") or "",
            reasoning_content=self._message.get("reasoning_content") or None,
            tool_calls=tuple(drafts),
            stop_reason=stop_reason,
            usage=self._usage,
        )


def reduce_chunks(chunks: list[dict[str, Any]]) -> Turn:
    """Reduce a complete list of chunks in one go."""
    reducer = StreamReducer()
    for chunk in chunks:
        reducer.feed(chunk)
    return reducer.turn()
