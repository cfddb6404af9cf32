# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Utility functions for working with the event bus.

These build 'views' over the event store by iterating the stored event lists.
Tasks hold at most a few thousand events, so none of this is optimised.
"""

from .event_bus import EventBus
from ..types.tool_types import ToolResult
from ..types.agent_types import TaskResult
from ..types.event_types import EventType, Event, STREAMING_EVENTS


async def log_to_stdout(event: Event):
    """Print lifecycle events to stdout with clear formatting."""

    max_content_len = 50
    prefix_width = 16

    def truncate(text: str, length: int = max_content_len) -> str:
        """Helper to truncate text and handle newlines"""
        text = text.replace("\n", " ")
        return f"{text[:length]}..." if len(text) > length else text

    def format_output(prefix: str, content: str, metadata: str = "") -> None:
        print(
            f"{prefix:<{prefix_width}s} => {content}{' | ' + metadata if metadata else ''}"
        )

    event_content = truncate(str(event.content))

    if event.type in STREAMING_EVENTS:
        return
    elif event.type == EventType.TOOL_CALL:
        name = event.metadata.get("name", "unknown tool")
        args = truncate(str(event.metadata.get("args", {})))
        format_output(event.type.value, f"{name}, {args}")
    elif event.type == EventType.TOOL_RESULT:
        result = event.metadata.get("tool_result")
        if not isinstance(result, ToolResult):
            return
        content = f"{result.tool_name}, success: {result.success}, "
        content += f"duration: {result.duration:.1f}, {event_content}"
        format_output(event.type.value, content)
    elif event.type in (EventType.TASK_COMPLETED, EventType.TASK_FAILED):
        result = event.metadata.get("task_result")
        if not isinstance(result, TaskResult):
            format_output(event.type.value, event_content)
            return
        duration = result.metrics.duration_seconds or 0.0
        res = truncate(result.output or result.errors or "", 30)
        content = (
            f"{result.name}, status: {result.status.value}, "
            f"rounds: {result.rounds_used}, duration: {duration:.1f}, {res}"
        )
        format_output(event.type.value, content)
    else:
        format_output(event.type.value, event_content)


def terminal_event(result: TaskResult) -> Event:
    """The ``task-completed`` or ``task-failed`` event reporting ``result``."""
    return Event(
        type=EventType.TASK_COMPLETED if result.success else EventType.TASK_FAILED,
        content=result.output if result.success else (result.errors or ""),
        metadata=dict(task_result=result),
    )


def count_events(
    event_bus: EventBus, publisher_id: str, event_type: EventType
) -> int:
    """How many events of ``event_type`` one publisher has emitted."""
    return len(event_bus.get_events_by_type(event_type, publisher_id))


def get_tool_results(event_bus: EventBus, publisher_id: str) -> list[ToolResult]:
    """The tool results published by a task, in publication order."""
    results = []
    for event in event_bus.get_events(publisher_id):
        if event.type != EventType.TOOL_RESULT:
            continue
        result = event.metadata.get("tool_result")
        if isinstance(result, ToolResult):
            results.append(result)
    return results


def get_streamed_content(event_bus: EventBus, publisher_id: str) -> str:
    """Concatenate the live content deltas a task has published."""
    return "".join(
        e.content
        for e in event_bus.get_events(publisher_id)
        if e.type == EventType.CONTENT
    )
