# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Builders for the task results the correction tests classify."""

import json

from datetime import datetime

from agent_loop.types.agent_types import TaskMetrics, TaskResult, TaskStatus
from agent_loop.types.llm_types import StopReason, ToolCallDraft, Turn
from agent_loop.types.tool_types import SideEffects, ToolResult


def call_turn(name: str, arguments: dict, call_id: str = "call_1") -> Turn:
    return Turn(
        tool_calls=(
            ToolCallDraft(
                index=0,
                id=call_id,
                function_name=name,
                raw_arguments=json.dumps(arguments),
                complete=True,
            ),
        ),
        stop_reason=StopReason.TOOL_CALLS,
    )


def failed_tool(name: str, errors: str, call_id: str = "call_1", error_type="execution_error"):
    return ToolResult(
        tool_name=name, success=False, errors=errors, error_type=error_type, call_id=call_id
    )


def make_result(
    status: TaskStatus = TaskStatus.SUCCESS,
    output: str = "",
    errors: str | None = None,
    error_type: str | None = None,
    messages: list | None = None,
    created: set[str] | None = None,
    task_id: str = "task_1",
) -> TaskResult:
    return TaskResult(
        task_id=task_id,
        name="thing",
        status=status,
        output=output,
        errors=errors,
        error_type=error_type,
        metrics=TaskMetrics(start_time=datetime.now(), end_time=datetime.now()),
        messages=messages or [],
        side_effects=SideEffects(files_created=created or set()),
    )


def transport_failure(**kwargs) -> TaskResult:
    return make_result(
        TaskStatus.ERROR,
        errors="LLM request failed: connection reset by peer",
        error_type="transport_error",
        **kwargs,
    )
