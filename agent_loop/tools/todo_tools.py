# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Task-scoped todo list tools. The list lives on the task's ToolContext."""

import logging

from typing import Literal, Optional
from pydantic import BaseModel, Field

from .base_tool import BaseTool, ToolContext
from ..types.tool_types import TodoItem, ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_STATUS_MARK = {"pending": "[ ]", "in_progress": "[~]", "completed": "[x]"}


def format_todos(todos: list[TodoItem]) -> str:
    if not todos:
        return "The todo list is empty."
    lines = [
        f"{_STATUS_MARK[t.status]} {t.id}: {t.content} ({t.priority})" for t in todos
    ]
    done = sum(1 for t in todos if t.status == "completed")
    lines.append(f"{done}/{len(todos)} completed")
    return "\n".join(lines)


class CreateTodoList(BaseTool):
    TOOL_NAME = "create_todo_list"
    TOOL_DESCRIPTION = """Create (or replace) the todo list for the current task.

Use this for multi-step work to keep track of progress. Each item needs a unique
id and a short description.
"""

    todos: list[TodoItem] = Field(..., description="The todo items", min_length=1)

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        ids = [t.id for t in self.todos]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            return self.fail(
                f"Duplicate todo ids: {', '.join(duplicates)}", "validation_error"
            )
        self.context.todos[:] = [t.model_copy() for t in self.todos]
        return self.ok(format_todos(self.context.todos))


class TodoUpdate(BaseModel):
    id: str
    status: Optional[Literal["pending", "in_progress", "completed"]] = None
    content: Optional[str] = None
    priority: Optional[Literal["high", "medium", "low"]] = None


class UpdateTodoList(BaseTool):
    TOOL_NAME = "update_todo_list"
    TOOL_DESCRIPTION = """Update the status, content or priority of existing todo items by id."""

    updates: list[TodoUpdate] = Field(..., description="The updates to apply", min_length=1)

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        by_id = {t.id: t for t in self.context.todos}
        missing = [u.id for u in self.updates if u.id not in by_id]
        if missing:
            return self.fail(f"Unknown todo id(s): {', '.join(missing)}", "validation_error")

        for update in self.updates:
            changes = update.model_dump(exclude={"id"}, exclude_none=True)
            item = by_id[update.id]
            for key, value in changes.items():
                setattr(item, key, value)
        return self.ok(format_todos(self.context.todos))
