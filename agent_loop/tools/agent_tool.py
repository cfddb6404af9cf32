# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

from pydantic import Field

from .base_tool import BaseTool, ToolContext
from ..types.agent_types import TaskInput, TaskResult
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_AGENT_DEPTH = 3


class AgentTool(BaseTool):
    TOOL_NAME = "agent"
    TOOL_DESCRIPTION = """Delegate a self-contained sub-task to a nested agent.

The nested agent has the same tools as you, starts with an empty conversation
and returns a summary of what it did. Give it everything it needs in the prompt.
"""

    name: str = Field(..., description="A short name for the sub-task", min_length=1)
    prompt: str = Field(
        ..., description="Complete instructions for the nested agent", min_length=1
    )

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        if self.context.run_subtask is None:
            return self.fail("Nested agents are not available in this context")
        if self.context.depth >= MAX_AGENT_DEPTH:
            return self.fail(
                f"Maximum agent nesting depth ({MAX_AGENT_DEPTH}) reached; "
                "complete this sub-task directly"
            )

        result: TaskResult = await self.context.run_subtask(
            TaskInput(name=self.name, prompt=self.prompt)
        )
        logger.info(f"Nested agent {self.name} finished with {result.status.value}")

        if not result.success:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                output=str(result),
                errors=result.errors or f"Nested agent {self.name} failed",
                error_type=result.error_type or "execution_error",
            )

        tool_result = self.ok(str(result))
        tool_result.side_effects = result.side_effects.model_copy(deep=True)
        return tool_result
