# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

from typing import Optional
from pydantic import BaseModel, Field

from .base_tool import BaseTool, ToolContext
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class QuestionOption(BaseModel):
    label: str
    description: Optional[str] = None


class Question(BaseModel):
    question: str
    options: list[QuestionOption] = Field(..., min_length=2)
    multi_select: bool = False


class AskUser(BaseTool):
    TOOL_NAME = "ask_user"
    TOOL_DESCRIPTION = """Ask the user one or more multiple choice questions and wait for the answers.

Only use this when a decision genuinely needs the user. Each question needs at
least two options.
"""

    questions: list[Question] = Field(..., description="The questions to ask", min_length=1)

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        if self.context.ask_user is None:
            return self.fail("No interactive user is available to answer questions")

        answers = await self.context.ask_user(
            [q.model_dump() for q in self.questions]
        )
        if len(answers) != len(self.questions):
            return self.fail(
                f"Expected {len(self.questions)} answers, received {len(answers)}"
            )
        lines = [
            f"Q: {q.question}\nA: {a}" for q, a in zip(self.questions, answers)
        ]
        return self.ok("\n\n".join(lines))
