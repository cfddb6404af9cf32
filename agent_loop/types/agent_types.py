# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os

from enum import Enum
from typing import Optional, Union
from datetime import datetime
from pydantic import BaseModel, Field

from .llm_types import Message, TokenUsage, Turn
from .tool_types import SideEffects, ToolResult


ConversationItem = Union[Message, Turn, ToolResult]


class TaskStatus(str, Enum):
    """Possible terminal states of a task execution."""

    SUCCESS = "success"
    ERROR = "error"
    RUNNING = "running"
    CANCELLED = "cancelled"  # aborted by the caller
    TIMEOUT = "timeout"


class TaskMetrics(BaseModel):
    """Metrics about the task execution."""

    start_time: datetime
    end_time: Optional[datetime] = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    tool_calls: int = 0
    model_calls: int = 0

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate execution duration if completed."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class TaskInput(BaseModel):
    """What one Round Loop invocation is asked to do."""

    name: str = "task"
    kind: str = "Task"  # used in the default summary, e.g. "Phase"
    prompt: str
    system_prompt: str | None = None
    context: str | None = None
    prior_messages: list[ConversationItem] = Field(default_factory=list)
    task_id: str = Field(default_factory=lambda: f"task_{os.urandom(4).hex()}")

    class Config:
        arbitrary_types_allowed = True


class CorrectionSummary(BaseModel):
    """Attached to a TaskResult when self-correction was involved."""

    attempted: bool = False
    attempts: int = 0
    exhausted: bool = False
    corrected: bool = False
    signatures: list[str] = Field(default_factory=list)
    exhaustion_message: str | None = None


class TaskResult(BaseModel):
    """
    The terminal result of a task. Every path out of the Round Loop, including
    faults, produces one of these.
    """

    task_id: str
    name: str
    status: TaskStatus
    output: str = ""
    errors: str | None = None
    error_type: str | None = None
    metrics: TaskMetrics
    rounds_used: int = 0
    tools_used: set[str] = Field(default_factory=set)
    side_effects: SideEffects = Field(default_factory=SideEffects)
    messages: list[ConversationItem] = Field(default_factory=list)
    correction: CorrectionSummary | None = None

    class Config:
        arbitrary_types_allowed = True

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.SUCCESS

    @property
    def files_created(self) -> list[str]:
        return sorted(self.side_effects.files_created)

    @property
    def files_modified(self) -> list[str]:
        return sorted(self.side_effects.files_modified)

    @property
    def tool_results(self) -> list[ToolResult]:
        return [m for m in self.messages if isinstance(m, ToolResult)]

    def __str__(self) -> str:
        """
        Format the task result for inclusion in prompts.
        """
        parts = [
            "<TASK_RESULT>",
            f"<STATUS>{self.status.value}</STATUS>",
            f"<RESULT>\n{self.output}\n</RESULT>",
        ]

        if self.errors:
            parts.append(f"<ERRORS>{self.errors}</ERRORS>")

        files = self.files_created + self.files_modified
        if files:
            parts.append(f"<FILES>{', '.join(files)}</FILES>")

        if self.metrics.duration_seconds:
            parts.append(
                f"<METRICS>Completed in {self.metrics.duration_seconds:.2f}s "
                f"over {self.rounds_used} tool rounds "
                f"using {self.metrics.token_usage.total_tokens} tokens</METRICS>"
            )

        parts.append("</TASK_RESULT>")
        return "\n".join(parts)


class RoundState(BaseModel):
    """Mutable state owned by exactly one Round Loop invocation."""

    messages: list[ConversationItem] = Field(default_factory=list)
    rounds_used: int = 0
    max_rounds: int
    tools_used: set[str] = Field(default_factory=set)
    aborted: bool = False
    side_effects: SideEffects = Field(default_factory=SideEffects)
    dispatched_ids: set[str] = Field(default_factory=set)
    last_content: str = ""

    class Config:
        arbitrary_types_allowed = True
