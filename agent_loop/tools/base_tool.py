# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

from pathlib import Path
from typing import Any, Awaitable, Callable, ClassVar, Optional
from pydantic import BaseModel, Field, PrivateAttr

from ..events import EventBus
from ..types.tool_types import SideEffects, TodoItem, ToolInterface, ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


AskUserCallback = Callable[[list[dict[str, Any]]], Awaitable[list[str]]]


class ToolContext(BaseModel):
    """
    Everything a tool may touch, scoped to one task. Round Loops build one of
    these per task; nothing in here is shared with another running task except
    the event bus, which is only ever published to.
    """

    workdir: Path = Field(default_factory=Path.cwd)
    task_id: str = "task"
    event_bus: Optional[EventBus] = None
    ask_user: Optional[AskUserCallback] = None
    todos: list[TodoItem] = Field(default_factory=list)
    # Runs a nested task and returns its TaskResult; set by the Round Loop
    run_subtask: Optional[Callable[..., Awaitable[Any]]] = None
    depth: int = 0

    class Config:
        arbitrary_types_allowed = True

    def resolve(self, path: str) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.workdir / p
        return p


# Create an empty registry dictionary.
tool_registry: dict[str, type["BaseTool"]] = {}


class BaseTool(ToolInterface):
    """Abstract base class for all built-in tools"""

    # Class variables for tool metadata
    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]

    # Read-only tools may run concurrently with their neighbours in a round
    PARALLEL_SAFE: ClassVar[bool] = False

    _context: ToolContext = PrivateAttr()

    def __init__(self, context: ToolContext, **data):
        super().__init__(**data)
        self._context = context

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        # Only concrete tools declare their own TOOL_NAME
        if "TOOL_NAME" in cls.__dict__:
            tool_registry[cls.TOOL_NAME] = cls

    @classmethod
    def argument_schema(cls) -> dict[str, Any]:
        return cls.model_json_schema()

    @property
    def context(self) -> ToolContext:
        return self._context

    def ok(
        self,
        output: str,
        created: set[str] | None = None,
        modified: set[str] | None = None,
        warnings: str | None = None,
    ) -> ToolResult:
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=output,
            warnings=warnings,
            side_effects=SideEffects(
                files_created=created or set(), files_modified=modified or set()
            ),
        )

    def fail(self, errors: str, error_type: str = "execution_error") -> ToolResult:
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=False,
            errors=errors,
            error_type=error_type,
        )
