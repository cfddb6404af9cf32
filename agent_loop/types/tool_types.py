# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Literal
from pydantic import BaseModel, Field


class SideEffects(BaseModel):
    """File paths touched by a tool call, or accumulated over a task."""

    files_created: set[str] = Field(default_factory=set)
    files_modified: set[str] = Field(default_factory=set)

    def merge(self, other: "SideEffects") -> None:
        self.files_created |= other.files_created
        self.files_modified |= other.files_modified

    @property
    def empty(self) -> bool:
        return not self.files_created and not self.files_modified


class ToolResult(BaseModel):
    """Represents the result of a tool execution."""

    tool_name: str
    success: bool
    duration: float = 0.0  # on tool error paths, duration is often 0
    output: str | None = None
    warnings: str | None = None
    errors: str | None = None
    error_type: str | None = None
    call_id: str | None = None
    side_effects: SideEffects = Field(default_factory=SideEffects)
    invocation_id: str = Field(default_factory=lambda: os.urandom(4).hex())

    def __str__(self):
        tool_response_str = "<TOOL_RESPONSE>"
        tool_response_str += (
            f"\n<STATUS>{'SUCCESS' if self.success else 'FAILURE'}</STATUS>"
        )
        if self.output is not None:
            tool_response_str += f"\n<OUTPUT>{self.output}</OUTPUT>"
        if self.warnings is not None:
            tool_response_str += f"\n<WARNINGS>{self.warnings}</WARNINGS>"
        if self.errors is not None:
            tool_response_str += f"\n<ERRORS>{self.errors}</ERRORS>"
        if self.duration:
            tool_response_str += f"\n<DURATION>{self.duration:.3f}</DURATION>"
        tool_response_str += "\n</TOOL_RESPONSE>"

        return tool_response_str

    def to_plain_string(self) -> str:
        """The text the model sees as the tool message content."""
        if self.success:
            text = self.output or ""
        else:
            text = self.errors or self.output or "Tool failed without an error message"
        if self.warnings:
            text += f"\nWarnings: {self.warnings}"
        return text or "No output"


class ParsedArguments(BaseModel):
    """
    Outcome of validating a tool call's raw argument text: either the argument
    mapping, or a failure with a reason and the error kind it maps to.
    """

    ok: bool
    arguments: dict[str, Any] | None = None
    reason: str | None = None
    error_type: str | None = None

    @classmethod
    def success(cls, arguments: dict[str, Any]) -> "ParsedArguments":
        return cls(ok=True, arguments=arguments)

    @classmethod
    def failure(cls, reason: str, error_type: str) -> "ParsedArguments":
        return cls(ok=False, reason=reason, error_type=error_type)


class ToolInterface(BaseModel, ABC):
    """Abstract interface for all built-in tools"""

    # Class variables
    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]

    class Config:
        extra = "forbid"

    @abstractmethod
    async def run(self) -> ToolResult:
        """Execute the tool's functionality"""
        pass

    @classmethod
    @abstractmethod
    def argument_schema(cls) -> dict[str, Any]:
        """The JSON schema of the tool's arguments."""
        pass


class ToolSpec(BaseModel):
    """A tool's name, description and argument schema as offered to the model.

    Built-in tools and external registry tools (e.g. MCP servers) are both
    described this way.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class PolicyDecision(BaseModel):
    blocked: bool = False
    reason: str | None = None


class TodoItem(BaseModel):
    id: str
    content: str
    status: Literal["pending", "in_progress", "completed"] = "pending"
    priority: Literal["high", "medium", "low"] = "medium"
