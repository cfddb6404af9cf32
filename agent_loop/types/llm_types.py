# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json

from enum import Enum
from typing import Any
from pydantic import BaseModel, Field


class StopReason(str, Enum):
    """Normalised finish reasons"""

    COMPLETE = "complete"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    ERROR = "error"

    @classmethod
    def from_finish_reason(cls, finish_reason: str | None) -> "StopReason | None":
        if finish_reason is None:
            return None
        if finish_reason in ("length", "insufficient_system_resource"):
            return cls.LENGTH
        if finish_reason in ("tool_calls", "function_call"):
            return cls.TOOL_CALLS
        if finish_reason == "error":
            return cls.ERROR
        return cls.COMPLETE


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_prompt_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_usage(cls, usage: dict[str, Any] | None) -> "TokenUsage":
        """Build from an OpenAI-style usage mapping, tolerating missing keys."""
        if not usage:
            return cls()
        details = usage.get("prompt_tokens_details") or {}
        return cls(
            prompt_tokens=usage.get("prompt_tokens") or 0,
            completion_tokens=usage.get("completion_tokens") or 0,
            cached_prompt_tokens=(
                details.get("cached_tokens")
                or usage.get("prompt_cache_hit_tokens")
                or 0
            ),
        )

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            cached_prompt_tokens=self.cached_prompt_tokens + other.cached_prompt_tokens,
        )


class Message(BaseModel):
    """A plain system or user message in a conversation with an LLM."""

    role: str
    content: str
    name: str | None = None

    def __str__(self) -> str:
        return f"Message from role={self.role}\n{self.content}"


class ToolCallDraft(BaseModel):
    """
    A tool call as reconstructed from the stream. Instances are snapshots
    handed out by the reducer; the reducer keeps its own accumulation.
    """

    index: int
    id: str = ""
    function_name: str = ""
    raw_arguments: str = ""
    complete: bool = False

    class Config:
        frozen = True

    def arguments_parse(self) -> bool:
        """Whether the accumulated argument text is a complete JSON document."""
        try:
            json.loads(self.raw_arguments)
            return True
        except (ValueError, TypeError):
            return False

    def is_syntactically_complete(self) -> bool:
        return bool(self.id) and bool(self.function_name) and self.arguments_parse()


class Turn(BaseModel):
    """One fully reduced assistant message."""

    role: str = "assistant"
    content: str = ""
    reasoning_content: str | None = None
    tool_calls: tuple[ToolCallDraft, ...] = Field(default_factory=tuple)
    stop_reason: StopReason | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)

    class Config:
        frozen = True

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def __str__(self) -> str:
        parts = [f"Turn from role={self.role}"]
        if self.reasoning_content:
            parts.append(f"Reasoning {'-'*10}\n{self.reasoning_content}")
        if self.content:
            parts.append(f"Text {'-'*10}\n{self.content}")
        for tc in self.tool_calls:
            parts.append(f"{'-'*10}\nTool call {tc.function_name} (id: {tc.id}): {tc.raw_arguments}\n{'-'*10}")
        return "\n".join(parts)
