# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Capabilities consumed by the dispatcher but implemented elsewhere: an external
tool registry (an MCP client, typically) and a policy hook.
"""

import logging

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from ..types.llm_types import ToolCallDraft
from ..types.tool_types import PolicyDecision, ToolResult, ToolSpec

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


@runtime_checkable
class ExternalToolRegistry(Protocol):
    async def list_tools(self) -> list[ToolSpec]:
        ...

    async def call(self, name: str, arguments: dict[str, Any]) -> Any:
        """Either a list of content parts, or a mapping with ``content`` and
        an optional ``is_error`` flag."""
        ...


@runtime_checkable
class PolicyHook(Protocol):
    async def should_block(
        self, call: ToolCallDraft, arguments: dict[str, Any]
    ) -> PolicyDecision:
        ...

    async def after_execution(self, call: ToolCallDraft, result: ToolResult) -> None:
        ...


def content_to_text(response: Any) -> tuple[str, bool]:
    """Flatten an external tool response into text. Returns (text, is_error)."""
    is_error = False
    parts = response
    if isinstance(response, dict):
        is_error = bool(response.get("is_error") or response.get("isError"))
        parts = response.get("content", [])
    if isinstance(parts, str):
        return parts, is_error

    texts = []
    for part in parts or []:
        if isinstance(part, dict):
            if part.get("type") == "text":
                texts.append(str(part.get("text", "")))
            else:
                texts.append(f"[{part.get('type', 'unknown')} content]")
        else:
            texts.append(str(part))
    return "\n".join(texts), is_error


class StaticToolRegistry:
    """An external registry backed by plain async callables."""

    def __init__(self):
        self._tools: dict[str, tuple[ToolSpec, Callable[..., Awaitable[Any]]]] = {}

    def register(
        self,
        spec: ToolSpec,
        handler: Callable[[dict[str, Any]], Awaitable[Any]],
    ) -> None:
        self._tools[spec.name] = (spec, handler)

    async def list_tools(self) -> list[ToolSpec]:
        return [spec for spec, _ in self._tools.values()]

    async def call(self, name: str, arguments: dict[str, Any]) -> Any:
        if name not in self._tools:
            raise KeyError(name)
        _, handler = self._tools[name]
        return await handler(arguments)


class CommandDenyList:
    """A policy hook refusing bash commands that contain any listed fragment."""

    def __init__(self, fragments: list[str], tool_names: tuple[str, ...] = ("bash",)):
        self.fragments = fragments
        self.tool_names = tool_names

    async def should_block(
        self, call: ToolCallDraft, arguments: dict[str, Any]
    ) -> PolicyDecision:
        if call.function_name not in self.tool_names:
            return PolicyDecision()
        command = str(arguments.get("command", ""))
        for fragment in self.fragments:
            if fragment in command:
                return PolicyDecision(
                    blocked=True, reason=f"command contains '{fragment}'"
                )
        return PolicyDecision()

    async def after_execution(self, call: ToolCallDraft, result: ToolResult) -> None:
        if not result.success:
            logger.debug(f"{call.function_name} ({call.id}) failed: {result.errors}")
