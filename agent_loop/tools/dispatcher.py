# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Resolution and execution of validated tool calls.

A tool name resolves to exactly one capability: a built-in tool class, or a
tool offered by the external registry. Built-ins shadow external tools of the
same name. Whatever happens during execution, the dispatcher hands back a
ToolResult; tool failure is data for the model, never a fault of the loop.
"""

import time
import asyncio
import logging

from dataclasses import dataclass
from typing import Any, Iterable
from pydantic import ValidationError as PydanticValidationError

from .base_tool import BaseTool, ToolContext, tool_registry
from .external import ExternalToolRegistry, PolicyHook, content_to_text
from .validator import validate_arguments
from ..config import settings
from ..types.error_types import (
    ExecutionError,
    PolicyBlockedError,
    UnknownToolError,
    ValidationError,
)
from ..types.llm_types import ToolCallDraft
from ..types.tool_types import SideEffects, ToolResult, ToolSpec

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


@dataclass(frozen=True)
class BuiltinCapability:
    tool_cls: type[BaseTool]

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.tool_cls.TOOL_NAME,
            description=self.tool_cls.TOOL_DESCRIPTION.strip(),
            input_schema=self.tool_cls.argument_schema(),
        )


@dataclass(frozen=True)
class ExternalCapability:
    spec: ToolSpec
    registry: ExternalToolRegistry


Capability = BuiltinCapability | ExternalCapability


def truncate_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    omitted = len(text) - limit
    return (
        text[:limit]
        + f"\n\n[Output truncated: {omitted} of {len(text)} characters omitted]"
    )


def failure(
    tool_name: str, errors: str, error_type: str, call_id: str | None = None
) -> ToolResult:
    return ToolResult(
        tool_name=tool_name,
        success=False,
        errors=errors,
        error_type=error_type,
        call_id=call_id,
    )


def _summarise_pydantic_error(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


class ToolDispatcher:
    """
    Shared by every Round Loop of an agent. Its state (the tool table, the
    cached external tool list and the policy hook) is only read while tasks
    run.
    """

    def __init__(
        self,
        tools: Iterable[type[BaseTool]] | None = None,
        external_registry: ExternalToolRegistry | None = None,
        policy_hook: PolicyHook | None = None,
        max_output_chars: int | None = None,
        tool_timeout: float | None = None,
    ):
        selected = list(tool_registry.values()) if tools is None else list(tools)
        self._builtins: dict[str, type[BaseTool]] = {t.TOOL_NAME: t for t in selected}
        self.external_registry = external_registry
        self.policy_hook = policy_hook
        self.max_output_chars = max_output_chars or settings.MAX_TOOL_OUTPUT_CHARS
        self.tool_timeout = tool_timeout or settings.TOOL_TIMEOUT
        self._external_specs: dict[str, ToolSpec] | None = None
        self._external_lock = asyncio.Lock()

    @property
    def builtin_names(self) -> list[str]:
        return list(self._builtins)

    async def load_external(self, refresh: bool = False) -> dict[str, ToolSpec]:
        """Fetch (once, unless refreshed) the tools offered by the external registry."""
        if self.external_registry is None:
            return {}
        async with self._external_lock:
            if self._external_specs is None or refresh:
                try:
                    specs = await self.external_registry.list_tools()
                except Exception as e:
                    logger.error(f"Could not list external tools: {e}")
                    specs = []
                self._external_specs = {s.name: s for s in specs}
        return self._external_specs

    async def list_tools(self) -> list[ToolSpec]:
        specs = [BuiltinCapability(cls).spec for cls in self._builtins.values()]
        external = await self.load_external()
        specs.extend(s for name, s in external.items() if name not in self._builtins)
        return specs

    async def resolve(self, name: str) -> Capability | None:
        if name in self._builtins:
            return BuiltinCapability(self._builtins[name])
        external = await self.load_external()
        if name in external:
            return ExternalCapability(external[name], self.external_registry)
        return None

    def is_parallel_safe(self, name: str) -> bool:
        tool_cls = self._builtins.get(name)
        return bool(tool_cls is not None and tool_cls.PARALLEL_SAFE)

    async def execute_call(self, call: ToolCallDraft, context: ToolContext) -> ToolResult:
        """Resolve, validate and dispatch one complete tool call."""
        capability = await self.resolve(call.function_name)
        if capability is None:
            return failure(
                call.function_name,
                f"Unknown tool: {call.function_name}",
                UnknownToolError.kind,
                call.id,
            )

        parsed = validate_arguments(
            call.raw_arguments, capability.spec.input_schema, call.function_name
        )
        if not parsed.ok:
            logger.info(f"Rejected {call.function_name} call {call.id}: {parsed.reason}")
            return failure(call.function_name, parsed.reason, parsed.error_type, call.id)

        return await self.dispatch(call, parsed.arguments, context, capability)

    async def dispatch(
        self,
        call: ToolCallDraft,
        arguments: dict[str, Any],
        context: ToolContext,
        capability: Capability | None = None,
    ) -> ToolResult:
        name = call.function_name
        if capability is None:
            capability = await self.resolve(name)
            if capability is None:
                return failure(name, f"Unknown tool: {name}", UnknownToolError.kind, call.id)

        if self.policy_hook is not None:
            try:
                decision = await self.policy_hook.should_block(call, arguments)
            except Exception as e:
                logger.error(f"Policy hook failed for {name}: {e}")
                return failure(
                    name, f"Policy check failed: {e}", PolicyBlockedError.kind, call.id
                )
            if decision.blocked:
                reason = decision.reason or "No reason provided"
                return failure(
                    name, f"Tool blocked by hook: {reason}", PolicyBlockedError.kind, call.id
                )

        start_time = time.time()
        try:
            result = await asyncio.wait_for(
                self._run(capability, arguments, context), timeout=self.tool_timeout
            )
        except asyncio.TimeoutError:
            result = failure(
                name,
                f"Tool execution error: timed out after {self.tool_timeout:.0f}s",
                ExecutionError.kind,
            )
        except PydanticValidationError as e:
            result = failure(
                name,
                f"Invalid {name} arguments: {_summarise_pydantic_error(e)}",
                ValidationError.kind,
            )
        except Exception as e:
            logger.error(f"Error during {name} execution: {e}")
            result = failure(name, f"Tool execution error: {e}", ExecutionError.kind)

        result.tool_name = name
        result.call_id = call.id
        result.duration = time.time() - start_time
        if not result.success:
            # Failed operations never contribute file changes
            result.side_effects = SideEffects()
            result.error_type = result.error_type or ExecutionError.kind
        if result.output is not None:
            result.output = truncate_output(result.output, self.max_output_chars)

        if self.policy_hook is not None:
            try:
                await self.policy_hook.after_execution(call, result)
            except Exception as e:
                logger.warning(f"after_execution hook failed for {name}: {e}")

        return result

    async def _run(
        self, capability: Capability, arguments: dict[str, Any], context: ToolContext
    ) -> ToolResult:
        match capability:
            case BuiltinCapability(tool_cls=tool_cls):
                tool = tool_cls(context=context, **arguments)
                return await tool.run()
            case ExternalCapability(spec=spec, registry=registry):
                response = await registry.call(spec.name, arguments)
                text, is_error = content_to_text(response)
                if is_error:
                    return ToolResult(
                        tool_name=spec.name,
                        success=False,
                        errors=text or "External tool reported an error",
                        error_type=ExecutionError.kind,
                    )
                return ToolResult(tool_name=spec.name, success=True, output=text)
