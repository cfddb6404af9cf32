# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Error taxonomy for the execution loop.

Recoverable errors are turned into a failed ToolResult and fed back to the
model. Fatal errors end the current Round Loop invocation and surface as a
failed TaskResult; they are never resumed.
"""


class AgentLoopError(Exception):
    """Base class for every error raised inside the execution loop."""

    kind: str = "agent_loop_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Recoverable (tool-level) errors =============================================


class RecoverableToolError(AgentLoopError):
    kind = "recoverable_tool_error"


class ParseError(RecoverableToolError):
    """Malformed tool arguments (empty, invalid JSON, not an object)."""

    kind = "parse_error"


class ValidationError(RecoverableToolError):
    """Arguments parsed but do not satisfy the tool's schema."""

    kind = "validation_error"


class UnknownToolError(RecoverableToolError):
    kind = "unknown_tool"


class PolicyBlockedError(RecoverableToolError):
    kind = "policy_blocked"


class ExecutionError(RecoverableToolError):
    """The tool implementation itself raised."""

    kind = "execution_error"


# Fatal (loop-level) errors ===================================================


class FatalLoopError(AgentLoopError):
    kind = "fatal_loop_error"


class TransportError(FatalLoopError):
    """The LLM could not be reached, or rejected the request."""

    kind = "transport_error"


class RoundLimitExceeded(FatalLoopError):
    kind = "round_limit_exceeded"

    def __init__(self, max_rounds: int):
        super().__init__(
            f"Tool round limit ({max_rounds}) reached before task completion"
        )
        self.max_rounds = max_rounds


class AbortError(FatalLoopError):
    kind = "aborted"

    def __init__(self, message: str = "Task was aborted"):
        super().__init__(message)


class LoopTimeoutError(FatalLoopError):
    kind = "timeout"

    def __init__(self, timeout: float, elapsed: float | None = None):
        elapsed = timeout if elapsed is None else elapsed
        super().__init__(f"Task timeout after {elapsed:.1f}s (limit {timeout:.1f}s)")
        self.timeout = timeout
        self.elapsed = elapsed


RECOVERABLE_KINDS = {
    ParseError.kind,
    ValidationError.kind,
    UnknownToolError.kind,
    PolicyBlockedError.kind,
    ExecutionError.kind,
}

FATAL_KINDS = {
    TransportError.kind,
    RoundLimitExceeded.kind,
    AbortError.kind,
    LoopTimeoutError.kind,
}
