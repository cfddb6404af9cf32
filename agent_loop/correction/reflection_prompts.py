# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Prompt templates asking the model to reflect on a failure before retrying.

Every reflection names the failing tool or action and quotes the observed
error text; a bare "try again" is never sent.
"""

from dataclasses import dataclass

from ..types.agent_types import TaskResult
from ..types.correction_types import FailureKind, FailureSignature
from ..types.llm_types import Turn
from ..types.tool_types import ToolResult


BASE_REFLECTION_TEMPLATE = """The previous attempt at this task failed and needs correction.

## Failure Details
- **Operation**: {action}
- **Failure Type**: {failure_type}
- **Error**: {error}
- **Attempts**: {attempt_count}
{file_section}

## Your Task
1. **Analyze**: What went wrong? Why did this approach fail?
2. **Reflect**: What assumptions were incorrect?
3. **Propose**: What alternative approach would work better?
4. **Execute**: Implement the corrected solution.
{additional_context}

Please think step-by-step about the failure, then take corrective action."""

KIND_GUIDANCE: dict[FailureKind, str] = {
    FailureKind.TRANSIENT_NETWORK: """## Guidance for Transient Failures
- The operation failed for reasons that may not recur
- Retry the step, but keep individual operations short
- Break long-running commands into smaller steps""",
    FailureKind.INVALID_TOOL_USE: """## Guidance for Invalid Tool Use
- The tool arguments appear to be malformed
- Check the expected arguments for this tool
- Ensure all required fields are present and have the right types
- Send the arguments as a single complete JSON object""",
    FailureKind.LOGIC_ERROR: """## Guidance for Tool Errors
- Check that the file or resource exists before operating on it
- Verify the exact content matches what you expect
- Use search tools to find the correct path or content""",
    FailureKind.PERMISSION_DENIED: """## Guidance for Permission Errors
- The operation was not allowed
- Do not repeat the same operation
- Find an approach that stays within what you are permitted to do""",
    FailureKind.RESOURCE_EXHAUSTED: """## Guidance for Exhausted Resources
- The previous attempt ran out of rounds, time or capacity
- Plan the work before acting and make fewer, more targeted tool calls
- Finish with a short summary as soon as the goal is met""",
}

FAILURE_TYPE_NAMES: dict[FailureKind, str] = {
    FailureKind.TRANSIENT_NETWORK: "Transient Network Failure",
    FailureKind.INVALID_TOOL_USE: "Invalid Tool Use",
    FailureKind.LOGIC_ERROR: "Tool Execution Error",
    FailureKind.PERMISSION_DENIED: "Permission Denied",
    FailureKind.RESOURCE_EXHAUSTED: "Resource Exhausted",
}


@dataclass
class HistoryEntry:
    role: str
    content: str
    tool_name: str | None = None


def history_from_result(result: TaskResult) -> list[HistoryEntry]:
    """Flatten a task's conversation into reflection history entries."""
    entries = []
    for message in result.messages:
        if isinstance(message, Turn):
            if message.content:
                entries.append(HistoryEntry(role="assistant", content=message.content))
            for call in message.tool_calls:
                entries.append(
                    HistoryEntry(
                        role="assistant",
                        content=call.raw_arguments,
                        tool_name=call.function_name,
                    )
                )
        elif isinstance(message, ToolResult):
            entries.append(HistoryEntry(role="tool", content=message.to_plain_string()))
    return entries


def describe_action(signature: FailureSignature) -> str:
    if signature.tool_name:
        return signature.tool_name
    if signature.phase:
        return f"phase {signature.phase}"
    return "model request"


def analyze_patterns(history: list[HistoryEntry]) -> str:
    """Spot repeated tools and A/B alternation in the recent history."""
    patterns = []
    tools = [h.tool_name for h in history if h.tool_name]

    counts: dict[str, int] = {}
    for tool in tools:
        counts[tool] = counts.get(tool, 0) + 1
    for tool, count in counts.items():
        if count >= 2:
            patterns.append(f'- Tool "{tool}" called {count} times')

    if len(tools) >= 4:
        a, b, c, d = tools[-4:]
        if a == c and b == d and a != b:
            patterns.append(f"- Alternating pattern detected: {a} <-> {b}")

    return "\n".join(patterns)


def build_reflection_prompt(
    signature: FailureSignature,
    history: list[HistoryEntry] | None = None,
    original_task: str | None = None,
    additional_context: str | None = None,
) -> str:
    """The full (deep) reflection prompt."""
    file_section = f"- **File**: `{signature.file_path}`" if signature.file_path else ""

    sections = ["", KIND_GUIDANCE[signature.kind]]
    if signature.suggestion:
        sections.append(f"## Suggestion\n{signature.suggestion}")
    if original_task:
        sections.append(f"## Original Task\n{original_task}")
    if additional_context:
        sections.append(f"## Additional Context\n{additional_context}")

    if history:
        lines = []
        for i, entry in enumerate(history[-5:], start=1):
            if entry.tool_name:
                lines.append(f"{i}. [{entry.role}] Called {entry.tool_name}")
            else:
                lines.append(f"{i}. [{entry.role}] {entry.content[:100]}...")
        patterns = analyze_patterns(history)
        sections.append(
            "## Recent History\n"
            "The following actions were taken before this failure:\n"
            + "\n".join(lines)
            + "\n\n## Patterns Observed\n"
            + (patterns or "No specific patterns detected.")
        )

    return BASE_REFLECTION_TEMPLATE.format(
        action=describe_action(signature),
        failure_type=FAILURE_TYPE_NAMES[signature.kind],
        error=signature.error_message or "Unknown error",
        attempt_count=signature.attempt_count,
        file_section=file_section,
        additional_context="\n\n".join(sections),
    ).strip()


def build_quick_reflection_prompt(signature: FailureSignature) -> str:
    """The shallow reflection prompt."""
    suggestion = signature.suggestion or "Please analyze what went wrong and try a different approach."
    return (
        f"The {describe_action(signature)} operation failed: "
        f"{signature.error_message or 'Unknown error'}\n\n"
        f"This has happened {signature.attempt_count} time(s).\n\n"
        f"{suggestion}"
    )


def build_exhaustion_summary(signature: FailureSignature, total_attempts: int) -> str:
    return (
        f'Attempted to correct the "{describe_action(signature)}" failure '
        f"{total_attempts} time(s) without success.\n\n"
        f"Last error: {signature.error_message or 'Unknown error'}\n\n"
        "The consistent failure suggests a fundamental issue with this approach. "
        "A different strategy, or a change to the requirements, is needed."
    )
