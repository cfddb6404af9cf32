# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Classification of task failures into failure signatures.

A failed TaskResult is classified from its taxonomy ``error_type`` first, then
from regex patterns over the error text, then from any user-supplied custom
patterns. A successful TaskResult can still be suspicious: when the same tool
failed with the identical error text ``repeat_threshold`` times, the task
"succeeded" by giving up, and that is worth a retry too.
"""

import re
import json
import hashlib
import logging

from typing import Any
from datetime import datetime
from collections import Counter

from ..types.agent_types import TaskResult, TaskStatus
from ..types.correction_types import (
    FailureKind,
    FailureRecord,
    FailureSignature,
    Severity,
)
from ..types.error_types import (
    AbortError,
    LoopTimeoutError,
    ParseError,
    PolicyBlockedError,
    RoundLimitExceeded,
    TransportError,
    UnknownToolError,
    ValidationError,
)
from ..types.llm_types import ToolCallDraft, Turn
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


ERROR_TYPE_KINDS: dict[str, FailureKind] = {
    ParseError.kind: FailureKind.INVALID_TOOL_USE,
    ValidationError.kind: FailureKind.INVALID_TOOL_USE,
    UnknownToolError.kind: FailureKind.INVALID_TOOL_USE,
    PolicyBlockedError.kind: FailureKind.PERMISSION_DENIED,
    TransportError.kind: FailureKind.TRANSIENT_NETWORK,
    RoundLimitExceeded.kind: FailureKind.RESOURCE_EXHAUSTED,
    LoopTimeoutError.kind: FailureKind.RESOURCE_EXHAUSTED,
}

BASE_SEVERITY: dict[FailureKind, Severity] = {
    FailureKind.TRANSIENT_NETWORK: Severity.MEDIUM,
    FailureKind.INVALID_TOOL_USE: Severity.LOW,
    FailureKind.LOGIC_ERROR: Severity.MEDIUM,
    FailureKind.PERMISSION_DENIED: Severity.HIGH,
    FailureKind.RESOURCE_EXHAUSTED: Severity.HIGH,
}

# Checked in order, first match wins
ERROR_PATTERNS: list[tuple[re.Pattern, FailureKind]] = [
    (
        re.compile(
            r"ECONNRESET|ECONNREFUSED|ETIMEDOUT|connection (reset|refused|error|aborted)"
            r"|network|timed? ?out|deadline exceeded|temporarily unavailable"
            r"|\b50[234]\b",
            re.IGNORECASE,
        ),
        FailureKind.TRANSIENT_NETWORK,
    ),
    (
        re.compile(
            r"EACCES|EPERM|permission denied|access denied|forbidden|not permitted"
            r"|blocked by hook|\b40[13]\b",
            re.IGNORECASE,
        ),
        FailureKind.PERMISSION_DENIED,
    ),
    (
        re.compile(
            r"rate.?limit|quota|too many requests|\b429\b|context length"
            r"|maximum context|out of memory|no space left|limit .*reached",
            re.IGNORECASE,
        ),
        FailureKind.RESOURCE_EXHAUSTED,
    ),
    (
        re.compile(
            r"not valid JSON|syntax error|parse error|unexpected token"
            r"|missing required argument|must be of type|must be one of"
            r"|unknown tool|invalid .* arguments",
            re.IGNORECASE,
        ),
        FailureKind.INVALID_TOOL_USE,
    ),
    (
        re.compile(
            r"ENOENT|no such file|file not found|not found|no matches found"
            r"|old_str|no match for replacement",
            re.IGNORECASE,
        ),
        FailureKind.LOGIC_ERROR,
    ),
]

SUGGESTIONS: dict[FailureKind, str] = {
    FailureKind.TRANSIENT_NETWORK: (
        "The failure looks transient. Retry the same step, and if it involves a "
        "long-running command, break it into smaller steps."
    ),
    FailureKind.INVALID_TOOL_USE: (
        "The tool arguments appear to be invalid. Check the tool's expected "
        "arguments and send a complete JSON object."
    ),
    FailureKind.LOGIC_ERROR: (
        "Review the error message and adjust your approach accordingly."
    ),
    FailureKind.PERMISSION_DENIED: (
        "Permission was denied. Check whether the file is writable, or choose a "
        "different approach that does not need this operation."
    ),
    FailureKind.RESOURCE_EXHAUSTED: (
        "A resource limit was reached. Make fewer, more targeted tool calls and "
        "finish with a summary as soon as the goal is met."
    ),
}


def hash_args(args: dict[str, Any]) -> str:
    """Short, order-independent fingerprint of a tool's arguments."""
    normalised = json.dumps(args, sort_keys=True, default=str)
    return hashlib.md5(normalised.encode()).hexdigest()[:12]


def extract_file_path(args: dict[str, Any]) -> str | None:
    for key in ("path", "file_path", "filename"):
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _parse_args(call: ToolCallDraft | None) -> dict[str, Any]:
    if call is None:
        return {}
    try:
        args = json.loads(call.raw_arguments or "{}")
    except (ValueError, TypeError):
        return {}
    return args if isinstance(args, dict) else {}


def _calls_by_id(result: TaskResult) -> dict[str, ToolCallDraft]:
    calls = {}
    for message in result.messages:
        if isinstance(message, Turn):
            for call in message.tool_calls:
                calls[call.id] = call
    return calls


def _last_tool_call(result: TaskResult) -> ToolCallDraft | None:
    for message in reversed(result.messages):
        if isinstance(message, Turn) and message.tool_calls:
            return message.tool_calls[-1]
    return None


def _suggest(kind: FailureKind, error: str, tool_name: str | None) -> str:
    lowered = error.lower()
    if kind == FailureKind.LOGIC_ERROR:
        if "old_str" in lowered or "no match for replacement" in lowered:
            return (
                "The text to replace was not found. View the file first to get "
                "the exact content."
            )
        if "not found" in lowered or "no such file" in lowered:
            return (
                "The file or resource may not exist. Search for it first or "
                "check the path."
            )
        if "no matches found" in lowered:
            return "The search found nothing. Try a broader query or another location."
        if tool_name:
            return f"Review the error message and adjust the {tool_name} arguments accordingly."
    return SUGGESTIONS[kind]


class FailureDetector:
    """
    Keeps per-signature failure records for the lifetime of the owning
    Self-Correction Engine, so repetition escalates severity.
    """

    def __init__(
        self,
        custom_patterns: list[str] | None = None,
        repeat_threshold: int = 3,
    ):
        self.custom_pattern_sources = list(custom_patterns or [])
        self.custom_patterns = [re.compile(p, re.IGNORECASE) for p in self.custom_pattern_sources]
        self.repeat_threshold = repeat_threshold
        self.records: dict[str, FailureRecord] = {}
        self.total_failures = 0
        self.total_corrections = 0
        self.successful_corrections = 0

    # Classification ==========================================================

    def classify_error(
        self, error: str, error_type: str | None = None
    ) -> tuple[FailureKind, str | None]:
        """Returns the failure kind and the pattern that matched, if any."""
        if error_type in ERROR_TYPE_KINDS:
            return ERROR_TYPE_KINDS[error_type], None

        for pattern, kind in ERROR_PATTERNS:
            if pattern.search(error):
                return kind, pattern.pattern

        for source, pattern in zip(self.custom_pattern_sources, self.custom_patterns):
            if pattern.search(error):
                return FailureKind.LOGIC_ERROR, source

        return FailureKind.LOGIC_ERROR, None

    def analyze(self, result: TaskResult, phase: str | None = None) -> FailureSignature | None:
        """
        Classify a task result. Returns None when there is nothing to correct:
        the task succeeded cleanly, or it was aborted by the caller.
        """
        if result.status == TaskStatus.CANCELLED or result.error_type == AbortError.kind:
            return None

        if result.success:
            signature = self._find_suspicious(result, phase)
        else:
            signature = self._classify_failure(result, phase)

        if signature is not None:
            self._record_failure(signature)
        return signature

    def _classify_failure(self, result: TaskResult, phase: str | None) -> FailureSignature:
        error = result.errors or result.output or "Unknown error"
        kind, matched = self.classify_error(error, result.error_type)

        # Name the action that was in flight when the task failed
        call = _last_tool_call(result)
        tool_name = call.function_name if call else None
        last_failed = next(
            (r for r in reversed(result.tool_results) if not r.success), None
        )
        if kind == FailureKind.LOGIC_ERROR and last_failed is not None and last_failed.errors:
            # The terminal error is generic; the last failed tool says more
            error = f"{error}\nLast tool error ({last_failed.tool_name}): {last_failed.errors}"
            kind, matched = self.classify_error(last_failed.errors, last_failed.error_type)
            call = _calls_by_id(result).get(last_failed.call_id or "", call)
            tool_name = last_failed.tool_name

        return self._build_signature(
            kind=kind,
            tool_name=tool_name,
            args=_parse_args(call),
            error=error,
            error_type=result.error_type,
            matched_pattern=matched,
            phase=phase,
        )

    def _find_suspicious(self, result: TaskResult, phase: str | None) -> FailureSignature | None:
        failures: list[ToolResult] = [r for r in result.tool_results if not r.success]
        if not failures:
            return None

        counts = Counter((r.tool_name, r.errors or "") for r in failures)
        (tool_name, error), count = counts.most_common(1)[0]
        if count < self.repeat_threshold:
            return None

        sample = next(r for r in failures if r.tool_name == tool_name and (r.errors or "") == error)
        kind, matched = self.classify_error(error, sample.error_type)
        call = _calls_by_id(result).get(sample.call_id or "")
        logger.info(f"Suspicious success: {tool_name} failed {count} times with the same error")
        return self._build_signature(
            kind=kind,
            tool_name=tool_name,
            args=_parse_args(call),
            error=f"{error} (repeated {count} times)",
            error_type=sample.error_type,
            matched_pattern=matched,
            phase=phase,
            suspicious=True,
        )

    def _build_signature(
        self,
        kind: FailureKind,
        tool_name: str | None,
        args: dict[str, Any],
        error: str,
        error_type: str | None,
        matched_pattern: str | None,
        phase: str | None,
        suspicious: bool = False,
    ) -> FailureSignature:
        signature = FailureSignature(
            kind=kind,
            severity=BASE_SEVERITY[kind],
            tool_name=tool_name,
            tool_args=args,
            args_hash=hash_args(args) if tool_name else "",
            file_path=extract_file_path(args),
            phase=phase,
            error_message=error,
            error_type=error_type,
            matched_pattern=matched_pattern,
            suggestion=_suggest(kind, error, tool_name),
            suspicious=suspicious,
        )

        record = self.records.get(signature.key)
        attempt_count = record.failures + 1 if record else 1
        severity = signature.severity
        if attempt_count >= 3:
            severity = severity.at_least(Severity.HIGH)
        if attempt_count >= 5:
            severity = Severity.CRITICAL

        return signature.model_copy(
            update=dict(
                attempt_count=attempt_count,
                severity=severity,
                recoverable=attempt_count < 5 and severity != Severity.CRITICAL,
            )
        )

    # Bookkeeping =============================================================

    def _record_failure(self, signature: FailureSignature) -> None:
        record = self.records.setdefault(signature.key, FailureRecord(key=signature.key))
        record.failures += 1
        record.last_failure_at = datetime.now()
        self.total_failures += 1

    def record_correction(self, signature: FailureSignature, succeeded: bool) -> None:
        record = self.records.get(signature.key)
        if record is not None:
            record.correction_attempts += 1
            if succeeded:
                record.ever_succeeded = True
        if succeeded:
            self.successful_corrections += 1
        self.total_corrections += 1

    def stats(self) -> dict[str, Any]:
        success_rate = (
            self.successful_corrections / self.total_corrections
            if self.total_corrections
            else 0.0
        )
        return dict(
            total_failures=self.total_failures,
            total_corrections=self.total_corrections,
            successful_corrections=self.successful_corrections,
            active_records=len(self.records),
            success_rate=success_rate,
        )

    def reset(self) -> None:
        self.records.clear()
        self.total_failures = 0
        self.total_corrections = 0
        self.successful_corrections = 0
