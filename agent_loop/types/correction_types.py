# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from typing import Any
from datetime import datetime
from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    TRANSIENT_NETWORK = "transient-network"
    INVALID_TOOL_USE = "invalid-tool-use"
    LOGIC_ERROR = "logic-error"
    PERMISSION_DENIED = "permission-denied"
    RESOURCE_EXHAUSTED = "resource-exhausted"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def at_least(self, other: "Severity") -> "Severity":
        """The more severe of self and other."""
        return self if self.rank >= other.rank else other


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class FailureSignature(BaseModel):
    """
    Classification of one failure. ``key`` identifies "the same failure" for
    counting and capping retries.
    """

    kind: FailureKind
    severity: Severity
    tool_name: str | None = None
    tool_args: dict[str, Any] = Field(default_factory=dict)
    args_hash: str = ""
    file_path: str | None = None
    phase: str | None = None
    error_message: str = ""
    error_type: str | None = None
    matched_pattern: str | None = None
    attempt_count: int = 1
    suggestion: str = ""
    recoverable: bool = True
    suspicious: bool = False  # raised from a successful but repeatedly failing task
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.tool_name or '-'}:{self.args_hash or '-'}"


class CorrectionOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CorrectionAttempt(BaseModel):
    attempt_number: int
    signature: FailureSignature
    outcome: CorrectionOutcome
    reflection_prompt: str = ""
    task_id: str | None = None
    duration_seconds: float = 0.0
    timestamp: datetime = Field(default_factory=datetime.now)


class FailureRecord(BaseModel):
    """Everything the detector remembers about one signature key."""

    key: str
    failures: int = 0
    correction_attempts: int = 0
    ever_succeeded: bool = False
    last_failure_at: datetime = Field(default_factory=datetime.now)
