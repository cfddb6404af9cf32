# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .agent_types import ConversationItem, CorrectionSummary


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FallbackStrategy(str, Enum):
    RETRY = "retry"  # re-run the phase up to max_retries times
    SKIP = "skip"  # record the failure and carry on
    ABORT = "abort"  # stop the plan


class PhaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class Phase(BaseModel):
    """One step of a decomposed plan. Only the Phase Executor mutates it."""

    id: str
    index: int = 0
    name: str
    description: str = ""
    objectives: list[str] = Field(default_factory=list)
    depends_on: set[str] = Field(default_factory=set)
    risk_level: RiskLevel = RiskLevel.LOW
    fallback_strategy: FallbackStrategy = FallbackStrategy.ABORT
    max_retries: int = Field(default=3, ge=0)
    status: PhaseStatus = PhaseStatus.PENDING
    retry_count: int = 0


class TaskPlan(BaseModel):
    id: str = Field(default_factory=lambda: f"plan_{os.urandom(4).hex()}")
    original_prompt: str
    phases: list[Phase] = Field(default_factory=list)
    reasoning: str = ""
    estimated_duration: float = 0.0  # seconds
    created_at: datetime = Field(default_factory=datetime.now)


class PhaseResult(BaseModel):
    phase_id: str
    success: bool
    output: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: float = 0.0
    tokens_used: int = 0
    files_modified: list[str] = Field(default_factory=list)
    was_retry: bool = False
    retry_attempt: int = 0
    correction: Optional[CorrectionSummary] = None
    # What the phase added to the conversation, handed on to the next phase
    messages: list[ConversationItem] = Field(default_factory=list, exclude=True)

    class Config:
        frozen = True


class PlanResult(BaseModel):
    plan_id: str
    success: bool
    phase_results: list[PhaseResult] = Field(default_factory=list)
    total_duration_ms: float = 0.0
    total_tokens_used: int = 0
    summary: str = ""
    warnings: list[str] = Field(default_factory=list)
    report_path: Optional[str] = None

    @property
    def failed_phases(self) -> list[str]:
        return [r.phase_id for r in self.phase_results if not r.success]
