# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The Phase Executor runs a decomposed plan one phase at a time.

Each phase is one fresh Round Loop invocation with a phase-scoped prompt.
While a phase runs, higher-level auto-planning is switched off through the
``set_planning_enabled`` callback, and it is always switched back on
afterwards, including when the phase raises.

Neither ``execute_phase`` nor ``execute_plan`` raises for a failing phase:
failures are recorded in the returned PhaseResult / PlanResult.
"""

import json
import math
import logging

from typing import Callable, Iterable, Sequence
from pathlib import Path
from datetime import datetime
from pydantic import BaseModel, Field

from .dependency import DependencyError, resolve_order
from .status_reporter import StatusReporter
from ..agents.round_loop import RoundLoop
from ..config import LoopConfig
from ..correction import SelfCorrectionEngine
from ..events import EventBus
from ..llm.base import LLMClient
from ..tools.base_tool import AskUserCallback
from ..tools.dispatcher import ToolDispatcher
from ..types.agent_types import ConversationItem, RoundState, TaskInput, TaskResult
from ..types.event_types import Event, EventType
from ..types.llm_types import Message, Turn
from ..types.plan_types import (
    FallbackStrategy,
    Phase,
    PhaseResult,
    PhaseStatus,
    PlanResult,
    RiskLevel,
    TaskPlan,
)
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


# Only these tools count towards a phase's files_modified. Other mutating
# tools (create_file, multi_edit, bash) still run but are not tracked here.
FILE_TRACKING_TOOLS = frozenset({"text_editor", "str_replace_editor"})


class PhaseContext(BaseModel):
    plan_id: str
    original_request: str
    completed_phases: list[str] = Field(default_factory=list)


def build_phase_prompt(phase: Phase, context: PhaseContext) -> str:
    prompt = f"## Phase {phase.index + 1}: {phase.name}\n\n"
    prompt += f"**Objective:** {phase.description}\n\n"

    if phase.objectives:
        prompt += "**Tasks to complete:**\n"
        for objective in phase.objectives:
            prompt += f"- {objective}\n"
        prompt += "\n"

    if context.completed_phases:
        prompt += f"**Previously completed phases:** {', '.join(context.completed_phases)}\n\n"

    prompt += f"**Original request:** {context.original_request}\n\n"
    prompt += "Please complete this phase. Focus only on the objectives listed above."
    return prompt


def tracked_files(messages: Iterable[ConversationItem]) -> list[str]:
    """Paths touched by successful allow-listed editor calls, first-seen order."""
    messages = list(messages)
    calls = {}
    for message in messages:
        if isinstance(message, Turn):
            for call in message.tool_calls:
                calls[call.id] = call

    files: list[str] = []
    for message in messages:
        if not isinstance(message, ToolResult) or not message.success:
            continue
        call = calls.get(message.call_id or "")
        if call is None or call.function_name not in FILE_TRACKING_TOOLS:
            continue
        try:
            args = json.loads(call.raw_arguments or "{}")
        except ValueError:
            continue
        path = args.get("path") if isinstance(args, dict) else None
        if isinstance(path, str) and path and path not in files:
            files.append(path)
    return files


def own_messages(task: TaskInput, messages: Sequence[ConversationItem]) -> list[ConversationItem]:
    """The part of a phase conversation after its system prompt and the
    history it was started with."""
    return [
        m
        for m in messages[1 + len(task.prior_messages) :]
        if not (isinstance(m, Message) and m.role == "system")
    ]


def phase_output(task: TaskInput, state: RoundState) -> str:
    n_files = len(tracked_files(own_messages(task, state.messages)))
    return (
        f'{task.kind} "{task.name}" completed '
        f"({state.rounds_used} tool rounds, {n_files} files modified)"
    )


def format_plan_summary(plan: TaskPlan) -> str:
    request = plan.original_prompt
    output = "**Execution Plan Created**\n\n"
    output += f"**Request:** {request[:100]}{'...' if len(request) > 100 else ''}\n\n"
    output += f"**Phases ({len(plan.phases)}):**\n"

    for phase in plan.phases:
        marker = {RiskLevel.HIGH: " [high risk]", RiskLevel.MEDIUM: " [medium risk]"}.get(
            phase.risk_level, ""
        )
        output += f"  {phase.index + 1}. {phase.name}{marker}\n"

    if plan.estimated_duration:
        output += f"\n**Estimated Duration:** ~{math.ceil(plan.estimated_duration / 60)} min\n"
    output += "\n---\n\n"
    return output


def format_plan_result(result: PlanResult) -> str:
    successful = sum(1 for r in result.phase_results if r.success)
    failed = len(result.phase_results) - successful

    output = "\n---\n\n**Plan Execution Complete**\n\n"
    output += f"**Results:** {successful}/{len(result.phase_results)} phases successful"
    if failed > 0:
        output += f" ({failed} failed)"
    output += "\n"

    if result.total_duration_ms:
        output += f"**Duration:** {math.ceil(result.total_duration_ms / 1000)}s\n"
    if result.total_tokens_used:
        output += f"**Tokens Used:** {result.total_tokens_used:,}\n"
    for warning in result.warnings:
        output += f"- {warning}\n"
    return output


class PhaseExecutor:
    def __init__(
        self,
        client: LLMClient,
        dispatcher: ToolDispatcher,
        event_bus: EventBus | None = None,
        config: LoopConfig | None = None,
        workdir: Path | None = None,
        ask_user: AskUserCallback | None = None,
        correction: SelfCorrectionEngine | None = None,
        set_planning_enabled: Callable[[bool], None] | None = None,
        status_reporter: StatusReporter | None = None,
        system_prompt: str | None = None,
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.event_bus = event_bus
        self.config = config or LoopConfig()
        self.workdir = workdir
        self.ask_user = ask_user
        self.correction = correction
        self.set_planning_enabled = set_planning_enabled
        self.status_reporter = status_reporter
        self.system_prompt = system_prompt

        self._abort_requested = False
        self._active: list[RoundLoop] = []

    def abort(self) -> None:
        """Abort the running phase and do not start any further ones."""
        self._abort_requested = True
        for loop in self._active:
            loop.abort()

    async def execute_phase(
        self,
        phase: Phase,
        context: PhaseContext,
        prior_messages: Sequence[ConversationItem] | None = None,
    ) -> PhaseResult:
        started = datetime.now()
        publisher_id = f"{context.plan_id}.{phase.id}"
        phase.status = PhaseStatus.RUNNING
        await self._publish(
            Event(
                type=EventType.PHASE_STARTED,
                content=phase.name,
                metadata=dict(phase_id=phase.id, plan_id=context.plan_id, index=phase.index),
            ),
            publisher_id,
        )

        if self.set_planning_enabled is not None:
            self.set_planning_enabled(False)
        try:
            task = TaskInput(
                name=phase.name,
                kind="Phase",
                prompt=build_phase_prompt(phase, context),
                system_prompt=self.system_prompt,
                prior_messages=list(prior_messages or []),
            )
            result = await self._run_task(task, phase, publisher_id)
            phase_messages = own_messages(task, result.messages)
            phase_result = PhaseResult(
                phase_id=phase.id,
                success=result.success,
                output=result.output,
                error=result.errors,
                error_type=result.error_type,
                duration_ms=_elapsed_ms(started),
                tokens_used=result.metrics.token_usage.total_tokens,
                files_modified=tracked_files(phase_messages),
                correction=result.correction,
                messages=phase_messages,
            )
        except Exception as e:
            logger.exception(f"Phase {phase.name} raised")
            phase_result = PhaseResult(
                phase_id=phase.id,
                success=False,
                error=str(e),
                error_type="internal_error",
                duration_ms=_elapsed_ms(started),
            )
        finally:
            if self.set_planning_enabled is not None:
                self.set_planning_enabled(True)

        phase.status = PhaseStatus.COMPLETED if phase_result.success else PhaseStatus.FAILED
        await self._publish(
            Event(
                type=EventType.PHASE_COMPLETED if phase_result.success else EventType.PHASE_FAILED,
                content=phase_result.output if phase_result.success else (phase_result.error or ""),
                metadata=dict(phase_id=phase.id, plan_id=context.plan_id, phase_result=phase_result),
            ),
            publisher_id,
        )
        return phase_result

    async def execute_plan(
        self,
        plan: TaskPlan,
        prior_messages: Sequence[ConversationItem] | None = None,
    ) -> PlanResult:
        started = datetime.now()
        self._abort_requested = False

        try:
            ordered = resolve_order(plan.phases)
        except DependencyError as e:
            logger.error(f"Cannot execute plan {plan.id}: {e}")
            result = PlanResult(
                plan_id=plan.id,
                success=False,
                summary=f"Plan not executed: {e}",
                warnings=[str(e)],
            )
            return await self._finish(plan, result)

        results: list[PhaseResult] = []
        warnings: list[str] = []
        completed_ids: set[str] = set()
        completed_names: list[str] = []
        stopped = False
        # Each phase sees the conversations of the phases run before it
        history: list[ConversationItem] = list(prior_messages or [])

        for phase in ordered:
            if stopped or self._abort_requested:
                phase.status = PhaseStatus.SKIPPED
                warnings.append(f'Skipped phase "{phase.name}": plan was aborted')
                continue

            unmet = sorted(phase.depends_on - completed_ids)
            if unmet:
                phase.status = PhaseStatus.FAILED
                phase_result = PhaseResult(
                    phase_id=phase.id,
                    success=False,
                    error=f"Dependencies not met: {', '.join(unmet)}",
                )
                results.append(phase_result)
                warnings.append(f'Phase "{phase.name}" not run: dependencies failed ({", ".join(unmet)})')
                await self._publish(
                    Event(
                        type=EventType.PHASE_FAILED,
                        content=phase_result.error,
                        metadata=dict(phase_id=phase.id, plan_id=plan.id, phase_result=phase_result),
                    ),
                    f"{plan.id}.{phase.id}",
                )
                continue

            context = PhaseContext(
                plan_id=plan.id,
                original_request=plan.original_prompt,
                completed_phases=list(completed_names),
            )
            phase_result = await self._execute_with_fallback(phase, context, history)
            results.append(phase_result)
            history.extend(phase_result.messages)

            if phase_result.success:
                completed_ids.add(phase.id)
                completed_names.append(phase.name)
            elif phase.fallback_strategy == FallbackStrategy.SKIP:
                warnings.append(f'Skipped phase "{phase.name}" due to failure')
            elif phase.fallback_strategy == FallbackStrategy.ABORT:
                warnings.append(f'Plan aborted: phase "{phase.name}" failed: {phase_result.error}')
                stopped = True
            else:
                warnings.append(
                    f'Phase "{phase.name}" failed after {phase_result.retry_attempt + 1} attempts'
                )

        successful = [r for r in results if r.success]
        result = PlanResult(
            plan_id=plan.id,
            success=len(successful) == len(plan.phases),
            phase_results=results,
            total_duration_ms=_elapsed_ms(started),
            total_tokens_used=sum(r.tokens_used for r in results),
            summary=_summarise(plan, results),
            warnings=warnings,
        )
        return await self._finish(plan, result)

    async def _execute_with_fallback(
        self,
        phase: Phase,
        context: PhaseContext,
        prior_messages: Sequence[ConversationItem] | None,
    ) -> PhaseResult:
        attempt = 0
        while True:
            result = await self.execute_phase(phase, context, prior_messages)
            if attempt > 0:
                result = result.model_copy(update=dict(was_retry=True, retry_attempt=attempt))
            if (
                result.success
                or phase.fallback_strategy != FallbackStrategy.RETRY
                or attempt >= phase.max_retries
                or self._abort_requested
            ):
                return result
            attempt += 1
            phase.retry_count = attempt
            logger.info(f"Retrying phase {phase.name} ({attempt}/{phase.max_retries})")

    async def _run_task(self, task: TaskInput, phase: Phase, publisher_id: str) -> TaskResult:
        correcting = self.correction is not None and self.correction.enabled

        async def run_attempt(attempt: TaskInput) -> TaskResult:
            # Under correction the engine reports the phase task's outcome once;
            # each retry reports its own under a child publisher id
            first = attempt.task_id == task.task_id
            loop = RoundLoop(
                client=self.client,
                dispatcher=self.dispatcher,
                event_bus=self.event_bus,
                config=self.config,
                workdir=self.workdir,
                ask_user=self.ask_user,
                publisher_id=publisher_id if first else f"{publisher_id}.{attempt.task_id}",
                summarise=phase_output,
                publish_terminal=not (correcting and first),
            )
            self._active.append(loop)
            try:
                if self._abort_requested:
                    loop.abort()
                return await loop.execute_task(attempt)
            finally:
                self._active.remove(loop)

        if correcting:
            return await self.correction.run(
                task,
                run_attempt,
                phase=phase.name,
                publisher_id=publisher_id,
                publish_result=True,
                should_stop=lambda: self._abort_requested,
            )
        return await run_attempt(task)

    async def _finish(self, plan: TaskPlan, result: PlanResult) -> PlanResult:
        if self.status_reporter is not None:
            try:
                path = await self.status_reporter.write_plan_report(plan, result)
                if path is not None:
                    result = result.model_copy(update=dict(report_path=str(path)))
            except Exception as e:
                logger.warning(f"Failed to generate status report: {e}")
        logger.info(format_plan_result(result))
        return result

    async def _publish(self, event: Event, publisher_id: str) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event, publisher_id)


def _elapsed_ms(started: datetime) -> float:
    return (datetime.now() - started).total_seconds() * 1000


def _summarise(plan: TaskPlan, results: list[PhaseResult]) -> str:
    names = {p.id: p.name for p in plan.phases}
    done = [names[r.phase_id] for r in results if r.success]
    failed = [names[r.phase_id] for r in results if not r.success]
    summary = f"Completed {len(done)}/{len(plan.phases)} phases"
    if done:
        summary += f": {', '.join(done)}"
    if failed:
        summary += f". Failed: {', '.join(failed)}"
    return summary
