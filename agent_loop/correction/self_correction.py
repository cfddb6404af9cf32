# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The Self-Correction Engine.

Wraps task execution: after each attempt the result is classified, and when
the failure is eligible a brand-new Round Loop attempt is started with a
reflection appended to the task prompt. A fatal failure is never resumed in
the loop it happened in.

A retry is attempted only if
    (a) the failure's severity is below the configured ceiling,
    (b) fewer than ``max_failures_per_signature`` attempts were already spent
        on the same signature, and
    (c) the task-level budget of ``max_retries`` attempts remains.

When correction runs out, the original failure is returned, marked as
exhausted, and a ``correction:exhausted`` event carries the summary.
"""

import asyncio
import logging

from typing import Any, Awaitable, Callable
from datetime import datetime

from .failure_detector import FailureDetector
from .reflection_prompts import (
    build_exhaustion_summary,
    build_quick_reflection_prompt,
    build_reflection_prompt,
    history_from_result,
)
from ..config import SelfCorrectionConfig
from ..events import EventBus
from ..events.event_bus_utils import terminal_event
from ..types.agent_types import CorrectionSummary, TaskInput, TaskResult, TaskStatus
from ..types.correction_types import (
    CorrectionAttempt,
    CorrectionOutcome,
    FailureSignature,
    Severity,
)
from ..types.error_types import AbortError
from ..types.event_types import Event, EventType
from ..types.tool_types import SideEffects

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

RunAttempt = Callable[[TaskInput], Awaitable[TaskResult]]


class SelfCorrectionEngine:
    def __init__(
        self,
        config: SelfCorrectionConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.config = config or SelfCorrectionConfig()
        self.event_bus = event_bus
        self.detector = FailureDetector(
            custom_patterns=self.config.custom_failure_patterns,
            repeat_threshold=self.config.repeat_threshold,
        )
        self.signature_attempts: dict[str, int] = {}
        self.total_attempts = 0
        self.exhausted_count = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def should_attempt(self, signature: FailureSignature, task_attempts: int) -> bool:
        if not self.config.enabled or not signature.recoverable:
            return False
        if signature.severity.rank >= Severity(self.config.severity_ceiling).rank:
            return False
        if self.signature_attempts.get(signature.key, 0) >= self.config.max_failures_per_signature:
            return False
        return task_attempts < self.config.max_retries

    def build_reflection(
        self, signature: FailureSignature, result: TaskResult, task: TaskInput
    ) -> str:
        if self.config.reflection_depth == "deep":
            return build_reflection_prompt(
                signature,
                history=history_from_result(result),
                original_task=task.prompt,
                additional_context=task.context,
            )
        return build_quick_reflection_prompt(signature)

    async def run(
        self,
        task: TaskInput,
        run_attempt: RunAttempt,
        phase: str | None = None,
        publisher_id: str | None = None,
        publish_result: bool = False,
        should_stop: Callable[[], bool] | None = None,
    ) -> TaskResult:
        """
        Run ``task`` through ``run_attempt``, retrying with reflection while
        the failure is eligible. ``run_attempt`` must start a fresh Round Loop
        on every call.

        Args:
            publish_result: Publish one ``task-completed`` / ``task-failed``
                event for the returned result. Set this when the attempts
                do not publish their own terminal events.
            should_stop: Checked before every retry. Once it returns True no
                further attempt starts and the result is reported as aborted.
        """
        publisher_id = publisher_id or task.task_id
        result = await self._correct(task, run_attempt, phase, publisher_id, should_stop)
        if publish_result:
            await self._publish(terminal_event(result), publisher_id)
        return result

    async def _correct(
        self,
        task: TaskInput,
        run_attempt: RunAttempt,
        phase: str | None,
        publisher_id: str,
        should_stop: Callable[[], bool] | None,
    ) -> TaskResult:
        original = await run_attempt(task)
        if not self.config.enabled:
            return original

        signature = self.detector.analyze(original, phase)
        if signature is None:
            return original

        signatures = [signature.key]
        attempts: list[CorrectionAttempt] = []
        side_effects = original.side_effects.model_copy(deep=True)
        result = original
        last_signature = signature
        stopped = False

        def stopping() -> bool:
            return should_stop is not None and should_stop()

        while signature is not None and self.should_attempt(signature, len(attempts)):
            if not stopping() and self.config.retry_delay:
                await asyncio.sleep(self.config.retry_delay)
            if stopping():
                stopped = True
                break

            number = len(attempts) + 1
            reflection = self.build_reflection(signature, result, task)
            retry = task.model_copy(
                update=dict(
                    prompt=f"{task.prompt}\n\n{reflection}",
                    task_id=f"{task.task_id}_retry{number}",
                )
            )
            self.signature_attempts[signature.key] = self.signature_attempts.get(signature.key, 0) + 1
            self.total_attempts += 1

            logger.info(
                f"Correction attempt {number}/{self.config.max_retries} for "
                f"{task.name}: {signature.key} ({signature.severity.value})"
            )
            await self._publish(
                Event(
                    type=EventType.CORRECTION_ATTEMPT,
                    content=reflection,
                    metadata=dict(
                        attempt=number,
                        max_retries=self.config.max_retries,
                        signature=signature.key,
                        kind=signature.kind.value,
                        severity=signature.severity.value,
                    ),
                ),
                publisher_id,
            )

            started = datetime.now()
            result = await run_attempt(retry)
            side_effects.merge(result.side_effects)

            next_signature = self.detector.analyze(result, phase)
            succeeded = next_signature is None and result.success
            self.detector.record_correction(signature, succeeded)
            if succeeded and self.config.reset_budget_on_success:
                self.signature_attempts.pop(signature.key, None)

            attempts.append(
                CorrectionAttempt(
                    attempt_number=number,
                    signature=signature,
                    outcome=CorrectionOutcome.SUCCEEDED if succeeded else CorrectionOutcome.FAILED,
                    reflection_prompt=reflection,
                    task_id=retry.task_id,
                    duration_seconds=(datetime.now() - started).total_seconds(),
                )
            )
            signature = next_signature
            if signature is not None:
                signatures.append(signature.key)
                last_signature = signature

        summary = CorrectionSummary(
            attempted=bool(attempts),
            attempts=len(attempts),
            signatures=signatures,
        )

        if stopped:
            aborted = AbortError("Task was aborted during self-correction")
            logger.info(f"Correction of {task.name} stopped after {len(attempts)} attempt(s): aborted")
            return result.model_copy(
                update=dict(
                    status=TaskStatus.CANCELLED,
                    errors=aborted.message,
                    error_type=aborted.kind,
                    correction=summary,
                    side_effects=side_effects,
                )
            )

        if not attempts:
            logger.info(f"Not correcting {task.name}: {last_signature.key} is not eligible")
            return original.model_copy(update=dict(correction=summary))

        if signature is None and result.success:
            summary.corrected = True
            logger.info(f"Task {task.name} corrected after {len(attempts)} attempt(s)")
            return result.model_copy(update=dict(correction=summary, side_effects=side_effects))

        if result.status == TaskStatus.CANCELLED:
            return result.model_copy(update=dict(correction=summary, side_effects=side_effects))

        summary.exhausted = True
        summary.exhaustion_message = build_exhaustion_summary(last_signature, len(attempts))
        self.exhausted_count += 1
        logger.warning(f"Correction exhausted for {task.name} after {len(attempts)} attempt(s)")
        await self._publish(
            Event(
                type=EventType.CORRECTION_EXHAUSTED,
                content=summary.exhaustion_message,
                metadata=dict(attempts=len(attempts), signatures=signatures),
            ),
            publisher_id,
        )
        return original.model_copy(update=dict(correction=summary, side_effects=side_effects))

    def stats(self) -> dict[str, Any]:
        return dict(
            **self.detector.stats(),
            total_attempts=self.total_attempts,
            exhausted=self.exhausted_count,
            active_budgets=len(self.signature_attempts),
        )

    def reset(self) -> None:
        self.detector.reset()
        self.signature_attempts.clear()
        self.total_attempts = 0
        self.exhausted_count = 0

    async def _publish(self, event: Event, publisher_id: str) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event, publisher_id)
