# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The root object of the runtime.
"""

import logging

from typing import Iterable, Sequence
from pathlib import Path

from .agents.round_loop import RoundLoop
from .config import LoopConfig, SelfCorrectionConfig, settings
from .correction import SelfCorrectionEngine
from .events import EventBus
from .events.event_bus_utils import log_to_stdout
from .llm.base import LLMClient
from .llm.providers import OpenAIProvider
from .planning import PhaseContext, PhaseExecutor, StatusReporter
from .tools import BaseTool, ToolDispatcher, toolkits
from .tools.base_tool import AskUserCallback
from .tools.external import ExternalToolRegistry, PolicyHook
from .types.agent_types import ConversationItem, TaskInput, TaskResult
from .types.event_types import LIFECYCLE_EVENTS, EventType
from .types.plan_types import Phase, PhaseResult, PlanResult, TaskPlan

logger = logging.getLogger(__name__)

LOGGED_EVENTS = LIFECYCLE_EVENTS | {EventType.CORRECTION_ATTEMPT, EventType.CORRECTION_EXHAUSTED}


class Agent:
    """
    The Agent class acts as the 'root' of the application state. It owns the
    event bus, the tool dispatcher, the LLM client and the self-correction
    engine, and builds a fresh Round Loop for every task. Nothing here is a
    module-level singleton: two Agents share nothing.
    """

    def __init__(
        self,
        client: LLMClient | None = None,
        workdir: Path | None = None,
        tools: Iterable[type[BaseTool]] | None = None,
        external_registry: ExternalToolRegistry | None = None,
        policy_hook: PolicyHook | None = None,
        loop_config: LoopConfig | None = None,
        correction_config: SelfCorrectionConfig | None = None,
        ask_user: AskUserCallback | None = None,
        event_bus: EventBus | None = None,
        report_dir: Path | None = None,
        log_events: bool = False,
    ):
        self.workdir = Path(workdir or settings.WORKDIR)
        self.workdir.mkdir(parents=True, exist_ok=True)

        self.client = client or OpenAIProvider(
            model=settings.MODEL,
            api_key=settings.API_KEY,
            base_url=settings.BASE_URL,
            temperature=settings.TEMPERATURE,
        )
        self.event_bus = event_bus or EventBus()
        self.loop_config = loop_config or LoopConfig()
        self.dispatcher = ToolDispatcher(
            tools=toolkits["coding"] if tools is None else tools,
            external_registry=external_registry,
            policy_hook=policy_hook,
            max_output_chars=self.loop_config.max_tool_output_chars,
            tool_timeout=self.loop_config.tool_timeout,
        )
        self.correction = SelfCorrectionEngine(correction_config, event_bus=self.event_bus)
        self.ask_user = ask_user
        self.status_reporter = StatusReporter(report_dir or settings.REPORT_DIR)

        # Switched off by the Phase Executor while a phase runs
        self.planning_enabled = True

        self._active: list[RoundLoop] = []
        self._abort_requested = False
        self._phase_executor: PhaseExecutor | None = None

        if log_events:
            self.event_bus.subscribe(LOGGED_EVENTS, log_to_stdout)

    def set_planning_enabled(self, enabled: bool) -> None:
        logger.debug(f"Planning {'enabled' if enabled else 'disabled'}")
        self.planning_enabled = enabled

    def new_loop(self, publisher_id: str | None = None, publish_terminal: bool = True) -> RoundLoop:
        return RoundLoop(
            client=self.client,
            dispatcher=self.dispatcher,
            event_bus=self.event_bus,
            config=self.loop_config,
            workdir=self.workdir,
            ask_user=self.ask_user,
            publisher_id=publisher_id,
            publish_terminal=publish_terminal,
        )

    @property
    def phase_executor(self) -> PhaseExecutor:
        if self._phase_executor is None:
            self._phase_executor = PhaseExecutor(
                client=self.client,
                dispatcher=self.dispatcher,
                event_bus=self.event_bus,
                config=self.loop_config,
                workdir=self.workdir,
                ask_user=self.ask_user,
                correction=self.correction,
                set_planning_enabled=self.set_planning_enabled,
                status_reporter=self.status_reporter,
            )
        return self._phase_executor

    async def execute_task(self, task: TaskInput | str) -> TaskResult:
        """Run one task, with self-correction, and return its result."""
        if isinstance(task, str):
            task = TaskInput(prompt=task)
        publisher_id = task.task_id
        self._abort_requested = False

        async def run_attempt(attempt: TaskInput) -> TaskResult:
            # The first attempt reports under the task id through the engine;
            # retries are complete tasks of their own under their retry id
            if attempt.task_id == publisher_id:
                loop = self.new_loop(publisher_id, publish_terminal=False)
            else:
                loop = self.new_loop(attempt.task_id)
            self._active.append(loop)
            try:
                if self._abort_requested:
                    loop.abort()
                return await loop.execute_task(attempt)
            finally:
                self._active.remove(loop)

        return await self.correction.run(
            task,
            run_attempt,
            publisher_id=publisher_id,
            publish_result=True,
            should_stop=lambda: self._abort_requested,
        )

    async def execute_phase(
        self,
        phase: Phase,
        context: PhaseContext,
        prior_messages: Sequence[ConversationItem] | None = None,
    ) -> PhaseResult:
        return await self.phase_executor.execute_phase(phase, context, prior_messages)

    async def execute_plan(
        self,
        plan: TaskPlan,
        prior_messages: Sequence[ConversationItem] | None = None,
    ) -> PlanResult:
        return await self.phase_executor.execute_plan(plan, prior_messages)

    def abort(self) -> None:
        """
        Abort every running task; each stops at its next checkpoint. A task
        waiting between self-correction attempts starts no further attempt.
        """
        self._abort_requested = True
        for loop in list(self._active):
            loop.abort()
        if self._phase_executor is not None:
            self._phase_executor.abort()
