# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The Round Loop: drives one task through model calls and tool rounds.

The loop is a small state machine::

    IDLE -> AWAITING_MODEL -> DISPATCHING -> AWAITING_MODEL -> ... -> COMPLETED | FAILED

with two suspension points: waiting for the model's streamed response, and
waiting for dispatched tools. A turn without tool calls completes the task; a
turn with tool calls is one round. Fatal conditions (transport failure, round
limit, abort, timeout) end the task; tool failures never do, they are fed
back to the model as failed tool results.

Every call to ``execute_task`` returns a TaskResult and publishes exactly one
of ``task-completed`` / ``task-failed``. With ``publish_terminal=False`` the
caller publishes it instead, except on cancellation, when no result reaches
the caller.
"""

import asyncio
import logging

from enum import Enum
from typing import Callable
from datetime import datetime
from pathlib import Path

from .agent_calling import await_task
from ..config import LoopConfig, settings
from ..events import EventBus
from ..events.event_bus_utils import terminal_event
from ..llm.base import LLMClient
from ..llm.reducer import StreamReducer
from ..tools.base_tool import AskUserCallback, ToolContext
from ..tools.dispatcher import ToolDispatcher
from ..tools.parallel import group_calls, run_bounded
from ..types.agent_types import (
    RoundState,
    TaskInput,
    TaskMetrics,
    TaskResult,
    TaskStatus,
)
from ..types.error_types import (
    AbortError,
    AgentLoopError,
    FatalLoopError,
    LoopTimeoutError,
    RoundLimitExceeded,
    TransportError,
)
from ..types.event_types import Event, EventType
from ..types.llm_types import Message, ToolCallDraft, Turn
from ..types.tool_types import ToolResult, ToolSpec

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


DEFAULT_SYSTEM_PROMPT = """You are a software engineering agent working in a code repository.

Use the tools available to you to inspect and change files and to run
commands. Work step by step, check the results of your actions, and when the
task is complete reply with a short summary of what you did and no tool calls.
"""


class LoopState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    FAILED = "failed"


def default_output(task: TaskInput, state: RoundState) -> str:
    n_files = len(state.side_effects.files_created | state.side_effects.files_modified)
    return (
        f'{task.kind} "{task.name}" completed '
        f"({state.rounds_used} tool rounds, {n_files} files modified)"
    )


class RoundLoop:
    """
    Runs one task at a time. Instances share nothing mutable with each other
    except the event bus they publish to; the dispatcher and client are only
    read.
    """

    def __init__(
        self,
        client: LLMClient,
        dispatcher: ToolDispatcher,
        event_bus: EventBus | None = None,
        config: LoopConfig | None = None,
        workdir: Path | None = None,
        ask_user: AskUserCallback | None = None,
        publisher_id: str | None = None,
        depth: int = 0,
        summarise: Callable[[TaskInput, RoundState], str] | None = None,
        publish_terminal: bool = True,
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.event_bus = event_bus
        self.config = config or LoopConfig()
        self.workdir = workdir or settings.WORKDIR
        self.ask_user = ask_user
        self.publisher_id = publisher_id
        self.depth = depth
        self.summarise = summarise or default_output
        # Off when a wrapper (self-correction) reports the outcome instead
        self.publish_terminal = publish_terminal

        self._state = LoopState.IDLE
        self._abort_requested = False
        self._round_state: RoundState | None = None
        self._children: list["RoundLoop"] = []
        self._n_subtasks = 0
        self._current_publisher: str | None = None

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def round_state(self) -> RoundState | None:
        return self._round_state

    def abort(self) -> None:
        """
        Ask the running task to stop. Observed at the next checkpoint: after a
        tool result is recorded, or before the next model call. In-flight tools
        are allowed to finish.
        """
        self._abort_requested = True
        if self._round_state is not None:
            self._round_state.aborted = True
        for child in self._children:
            child.abort()

    # Public entry point ======================================================

    async def execute_task(self, task: TaskInput) -> TaskResult:
        publisher_id = self.publisher_id or task.task_id
        self._current_publisher = publisher_id
        state = RoundState(
            max_rounds=self.config.max_rounds,
            messages=self._initial_messages(task),
            aborted=self._abort_requested,
        )
        self._round_state = state
        metrics = TaskMetrics(start_time=datetime.now())
        context = ToolContext(
            workdir=self.workdir,
            task_id=publisher_id,
            event_bus=self.event_bus,
            ask_user=self.ask_user,
            run_subtask=self._run_subtask,
            depth=self.depth,
        )

        await self._publish(
            Event(
                type=EventType.TASK_STARTED,
                content=task.prompt,
                metadata=dict(name=task.name, task_id=task.task_id),
            ),
            publisher_id,
        )

        timeout_cm = asyncio.timeout(self.config.timeout)
        try:
            async with timeout_cm:
                output = await self._run_rounds(task, state, context, metrics, publisher_id)
            result = self._build_result(task, state, metrics, TaskStatus.SUCCESS, output)
        except TimeoutError as e:
            if timeout_cm.expired():
                elapsed = (datetime.now() - metrics.start_time).total_seconds()
                err = LoopTimeoutError(self.config.timeout, elapsed)
                result = self._build_error(task, state, metrics, TaskStatus.TIMEOUT, err)
            else:
                result = self._build_error(
                    task, state, metrics, TaskStatus.ERROR, TransportError(str(e))
                )
        except AbortError as e:
            result = self._build_error(task, state, metrics, TaskStatus.CANCELLED, e)
        except FatalLoopError as e:
            result = self._build_error(task, state, metrics, TaskStatus.ERROR, e)
        except asyncio.CancelledError:
            self._state = LoopState.FAILED
            result = self._build_error(
                task, state, metrics, TaskStatus.CANCELLED, AbortError("Task was cancelled")
            )
            await self._publish_terminal(result, publisher_id)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in task {task.name}")
            err = AgentLoopError(f"Unexpected error: {e}")
            err.kind = "internal_error"
            result = self._build_error(task, state, metrics, TaskStatus.ERROR, err)

        self._state = LoopState.COMPLETED if result.success else LoopState.FAILED
        if self.publish_terminal:
            await self._publish_terminal(result, publisher_id)
        return result

    # The state machine =======================================================

    async def _run_rounds(
        self,
        task: TaskInput,
        state: RoundState,
        context: ToolContext,
        metrics: TaskMetrics,
        publisher_id: str,
    ) -> str:
        tools = await self.dispatcher.list_tools()

        while True:
            self._checkpoint(state)

            turn = await self._await_model(state, tools, metrics, publisher_id)
            state.messages.append(turn)
            if turn.content:
                state.last_content = turn.content

            if not turn.has_tool_calls:
                return turn.content or self.summarise(task, state)

            if state.rounds_used >= state.max_rounds:
                raise RoundLimitExceeded(state.max_rounds)
            state.rounds_used += 1

            await self._publish(
                Event(
                    type=EventType.ROUND_STARTED,
                    content=f"Round {state.rounds_used}",
                    metadata=dict(
                        round=state.rounds_used, tool_calls=len(turn.tool_calls)
                    ),
                ),
                publisher_id,
            )
            await self._dispatch_round(turn, state, context, metrics, publisher_id)
            await self._publish(
                Event(
                    type=EventType.ROUND_COMPLETED,
                    content=f"Round {state.rounds_used}",
                    metadata=dict(round=state.rounds_used),
                ),
                publisher_id,
            )
            self._checkpoint(state)

    async def _await_model(
        self,
        state: RoundState,
        tools: list[ToolSpec],
        metrics: TaskMetrics,
        publisher_id: str,
    ) -> Turn:
        self._state = LoopState.AWAITING_MODEL
        reducer = StreamReducer(publisher_id, id_prefix=f"call_r{state.rounds_used + 1}_")

        logger.info(
            f"Awaiting model for {publisher_id} (round {state.rounds_used}, "
            f"{len(state.messages)} messages)..."
        )
        try:
            stream = self.client.stream_chat(
                list(state.messages), tools, temperature=self.config.temperature
            )
            async for chunk in stream:
                for event in reducer.feed(chunk):
                    await self._publish(event, publisher_id)
        except AgentLoopError:
            raise
        except Exception as e:
            raise TransportError(f"LLM request failed: {e}") from e
        finally:
            metrics.model_calls += 1
            metrics.token_usage = metrics.token_usage + reducer.usage

        if not reducer.saw_choices:
            raise TransportError("No response from LLM")
        return reducer.turn()

    async def _dispatch_round(
        self,
        turn: Turn,
        state: RoundState,
        context: ToolContext,
        metrics: TaskMetrics,
        publisher_id: str,
    ) -> None:
        self._state = LoopState.DISPATCHING

        calls = list(turn.tool_calls)
        # A call id repeated within the turn runs once; every repeat gets a
        # copy of that result so each call in the turn is answered
        first_runs: dict[str, asyncio.Future] = {}

        for call in calls:
            await self._publish(
                Event(
                    type=EventType.TOOL_CALL,
                    content=call.raw_arguments,
                    metadata=dict(call_id=call.id, name=call.function_name, args=call.raw_arguments),
                ),
                publisher_id,
            )

        async def execute(call: ToolCallDraft) -> ToolResult:
            if call.id in first_runs:
                logger.warning(f"Reusing the result of duplicate tool call id {call.id}")
                earlier = await first_runs[call.id]
                return earlier.model_copy(deep=True)

            first_run = asyncio.get_running_loop().create_future()
            first_runs[call.id] = first_run
            state.dispatched_ids.add(call.id)
            metrics.tool_calls += 1
            try:
                result = await self.dispatcher.execute_call(call, context)
            except BaseException:
                first_run.cancel()
                raise
            result.call_id = call.id
            first_run.set_result(result)
            return result

        groups = group_calls(
            calls,
            lambda c: self.config.parallel_tools
            and self.dispatcher.is_parallel_safe(c.function_name),
        )
        for group in groups:
            group_calls_ = [calls[i] for i in group.indices]
            if group.parallel and len(group_calls_) > 1:
                results = await run_bounded(
                    group_calls_, execute, self.config.max_concurrency
                )
            else:
                results = [await execute(group_calls_[0])]

            for call, result in zip(group_calls_, results):
                await self._record(call, result, state, publisher_id)
            self._checkpoint(state)

    async def _record(
        self, call: ToolCallDraft, result: ToolResult, state: RoundState, publisher_id: str
    ) -> None:
        state.messages.append(result)
        state.tools_used.add(call.function_name)
        if result.success:
            state.side_effects.merge(result.side_effects)
        await self._publish(
            Event(
                type=EventType.TOOL_RESULT,
                content=result.to_plain_string(),
                metadata=dict(call_id=call.id, name=call.function_name, tool_result=result),
            ),
            publisher_id,
        )

    def _checkpoint(self, state: RoundState) -> None:
        if self._abort_requested or state.aborted:
            raise AbortError()

    # Nested tasks ============================================================

    async def _run_subtask(self, task_input: TaskInput) -> TaskResult:
        self._n_subtasks += 1
        parent_id = self._current_publisher or "task"
        child = RoundLoop(
            client=self.client,
            dispatcher=self.dispatcher,
            event_bus=self.event_bus,
            config=self.config,
            workdir=self.workdir,
            ask_user=self.ask_user,
            publisher_id=f"{parent_id}.{task_input.name}_{self._n_subtasks}",
            depth=self.depth + 1,
        )
        self._children.append(child)
        try:
            return await await_task(
                asyncio.create_task(child.execute_task(task_input)), task_input
            )
        finally:
            self._children.remove(child)

    # Helpers =================================================================

    def _initial_messages(self, task: TaskInput) -> list:
        messages = [
            Message(role="system", content=task.system_prompt or DEFAULT_SYSTEM_PROMPT)
        ]
        messages.extend(task.prior_messages)
        prompt = task.prompt
        if task.context:
            prompt = f"{prompt}\n\n<CONTEXT>\n{task.context}\n</CONTEXT>"
        messages.append(Message(role="user", content=prompt))
        return messages

    def _build_result(
        self,
        task: TaskInput,
        state: RoundState,
        metrics: TaskMetrics,
        status: TaskStatus,
        output: str,
        errors: str | None = None,
        error_type: str | None = None,
    ) -> TaskResult:
        metrics.end_time = datetime.now()
        return TaskResult(
            task_id=task.task_id,
            name=task.name,
            status=status,
            output=output,
            errors=errors,
            error_type=error_type,
            metrics=metrics,
            rounds_used=state.rounds_used,
            tools_used=set(state.tools_used),
            side_effects=state.side_effects.model_copy(deep=True),
            messages=list(state.messages),
        )

    def _build_error(
        self,
        task: TaskInput,
        state: RoundState,
        metrics: TaskMetrics,
        status: TaskStatus,
        error: AgentLoopError,
    ) -> TaskResult:
        logger.info(f"Task {task.name} ended with {status.value}: {error.message}")
        return self._build_result(
            task,
            state,
            metrics,
            status,
            output=state.last_content,
            errors=error.message,
            error_type=error.kind,
        )

    async def _publish_terminal(self, result: TaskResult, publisher_id: str) -> None:
        await self._publish(terminal_event(result), publisher_id)

    async def _publish(self, event: Event, publisher_id: str) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event, publisher_id)
