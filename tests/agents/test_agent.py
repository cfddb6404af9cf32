# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the Agent root object and the task awaiting helpers."""
import asyncio
import pytest

from agent_loop.agent import Agent
from agent_loop.agents.agent_calling import await_task
from agent_loop.config import SelfCorrectionConfig
from agent_loop.tools import toolkits
from agent_loop.types.agent_types import TaskInput, TaskStatus
from agent_loop.types.event_types import EventType
from agent_loop.types.plan_types import Phase, TaskPlan

from tests.helpers import ScriptedClient, text_response, tool_call, tool_response


class TestAgent:
    @pytest.fixture
    def make_agent(self, tmp_path):
        def _make(responses, **kwargs) -> Agent:
            return Agent(
                client=ScriptedClient(responses),
                workdir=tmp_path / "work",
                report_dir=tmp_path / "reports",
                **kwargs,
            )

        return _make

    def test_defaults(self, make_agent):
        agent = make_agent([])

        assert agent.workdir.is_dir()
        assert agent.planning_enabled
        assert sorted(agent.dispatcher.builtin_names) == sorted(
            t.TOOL_NAME for t in toolkits["coding"]
        )

    def test_restricted_toolkit(self, make_agent):
        agent = make_agent([], tools=toolkits["read_only"])
        assert sorted(agent.dispatcher.builtin_names) == ["search", "view_file"]

    @pytest.mark.asyncio
    async def test_execute_task_from_string(self, make_agent):
        agent = make_agent([text_response("Hello!")])

        result = await agent.execute_task("Say hello")

        assert result.success
        assert result.output == "Hello!"
        assert agent.client.calls[0]["messages"][-1].content == "Say hello"

    @pytest.mark.asyncio
    async def test_execute_task_corrects_failures(self, make_agent):
        agent = make_agent([ConnectionError("connection reset"), text_response("ok now")])

        result = await agent.execute_task(TaskInput(name="t", prompt="p", task_id="task_x"))

        assert result.success
        assert result.correction.corrected
        attempts = agent.event_bus.get_events_by_type(EventType.CORRECTION_ATTEMPT, "task_x")
        assert len(attempts) == 1
        # The task reports its outcome once; the retry reports under its own id
        failed = agent.event_bus.get_events_by_type(EventType.TASK_FAILED, "task_x")
        completed = agent.event_bus.get_events_by_type(EventType.TASK_COMPLETED, "task_x")
        assert (len(failed), len(completed)) == (0, 1)
        assert completed[0].metadata["task_result"].correction.corrected
        retried = agent.event_bus.get_events_by_type(EventType.TASK_COMPLETED, "task_x_retry1")
        assert len(retried) == 1

    @pytest.mark.asyncio
    async def test_exhausted_correction_fails_once(self, make_agent):
        agent = make_agent([ConnectionError("connection reset")] * 5)

        result = await agent.execute_task(TaskInput(name="t", prompt="p", task_id="t1"))

        assert not result.success
        assert result.correction.attempted
        failed = agent.event_bus.get_events_by_type(EventType.TASK_FAILED, "t1")
        completed = agent.event_bus.get_events_by_type(EventType.TASK_COMPLETED, "t1")
        assert (len(failed), len(completed)) == (1, 0)
        for number in range(1, result.correction.attempts + 1):
            retry_failed = agent.event_bus.get_events_by_type(EventType.TASK_FAILED, f"t1_retry{number}")
            assert len(retry_failed) == 1

    @pytest.mark.asyncio
    async def test_abort_between_correction_attempts(self, make_agent):
        agent = make_agent(
            [ConnectionError("connection reset"), text_response("retried anyway")],
            correction_config=SelfCorrectionConfig(retry_delay=0.3),
        )
        asyncio.get_running_loop().call_later(0.1, agent.abort)

        result = await agent.execute_task(TaskInput(name="t", prompt="p", task_id="t1"))

        assert not result.success
        assert result.status == TaskStatus.CANCELLED
        assert result.error_type == "aborted"
        assert agent.client.remaining == 1
        assert agent.event_bus.get_events_by_type(EventType.CORRECTION_ATTEMPT, "t1") == []
        failed = agent.event_bus.get_events_by_type(EventType.TASK_FAILED, "t1")
        assert len(failed) == 1

    @pytest.mark.asyncio
    async def test_abort_is_cleared_for_the_next_task(self, make_agent):
        agent = make_agent([text_response("fresh start")])
        agent.abort()

        result = await agent.execute_task("p")

        assert result.success

    @pytest.mark.asyncio
    async def test_correction_can_be_disabled(self, make_agent):
        agent = make_agent(
            [ConnectionError("connection reset")],
            correction_config=SelfCorrectionConfig(enabled=False),
        )

        result = await agent.execute_task("p")

        assert result.status == TaskStatus.ERROR
        assert agent.client.remaining == 0

    @pytest.mark.asyncio
    async def test_execute_plan_toggles_planning(self, make_agent):
        agent = make_agent([text_response("phase done")])
        seen = []

        async def record(event):
            seen.append(agent.planning_enabled)

        agent.event_bus.subscribe(EventType.TASK_STARTED, record)
        plan = TaskPlan(original_prompt="r", phases=[Phase(id="one", name="One")])

        result = await agent.execute_plan(plan)

        assert result.success
        assert seen == [False]
        assert agent.planning_enabled
        assert result.report_path is not None

    @pytest.mark.asyncio
    async def test_abort_running_task(self, make_agent):
        agent = make_agent(
            [tool_response(tool_call("view_file", {"path": "."})), text_response("never")]
        )

        async def abort_on_result(event):
            agent.abort()

        agent.event_bus.subscribe(EventType.TOOL_RESULT, abort_on_result)

        result = await agent.execute_task("look around")

        assert result.status == TaskStatus.CANCELLED
        assert result.correction is None
        assert agent.client.remaining == 1

    @pytest.mark.asyncio
    async def test_log_events(self, make_agent, capsys):
        agent = make_agent([text_response("done")], log_events=True)

        await agent.execute_task("p")

        out = capsys.readouterr().out
        assert "task-started" in out
        assert "task-completed" in out


class TestAwaitTask:
    @pytest.mark.asyncio
    async def test_cancelled_task_becomes_result(self):
        task_input = TaskInput(name="slow", prompt="p")
        task = asyncio.create_task(asyncio.sleep(10))
        asyncio.get_running_loop().call_later(0.01, task.cancel)

        result = await await_task(task, task_input)

        assert result.status == TaskStatus.CANCELLED
        assert result.error_type == "aborted"

    @pytest.mark.asyncio
    async def test_crashed_task_becomes_result(self):
        async def crash():
            raise ValueError("bad state")

        result = await await_task(asyncio.create_task(crash()), TaskInput(name="c", prompt="p"))

        assert result.status == TaskStatus.ERROR
        assert result.errors == "bad state"
