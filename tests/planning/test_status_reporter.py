# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

from agent_loop.planning import StatusReporter
from agent_loop.types.plan_types import Phase, PhaseResult, PhaseStatus, PlanResult, TaskPlan


@pytest.fixture
def plan():
    return TaskPlan(
        id="plan_1",
        original_prompt="Build a todo app " * 10,
        phases=[
            Phase(id="models", index=0, name="Models", status=PhaseStatus.COMPLETED),
            Phase(id="views", index=1, name="Views", status=PhaseStatus.FAILED),
            Phase(id="docs", index=2, name="Docs", status=PhaseStatus.SKIPPED),
        ],
    )


@pytest.fixture
def result():
    return PlanResult(
        plan_id="plan_1",
        success=False,
        phase_results=[
            PhaseResult(
                phase_id="models", success=True, duration_ms=2500, files_modified=["models.py"]
            ),
            PhaseResult(phase_id="views", success=False, error="LLM request failed: down"),
        ],
        total_tokens_used=4200,
        summary="Completed 1/3 phases: Models. Failed: Views",
        warnings=['Plan aborted: phase "Views" failed'],
    )


class TestStatusReporter:
    def test_format_report(self, plan, result, tmp_path):
        report = StatusReporter(tmp_path).format_report(plan, result)

        assert report.startswith("# Status Report")
        assert "**Plan**: " + ("Build a todo app " * 10)[:100] + "..." in report
        assert "**Status**: failed" in report
        assert "**Progress**: 33% (1/3 phases completed, 1 failed)" in report
        assert "**Token Usage**: 4,200 tokens" in report
        assert "[x] **Models** (2.5s)" in report
        assert "  - Files: models.py" in report
        assert "[!] **Views**" in report
        assert "  - Error: LLM request failed: down" in report
        assert "[-] **Docs**" in report
        assert "## Files Modified\n\n- models.py" in report
        assert '- Plan aborted: phase "Views" failed' in report
        assert report.rstrip().endswith("Completed 1/3 phases: Models. Failed: Views")

    @pytest.mark.asyncio
    async def test_write_plan_report(self, plan, result, tmp_path):
        reporter = StatusReporter(tmp_path / "reports")

        path = await reporter.write_plan_report(plan, result)

        assert path.parent == tmp_path / "reports"
        assert path.name.startswith("status-")
        assert path.suffix == ".md"
        content = path.read_text()
        assert content.startswith("# Status Report")
        assert "- models.py" in content

    @pytest.mark.asyncio
    async def test_write_failure_is_not_raised(self, plan, result, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")

        path = await StatusReporter(blocker / "reports").write_plan_report(plan, result)

        assert path is None
