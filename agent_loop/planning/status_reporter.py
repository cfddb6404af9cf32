# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Markdown status reports written when a plan finishes."""

import asyncio
import logging

from pathlib import Path
from datetime import datetime

from ..config import settings
from ..types.plan_types import PhaseStatus, PlanResult, TaskPlan

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


PHASE_ICONS = {
    PhaseStatus.PENDING: "[ ]",
    PhaseStatus.RUNNING: "[>]",
    PhaseStatus.COMPLETED: "[x]",
    PhaseStatus.FAILED: "[!]",
    PhaseStatus.SKIPPED: "[-]",
}


class StatusReporter:
    def __init__(self, output_dir: Path | None = None):
        self.output_dir = Path(output_dir or settings.REPORT_DIR)
        self.session_start = datetime.now()

    def format_report(self, plan: TaskPlan, result: PlanResult) -> str:
        results = {r.phase_id: r for r in result.phase_results}
        completed = sum(1 for r in result.phase_results if r.success)
        failed = len(result.phase_results) - completed
        total = len(plan.phases)
        percentage = completed / total * 100 if total else 0.0
        files = sorted({f for r in result.phase_results for f in r.files_modified})
        session_minutes = (datetime.now() - self.session_start).total_seconds() / 60
        request = plan.original_prompt

        md = "# Status Report\n\n"
        md += f"**Generated**: {datetime.now().isoformat()}\n"
        md += f"**Session Duration**: {session_minutes:.1f} minutes\n\n"

        md += "## Plan Progress\n\n"
        md += f"**Plan**: {request[:100]}{'...' if len(request) > 100 else ''}\n"
        md += f"**Status**: {'completed' if result.success else 'failed'}\n"
        md += f"**Progress**: {percentage:.0f}% ({completed}/{total} phases completed"
        md += f", {failed} failed)\n" if failed else ")\n"
        md += f"**Token Usage**: {result.total_tokens_used:,} tokens\n\n"

        md += "### Phases\n\n"
        for phase in plan.phases:
            md += f"{PHASE_ICONS.get(phase.status, '[?]')} **{phase.name}**"
            phase_result = results.get(phase.id)
            if phase_result is not None and phase_result.duration_ms:
                md += f" ({phase_result.duration_ms / 1000:.1f}s)"
            md += "\n"
            if phase_result is not None:
                if phase_result.files_modified:
                    md += f"  - Files: {', '.join(phase_result.files_modified)}\n"
                if phase_result.error:
                    md += f"  - Error: {phase_result.error}\n"
        md += "\n"

        if files:
            md += "## Files Modified\n\n"
            for path in files:
                md += f"- {path}\n"
            md += "\n"

        if result.warnings:
            md += "## Warnings\n\n"
            for warning in result.warnings:
                md += f"- {warning}\n"
            md += "\n"

        md += f"## Summary\n\n{result.summary}\n"
        return md

    async def write_plan_report(self, plan: TaskPlan, result: PlanResult) -> Path | None:
        """Write the report; returns its path, or None if writing failed."""
        try:
            timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
            path = self.output_dir / f"status-{timestamp}.md"
            content = self.format_report(plan, result)
            await asyncio.to_thread(self._write, path, content)
            logger.info(f"Status report written to {path}")
            return path
        except Exception as e:
            logger.warning(f"Failed to write status report: {e}")
            return None

    def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
