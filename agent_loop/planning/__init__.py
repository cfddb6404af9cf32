# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .dependency import DependencyError, resolve_order
from .status_reporter import StatusReporter
from .phase_executor import (
    FILE_TRACKING_TOOLS,
    PhaseContext,
    PhaseExecutor,
    build_phase_prompt,
    format_plan_result,
    format_plan_summary,
    tracked_files,
)

__all__ = [
    "DependencyError",
    "resolve_order",
    "StatusReporter",
    "FILE_TRACKING_TOOLS",
    "PhaseContext",
    "PhaseExecutor",
    "build_phase_prompt",
    "format_plan_result",
    "format_plan_summary",
    "tracked_files",
]
