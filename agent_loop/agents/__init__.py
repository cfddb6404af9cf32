# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The Round Loop and helpers for running tasks, including nested ones.
"""

from .round_loop import RoundLoop, LoopState, DEFAULT_SYSTEM_PROMPT, default_output
from .agent_calling import await_task

__all__ = ["RoundLoop", "LoopState", "DEFAULT_SYSTEM_PROMPT", "default_output", "await_task"]
