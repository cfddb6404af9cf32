# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
An execution runtime for LLM coding agents: streamed turns are reduced into
tool calls, dispatched, and looped until the task completes, fails or runs out
of rounds.
"""

from .agent import Agent
from .agents import RoundLoop
from .planning import PhaseExecutor
from .correction import SelfCorrectionEngine

__version__ = "0.1.0"

__all__ = ["Agent", "RoundLoop", "PhaseExecutor", "SelfCorrectionEngine"]
