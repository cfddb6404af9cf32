# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .failure_detector import FailureDetector, hash_args
from .reflection_prompts import (
    build_exhaustion_summary,
    build_quick_reflection_prompt,
    build_reflection_prompt,
)
from .self_correction import SelfCorrectionEngine

__all__ = [
    "FailureDetector",
    "SelfCorrectionEngine",
    "build_exhaustion_summary",
    "build_quick_reflection_prompt",
    "build_reflection_prompt",
    "hash_args",
]
