# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Global settings, read once from the environment (and any .env file) at import
time. Everything here can be overridden per task through LoopConfig.
"""

import os

from typing import Literal
from pathlib import Path
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()

ENV_PREFIX = "AGENT_LOOP_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


class Settings(BaseModel):
    LOG_LEVEL: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))
    MODEL: str = Field(default_factory=lambda: _env("MODEL", "gpt-4o-mini"))
    API_KEY: str | None = Field(
        default_factory=lambda: _env("API_KEY") or os.getenv("OPENAI_API_KEY")
    )
    BASE_URL: str | None = Field(default_factory=lambda: _env("BASE_URL"))
    TEMPERATURE: float = Field(default_factory=lambda: float(_env("TEMPERATURE", "0.2")))

    MAX_ROUNDS: int = Field(default_factory=lambda: int(_env("MAX_ROUNDS", "50")))
    TASK_TIMEOUT: float = Field(default_factory=lambda: float(_env("TASK_TIMEOUT", "600")))
    TOOL_TIMEOUT: float = Field(default_factory=lambda: float(_env("TOOL_TIMEOUT", "600")))
    MAX_TOOL_OUTPUT_CHARS: int = Field(
        default_factory=lambda: int(_env("MAX_TOOL_OUTPUT_CHARS", "30000"))
    )
    MAX_TOOL_CONCURRENCY: int = Field(
        default_factory=lambda: int(_env("MAX_TOOL_CONCURRENCY", "4"))
    )

    WORKDIR: Path = Field(default_factory=lambda: Path(_env("WORKDIR", str(Path.cwd()))))
    REPORT_DIR: Path = Field(
        default_factory=lambda: Path(_env("REPORT_DIR", str(Path.cwd() / ".agent_loop")))
    )


settings = Settings()


class LoopConfig(BaseModel):
    """Per-task knobs for one Round Loop instance."""

    max_rounds: int = Field(default_factory=lambda: settings.MAX_ROUNDS, ge=1)
    timeout: float | None = Field(default_factory=lambda: settings.TASK_TIMEOUT)
    tool_timeout: float = Field(default_factory=lambda: settings.TOOL_TIMEOUT)
    max_tool_output_chars: int = Field(
        default_factory=lambda: settings.MAX_TOOL_OUTPUT_CHARS, ge=100
    )
    max_concurrency: int = Field(default_factory=lambda: settings.MAX_TOOL_CONCURRENCY, ge=1)
    parallel_tools: bool = True
    temperature: float = Field(default_factory=lambda: settings.TEMPERATURE)


class SelfCorrectionConfig(BaseModel):
    """Knobs for the Self-Correction Engine."""

    enabled: bool = True
    max_retries: int = Field(default=3, ge=0)  # task-level attempt budget
    max_failures_per_signature: int = Field(default=2, ge=1)
    severity_ceiling: Literal["low", "medium", "high", "critical"] = "critical"
    reflection_depth: Literal["shallow", "deep"] = "deep"
    reset_budget_on_success: bool = True
    custom_failure_patterns: list[str] = Field(default_factory=list)
    repeat_threshold: int = Field(default=3, ge=2)
    retry_delay: float = Field(default=0.0, ge=0)
