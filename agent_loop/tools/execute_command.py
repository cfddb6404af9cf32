# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import asyncio
import logging

from pydantic import Field, PrivateAttr

from .base_tool import BaseTool, ToolContext
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class BashTool(BaseTool):
    """Tool for executing shell commands that are guaranteed to return."""

    TOOL_NAME = "bash"
    TOOL_DESCRIPTION = """Execute a bash command in the working directory and return its output.

The command must return within the timeout; commands that run indefinitely
(servers, watchers) are killed when the timeout expires.

Example usage:
- running tests
- compiling or running programs
- inspecting the repository with git
"""

    command: str = Field(
        ...,
        description="A single or multi-line bash command to be run in the terminal.",
        min_length=1,
    )
    timeout: float = Field(
        120.0,
        description="Seconds to wait for the command to return. Must be between 1 and 1800.",
        ge=1.0,
        le=1800.0,
    )

    _process: asyncio.subprocess.Process | None = PrivateAttr(default=None)

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        self._process = await asyncio.create_subprocess_shell(
            self.command,
            cwd=str(self.context.workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            executable="/bin/bash",
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                self._process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await self._stop()
            return self.fail(f"Command timed out after {self.timeout} seconds")
        except asyncio.CancelledError:
            await self._stop()
            raise

        exit_code = self._process.returncode
        output_str = f"<stdout>{stdout.decode(errors='replace')}</stdout>\n"
        output_str += f"<stderr>{stderr.decode(errors='replace')}</stderr>\n"
        output_str += f"<exit_code>{exit_code}</exit_code>"

        if exit_code != 0:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                output=output_str,
                errors=f"Command exited with code {exit_code}: "
                + (stderr.decode(errors="replace").strip()[-500:] or "no stderr"),
                error_type="execution_error",
            )
        return self.ok(output_str)

    async def _stop(self) -> None:
        if self._process is None or self._process.returncode is not None:
            return
        self._process.terminate()
        try:
            await asyncio.wait_for(self._process.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            self._process.kill()  # Force kill if terminate didn't work
