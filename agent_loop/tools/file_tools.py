# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

from typing import Optional
from pydantic import Field

from .base_tool import BaseTool, ToolContext
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

RECOVERY_HINT = "TIP: Use view_file first to get the exact content before editing."


def number_lines(lines: list[str], start: int = 1) -> str:
    width = len(str(start + len(lines) - 1))
    return "\n".join(
        f"{str(i).rjust(width)} | {line}" for i, line in enumerate(lines, start)
    )


class ViewFile(BaseTool):
    TOOL_NAME = "view_file"
    TOOL_DESCRIPTION = """View the contents of a text file, or list a directory.

Line numbers are shown in the left margin. Use start_line and end_line to view
only part of a large file. Relative paths are resolved against the working
directory.
"""

    PARALLEL_SAFE = True

    path: str = Field(..., description="Path of the file or directory to view")
    start_line: Optional[int] = Field(
        None, description="First line to show (1-based, inclusive)", ge=1
    )
    end_line: Optional[int] = Field(
        None, description="Last line to show (1-based, inclusive)", ge=1
    )

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        target = self.context.resolve(self.path)

        if not target.exists():
            return self.fail(f"File or directory not found: {self.path}")

        if target.is_dir():
            entries = sorted(
                f"{p.name}/" if p.is_dir() else p.name for p in target.iterdir()
            )
            return self.ok(f"Directory contents of {self.path}:\n" + "\n".join(entries))

        try:
            content = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return self.fail(f"{self.path} is not a UTF-8 text file")

        lines = content.splitlines()
        if self.start_line is None and self.end_line is None:
            return self.ok(f"Contents of {self.path}:\n{number_lines(lines)}")

        start = self.start_line or 1
        end = self.end_line or len(lines)
        if end < start:
            return self.fail(
                f"Invalid line range: end ({end}) must be >= start ({start})."
            )
        if start > len(lines):
            return self.fail(
                f"Start line {start} exceeds file length ({len(lines)} lines)."
            )
        end = min(end, len(lines))
        return self.ok(
            f"Lines {start}-{end} of {self.path}:\n"
            + number_lines(lines[start - 1 : end], start)
        )


class CreateFile(BaseTool):
    TOOL_NAME = "create_file"
    TOOL_DESCRIPTION = """Create a new file with the given content.

Parent directories are created as needed. Fails if the file already exists; use
str_replace_editor to change existing files.
"""

    path: str = Field(..., description="Path of the file to create")
    content: str = Field(..., description="The full content of the new file")

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        target = self.context.resolve(self.path)
        if target.exists():
            return self.fail(
                f"File already exists: {self.path}. Use str_replace_editor or "
                "insert for edits instead of create."
            )
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.content, encoding="utf-8")
        n_lines = len(self.content.splitlines())
        return self.ok(
            f"Created {self.path} ({n_lines} lines)", created={self.path}
        )
