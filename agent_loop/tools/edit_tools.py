# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import difflib
import logging

from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel, Field

from .base_tool import BaseTool, ToolContext
from .file_tools import RECOVERY_HINT, CreateFile, ViewFile
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class EditFailure(Exception):
    pass


def make_diff(old_content: str, new_content: str, path: str) -> str:
    diff = difflib.unified_diff(
        old_content.splitlines(keepends=True),
        new_content.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    )
    return "".join(diff) or "No changes"


def replace_in(
    content: str, old_str: str, new_str: str, replace_all: bool = False
) -> tuple[str, int]:
    """Replace ``old_str`` in ``content``. Returns the new content and how many
    occurrences there were. Raises EditFailure when there is nothing to replace."""
    if not old_str:
        raise EditFailure("Search string cannot be empty")
    occurrences = content.count(old_str)
    if occurrences == 0:
        if "\n" in old_str:
            raise EditFailure(
                "String not found in file. For multi-line replacements, use "
                "view_file to get the exact content including whitespace and "
                f"indentation. {RECOVERY_HINT}"
            )
        raise EditFailure(
            f'String not found in file: "{old_str}". Use view_file to see the '
            f"exact file contents and copy the correct text. {RECOVERY_HINT}"
        )
    if replace_all:
        return content.replace(old_str, new_str), occurrences
    return content.replace(old_str, new_str, 1), occurrences


def _read_existing(target: Path, path: str) -> str:
    if not target.is_file():
        raise EditFailure(
            f"File not found: {path}. Use view_file to check the directory structure."
        )
    return target.read_text(encoding="utf-8")


class StrReplaceEditor(BaseTool):
    TOOL_NAME = "str_replace_editor"
    TOOL_DESCRIPTION = """Replace text in an existing file.

old_str must match the file contents exactly, including whitespace. Only the
first occurrence is replaced unless replace_all is set. The output is a unified
diff of the change.
"""

    path: str = Field(..., description="Path of the file to edit")
    old_str: str = Field(..., description="The exact text to replace")
    new_str: str = Field(..., description="The replacement text")
    replace_all: bool = Field(False, description="Replace every occurrence")

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        target = self.context.resolve(self.path)
        try:
            content = _read_existing(target, self.path)
            new_content, occurrences = replace_in(
                content, self.old_str, self.new_str, self.replace_all
            )
        except EditFailure as e:
            return self.fail(str(e))

        target.write_text(new_content, encoding="utf-8")
        warnings = None
        if occurrences > 1 and not self.replace_all:
            warnings = (
                f"old_str occurs {occurrences} times; only the first occurrence "
                "was replaced"
            )
        return self.ok(
            make_diff(content, new_content, self.path),
            modified={self.path},
            warnings=warnings,
        )


class EditSpec(BaseModel):
    old_str: str = Field(..., description="The exact text to replace")
    new_str: str = Field(..., description="The replacement text")
    replace_all: bool = False


class MultiEdit(BaseTool):
    TOOL_NAME = "multi_edit"
    TOOL_DESCRIPTION = """Apply several replacements to one file atomically.

Edits are applied in order, each to the result of the previous one. If any edit
fails, the file is left untouched.
"""

    path: str = Field(..., description="Path of the file to edit")
    edits: list[EditSpec] = Field(..., description="The edits to apply, in order")

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        if not self.edits:
            return self.fail("No edits provided")

        target = self.context.resolve(self.path)
        try:
            original = _read_existing(target, self.path)
            content = original
            for i, edit in enumerate(self.edits):
                try:
                    content, _ = replace_in(
                        content, edit.old_str, edit.new_str, edit.replace_all
                    )
                except EditFailure as e:
                    raise EditFailure(f"Edit {i + 1}: {e}") from e
        except EditFailure as e:
            return self.fail(str(e))

        target.write_text(content, encoding="utf-8")
        return self.ok(
            f"Applied {len(self.edits)} edits\n" + make_diff(original, content, self.path),
            modified={self.path},
        )


class TextEditor(BaseTool):
    TOOL_NAME = "text_editor"
    TOOL_DESCRIPTION = """A combined file viewer and editor.

Commands:
- view: show a file (optionally view_range=[start, end]) or list a directory
- create: create a new file with file_text
- str_replace: replace old_str with new_str
- insert: insert new_str after line insert_line (0 inserts at the top)
"""

    command: Literal["view", "create", "str_replace", "insert"] = Field(
        ..., description="The operation to perform"
    )
    path: str = Field(..., description="Path of the file or directory")
    file_text: Optional[str] = Field(None, description="Content for the create command")
    old_str: Optional[str] = Field(None, description="Text to replace (str_replace)")
    new_str: Optional[str] = Field(
        None, description="Replacement (str_replace) or inserted text (insert)"
    )
    insert_line: Optional[int] = Field(
        None, description="Line after which to insert (insert)", ge=0
    )
    view_range: Optional[list[int]] = Field(
        None, description="[start_line, end_line] to view (view)"
    )

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    def _named(self, result: ToolResult) -> ToolResult:
        result.tool_name = self.TOOL_NAME
        return result

    async def run(self) -> ToolResult:
        if self.command == "view":
            start = end = None
            if self.view_range:
                if len(self.view_range) != 2:
                    return self.fail("view_range must be [start_line, end_line]")
                start, end = self.view_range
            return self._named(
                await ViewFile(
                    self.context, path=self.path, start_line=start, end_line=end
                ).run()
            )

        if self.command == "create":
            if self.file_text is None:
                return self.fail("file_text is required for the create command")
            return self._named(
                await CreateFile(
                    self.context, path=self.path, content=self.file_text
                ).run()
            )

        if self.command == "str_replace":
            if self.old_str is None:
                return self.fail("old_str is required for the str_replace command")
            return self._named(
                await StrReplaceEditor(
                    self.context,
                    path=self.path,
                    old_str=self.old_str,
                    new_str=self.new_str or "",
                ).run()
            )

        return await self._insert()

    async def _insert(self) -> ToolResult:
        if self.insert_line is None or self.new_str is None:
            return self.fail("insert_line and new_str are required for the insert command")

        target = self.context.resolve(self.path)
        try:
            content = _read_existing(target, self.path)
        except EditFailure as e:
            return self.fail(str(e))

        lines = content.splitlines(keepends=True)
        if self.insert_line > len(lines):
            return self.fail(
                f"Invalid insert line: {self.insert_line}. File has {len(lines)} "
                f"lines (can insert at line {len(lines)} to append)."
            )
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        inserted = self.new_str if self.new_str.endswith("\n") else self.new_str + "\n"
        new_content = "".join(lines[: self.insert_line] + [inserted] + lines[self.insert_line :])
        target.write_text(new_content, encoding="utf-8")
        return self.ok(make_diff(content, new_content, self.path), modified={self.path})
