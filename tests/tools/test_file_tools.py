# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the file viewing and editing tools."""
import pytest

from agent_loop.tools import (
    CreateFile,
    MultiEdit,
    StrReplaceEditor,
    TextEditor,
    ViewFile,
)
from agent_loop.tools.base_tool import ToolContext


@pytest.fixture
def context(tmp_path):
    (tmp_path / "main.py").write_text("def main():\n    return 1\n")
    (tmp_path / "pkg").mkdir()
    return ToolContext(workdir=tmp_path)


class TestViewFile:
    @pytest.mark.asyncio
    async def test_view_whole_file(self, context):
        result = await ViewFile(context, path="main.py").run()

        assert result.success
        assert "1 | def main():" in result.output
        assert "2 |     return 1" in result.output

    @pytest.mark.asyncio
    async def test_view_range(self, context):
        result = await ViewFile(context, path="main.py", start_line=2, end_line=2).run()

        assert result.success
        assert "Lines 2-2" in result.output
        assert "def main" not in result.output

    @pytest.mark.asyncio
    async def test_view_directory(self, context):
        result = await ViewFile(context, path=".").run()

        assert "main.py" in result.output
        assert "pkg/" in result.output

    @pytest.mark.asyncio
    async def test_missing_file(self, context):
        result = await ViewFile(context, path="nope.py").run()

        assert not result.success
        assert "not found" in result.errors

    @pytest.mark.asyncio
    async def test_bad_range(self, context):
        result = await ViewFile(context, path="main.py", start_line=10, end_line=12).run()
        assert "exceeds file length" in result.errors

        result = await ViewFile(context, path="main.py", start_line=2, end_line=1).run()
        assert "Invalid line range" in result.errors


class TestCreateFile:
    @pytest.mark.asyncio
    async def test_create(self, context):
        result = await CreateFile(context, path="pkg/new/mod.py", content="x = 1\n").run()

        assert result.success
        assert (context.workdir / "pkg/new/mod.py").read_text() == "x = 1\n"
        assert result.side_effects.files_created == {"pkg/new/mod.py"}

    @pytest.mark.asyncio
    async def test_refuses_to_overwrite(self, context):
        result = await CreateFile(context, path="main.py", content="").run()

        assert not result.success
        assert "already exists" in result.errors
        assert "return 1" in (context.workdir / "main.py").read_text()


class TestStrReplaceEditor:
    @pytest.mark.asyncio
    async def test_replace(self, context):
        result = await StrReplaceEditor(
            context, path="main.py", old_str="return 1", new_str="return 2"
        ).run()

        assert result.success
        assert "return 2" in (context.workdir / "main.py").read_text()
        assert "-    return 1" in result.output
        assert "+    return 2" in result.output
        assert result.side_effects.files_modified == {"main.py"}

    @pytest.mark.asyncio
    async def test_string_not_found(self, context):
        result = await StrReplaceEditor(
            context, path="main.py", old_str="return 3", new_str="return 2"
        ).run()

        assert not result.success
        assert "String not found in file" in result.errors
        assert "view_file" in result.errors

    @pytest.mark.asyncio
    async def test_multiple_occurrences_warn(self, context):
        (context.workdir / "dup.txt").write_text("a a a")
        result = await StrReplaceEditor(context, path="dup.txt", old_str="a", new_str="b").run()

        assert (context.workdir / "dup.txt").read_text() == "b a a"
        assert "occurs 3 times" in result.warnings

    @pytest.mark.asyncio
    async def test_replace_all(self, context):
        (context.workdir / "dup.txt").write_text("a a a")
        await StrReplaceEditor(
            context, path="dup.txt", old_str="a", new_str="b", replace_all=True
        ).run()

        assert (context.workdir / "dup.txt").read_text() == "b b b"


class TestMultiEdit:
    @pytest.mark.asyncio
    async def test_edits_apply_in_order(self, context):
        result = await MultiEdit(
            context,
            path="main.py",
            edits=[
                {"old_str": "main", "new_str": "run"},
                {"old_str": "def run", "new_str": "async def run"},
            ],
        ).run()

        assert result.success
        assert (context.workdir / "main.py").read_text().startswith("async def run():")

    @pytest.mark.asyncio
    async def test_failure_is_atomic(self, context):
        result = await MultiEdit(
            context,
            path="main.py",
            edits=[
                {"old_str": "main", "new_str": "run"},
                {"old_str": "missing", "new_str": "x"},
            ],
        ).run()

        assert not result.success
        assert result.errors.startswith("Edit 2:")
        assert (context.workdir / "main.py").read_text().startswith("def main():")


class TestTextEditor:
    @pytest.mark.asyncio
    async def test_commands(self, context):
        created = await TextEditor(
            context, command="create", path="notes.md", file_text="one\nthree\n"
        ).run()
        assert created.success
        assert created.tool_name == "text_editor"

        inserted = await TextEditor(
            context, command="insert", path="notes.md", insert_line=1, new_str="two"
        ).run()
        assert inserted.success
        assert (context.workdir / "notes.md").read_text() == "one\ntwo\nthree\n"

        replaced = await TextEditor(
            context, command="str_replace", path="notes.md", old_str="three", new_str="3"
        ).run()
        assert replaced.success

        viewed = await TextEditor(context, command="view", path="notes.md", view_range=[3, 3]).run()
        assert "3 | 3" in viewed.output

    @pytest.mark.asyncio
    async def test_insert_out_of_range(self, context):
        result = await TextEditor(
            context, command="insert", path="main.py", insert_line=9, new_str="x"
        ).run()
        assert "Invalid insert line" in result.errors

    @pytest.mark.asyncio
    async def test_create_requires_text(self, context):
        result = await TextEditor(context, command="create", path="x.py").run()
        assert "file_text is required" in result.errors
