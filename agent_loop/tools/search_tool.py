# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import re
import shutil
import asyncio
import fnmatch
import logging

from pathlib import Path
from typing import Literal, Optional
from pydantic import Field

from .base_tool import BaseTool, ToolContext
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

SKIP_DIRECTORIES = {
    "node_modules",
    ".git",
    ".svn",
    ".hg",
    "dist",
    "build",
    ".cache",
    "__pycache__",
    ".venv",
}


class SearchTool(BaseTool):
    """Searches file contents with ripgrep, and file names with a directory walk."""

    TOOL_NAME = "search"
    TOOL_DESCRIPTION = """Search the working directory for text in files, for file names, or both.

- search_type "text" searches file contents (ripgrep when available)
- search_type "files" matches file paths containing the query
- search_type "both" does both

Results are capped at max_results. Use include_pattern (a glob such as "*.py")
to narrow the search.
"""

    PARALLEL_SAFE = True

    query: str = Field(..., description="The text, regex or file name to look for", min_length=1)
    search_type: Literal["text", "files", "both"] = Field(
        "text", description="What to search"
    )
    include_pattern: Optional[str] = Field(
        None, description="Glob restricting which files are searched"
    )
    case_sensitive: bool = Field(False, description="Match case exactly")
    regex: bool = Field(False, description="Treat the query as a regular expression")
    max_results: int = Field(50, description="Maximum results to return", ge=1, le=1000)

    def __init__(self, context: ToolContext, **data):
        super().__init__(context=context, **data)

    async def run(self) -> ToolResult:
        if self.regex:
            try:
                re.compile(self.query)
            except re.error as e:
                return self.fail(f"Invalid search query: {e}", "validation_error")

        sections = []
        if self.search_type in ("text", "both"):
            matches = await self._search_text()
            if matches:
                sections.append(f"Text matches ({len(matches)}):\n" + "\n".join(matches))
        if self.search_type in ("files", "both"):
            files = self._search_files()
            if files:
                sections.append(f"Files ({len(files)}):\n" + "\n".join(files))

        if not sections:
            return self.ok(f"No matches found for {self.query!r}")
        return self.ok("\n\n".join(sections))

    async def _search_text(self) -> list[str]:
        if shutil.which("rg") is None:
            logger.debug("ripgrep not found, falling back to a Python scan")
            return self._scan_text()

        cmd = ["rg", "--line-number", "--no-heading", "--color", "never"]
        if not self.case_sensitive:
            cmd.append("--ignore-case")
        if not self.regex:
            cmd.append("--fixed-strings")
        if self.include_pattern:
            cmd.extend(["--glob", self.include_pattern])
        for directory in sorted(SKIP_DIRECTORIES):
            cmd.extend(["--glob", f"!{directory}/"])
        cmd.extend(["--max-count", str(self.max_results), "--", self.query, "."])

        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self.context.workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        # rg exits 1 when nothing matched
        if process.returncode not in (0, 1):
            raise RuntimeError(stderr.decode("utf-8", errors="replace").strip())

        lines = stdout.decode("utf-8", errors="replace").splitlines()
        return [line.removeprefix("./") for line in lines[: self.max_results]]

    def _walk(self):
        root = self.context.workdir
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root)
            if any(part in SKIP_DIRECTORIES for part in rel.parts):
                continue
            if path.is_file():
                yield path, rel

    def _included(self, rel: Path) -> bool:
        if not self.include_pattern:
            return True
        return fnmatch.fnmatch(rel.name, self.include_pattern) or fnmatch.fnmatch(
            str(rel), self.include_pattern
        )

    def _pattern(self) -> re.Pattern:
        flags = 0 if self.case_sensitive else re.IGNORECASE
        source = self.query if self.regex else re.escape(self.query)
        return re.compile(source, flags)

    def _scan_text(self) -> list[str]:
        pattern = self._pattern()
        results = []
        for path, rel in self._walk():
            if not self._included(rel):
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for lineno, line in enumerate(text.splitlines(), 1):
                if pattern.search(line):
                    results.append(f"{rel}:{lineno}:{line}")
                    if len(results) >= self.max_results:
                        return results
        return results

    def _search_files(self) -> list[str]:
        needle = self.query if self.case_sensitive else self.query.lower()
        results = []
        for _, rel in self._walk():
            if not self._included(rel):
                continue
            haystack = str(rel) if self.case_sensitive else str(rel).lower()
            if needle in haystack:
                results.append(str(rel))
                if len(results) >= self.max_results:
                    break
        return results
