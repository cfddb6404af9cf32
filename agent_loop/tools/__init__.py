# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Built-in tools, argument validation and tool dispatch.
"""

from .base_tool import BaseTool, ToolContext, tool_registry
from .file_tools import CreateFile, ViewFile
from .edit_tools import MultiEdit, StrReplaceEditor, TextEditor
from .execute_command import BashTool
from .search_tool import SearchTool
from .todo_tools import CreateTodoList, UpdateTodoList
from .ask_user import AskUser
from .agent_tool import AgentTool
from .validator import validate_arguments
from .dispatcher import ToolDispatcher

toolkits: dict[str, list[type[BaseTool]]] = dict(
    coding=[
        ViewFile,
        CreateFile,
        StrReplaceEditor,
        TextEditor,
        MultiEdit,
        BashTool,
        SearchTool,
        CreateTodoList,
        UpdateTodoList,
        AskUser,
        AgentTool,
    ],
    read_only=[ViewFile, SearchTool],
)

__all__ = [
    "BaseTool",
    "ToolContext",
    "tool_registry",
    "toolkits",
    "validate_arguments",
    "ToolDispatcher",
    "ViewFile",
    "CreateFile",
    "StrReplaceEditor",
    "TextEditor",
    "MultiEdit",
    "BashTool",
    "SearchTool",
    "CreateTodoList",
    "UpdateTodoList",
    "AskUser",
    "AgentTool",
]
