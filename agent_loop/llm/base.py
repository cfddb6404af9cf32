# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Base client interface for LLM interactions."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence

from ..types.llm_types import Message, Turn
from ..types.tool_types import ToolResult, ToolSpec

ChatItem = Message | Turn | ToolResult


class LLMClient(ABC):
    """
    Anything that can turn a conversation plus tool schemas into a stream of
    OpenAI-shaped chat completion chunks.

    Each chunk is a plain dict, e.g.::

        {"choices": [{"index": 0, "delta": {"content": "Hel"}, "finish_reason": None}]}
        {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 3}}

    Implementations must raise ``TransportError`` when the model cannot be
    reached, and must not retry internally.
    """

    @abstractmethod
    def stream_chat(
        self,
        messages: Sequence[ChatItem],
        tools: list[ToolSpec] | None = None,
        **options: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream the next assistant turn as raw chunks."""
        pass


__all__ = ["LLMClient", "ChatItem", "Message"]
