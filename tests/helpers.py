# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Scripted LLM client and chunk builders shared by the test suites."""

import json
import asyncio

from typing import Any, Sequence

from agent_loop.llm.base import ChatItem, LLMClient
from agent_loop.types.tool_types import ToolSpec


def split(text: str, size: int = 7) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)] or [""]


def text_response(
    text: str, usage: dict[str, int] | None = None, piece_size: int = 5
) -> list[dict[str, Any]]:
    """Chunks of a plain text reply, streamed in small pieces."""
    chunks: list[dict[str, Any]] = [
        {"choices": [{"index": 0, "delta": {"role": "assistant"}, "finish_reason": None}]}
    ]
    if text:
        for piece in split(text, piece_size):
            chunks.append(
                {"choices": [{"index": 0, "delta": {"content": piece}, "finish_reason": None}]}
            )
    chunks.append({"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]})
    chunks.append(
        {"choices": [], "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5}}
    )
    return chunks


def tool_call(
    name: str, arguments: dict[str, Any] | str, call_id: str | None = None
) -> tuple[str, str, str | None]:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return name, raw, call_id


def tool_response(
    *calls: tuple[str, str, str | None],
    content: str = "",
    usage: dict[str, int] | None = None,
    with_ids: bool = True,
) -> list[dict[str, Any]]:
    """Chunks of a reply making the given tool calls, with the argument text
    of each call split over several fragments. With ``with_ids=False`` the
    calls carry no id, as some providers send them."""
    chunks: list[dict[str, Any]] = [
        {"choices": [{"index": 0, "delta": {"role": "assistant"}, "finish_reason": None}]}
    ]
    if content:
        chunks.append(
            {"choices": [{"index": 0, "delta": {"content": content}, "finish_reason": None}]}
        )
    for index, (name, raw, call_id) in enumerate(calls):
        header = {
            "index": index,
            "type": "function",
            "function": {"name": name, "arguments": ""},
        }
        if with_ids:
            header["id"] = call_id or f"call_{index}_{name}"
        chunks.append(
            {"choices": [{"index": 0, "delta": {"tool_calls": [header]}, "finish_reason": None}]}
        )
        for fragment in split(raw):
            chunks.append(
                {
                    "choices": [
                        {
                            "index": 0,
                            "delta": {
                                "tool_calls": [
                                    {"index": index, "function": {"arguments": fragment}}
                                ]
                            },
                            "finish_reason": None,
                        }
                    ]
                }
            )
    chunks.append({"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]})
    chunks.append(
        {"choices": [], "usage": usage or {"prompt_tokens": 20, "completion_tokens": 8}}
    )
    return chunks


class ScriptedClient(LLMClient):
    """
    Replays a fixed list of responses. Each response is either a list of
    chunks, or an exception to raise when the stream is opened.
    """

    def __init__(self, responses: Sequence[list[dict[str, Any]] | Exception], delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    @property
    def remaining(self) -> int:
        return len(self.responses)

    async def stream_chat(
        self,
        messages: Sequence[ChatItem],
        tools: list[ToolSpec] | None = None,
        **options: Any,
    ):
        self.calls.append(dict(messages=list(messages), tools=tools, options=options))
        if not self.responses:
            raise AssertionError("ScriptedClient ran out of responses")
        response = self.responses.pop(0)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(response, Exception):
            raise response
        for chunk in response:
            yield chunk
