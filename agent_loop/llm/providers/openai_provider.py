# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""OpenAI-compatible LLM provider implementation."""

import logging

from typing import Any, AsyncIterator, Sequence
from openai import AsyncOpenAI, OpenAIError

from ..base import ChatItem, LLMClient
from ...types.error_types import TransportError
from ...types.llm_types import Message, Turn
from ...types.tool_types import ToolResult, ToolSpec

logger = logging.getLogger(__name__)


def to_native_tool(spec: ToolSpec) -> dict:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.input_schema,
        },
    }


class OpenAIProvider(LLMClient):
    """Provider for any endpoint speaking the OpenAI chat completions API."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.2,
        stream: bool = True,
        max_tokens: int | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.temperature = temperature
        self.stream = stream
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.base_url = base_url
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so that a missing API key only fails the request
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def _prepare_messages(self, messages: Sequence[ChatItem]) -> list[dict]:
        # Prepare the messages from our format to OpenAI compatible
        oai_messages = []
        for msg in messages:
            if isinstance(msg, Turn):
                entry: dict[str, Any] = {"role": "assistant", "content": msg.content}
                if msg.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.function_name,
                                "arguments": tc.raw_arguments,
                            },
                        }
                        for tc in msg.tool_calls
                    ]
                oai_messages.append(entry)
            elif isinstance(msg, ToolResult):
                oai_messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": msg.call_id,
                        "content": msg.to_plain_string(),
                    }
                )
            elif isinstance(msg, Message):
                entry = {"role": msg.role, "content": msg.content}
                if msg.name:
                    entry["name"] = msg.name
                oai_messages.append(entry)
            else:
                raise ValueError(f"Cannot send {type(msg).__name__} to the model")
        return oai_messages

    def _request_args(
        self,
        messages: Sequence[ChatItem],
        tools: list[ToolSpec] | None,
        options: dict[str, Any],
    ) -> dict[str, Any]:
        args = {
            "messages": self._prepare_messages(messages),
            "model": options.get("model", self.model),
            "temperature": options.get("temperature", self.temperature),
        }
        max_tokens = options.get("max_tokens", self.max_tokens)
        if max_tokens:
            args["max_tokens"] = max_tokens
        if tools:
            args["tools"] = [to_native_tool(t) for t in tools]
        return args

    async def stream_chat(
        self,
        messages: Sequence[ChatItem],
        tools: list[ToolSpec] | None = None,
        **options: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        args = self._request_args(messages, tools, options)

        try:
            if not options.get("stream", self.stream):
                response = await self.client.chat.completions.create(**args)
                yield self._as_single_chunk(response.model_dump())
                return

            stream = await self.client.chat.completions.create(
                **args,
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in stream:
                yield chunk.model_dump()
        except OpenAIError as e:
            logger.warning(f"Model call to {args['model']} failed: {e}")
            raise TransportError(f"LLM request failed: {e}") from e

    @staticmethod
    def _as_single_chunk(response: dict[str, Any]) -> dict[str, Any]:
        """Rewrite a non-streaming response so it goes through the same
        reduction path as a stream."""
        choices = response.get("choices")
        chunk: dict[str, Any] = {"usage": response.get("usage")}
        if choices is None:
            return chunk
        chunk["choices"] = [
            {
                "index": c.get("index", 0),
                "delta": c.get("message") or {},
                "finish_reason": c.get("finish_reason"),
            }
            for c in choices
        ]
        return chunk
