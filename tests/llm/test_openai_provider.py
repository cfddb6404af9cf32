# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

from unittest.mock import AsyncMock, MagicMock
from openai import OpenAIError

from agent_loop.llm.providers import OpenAIProvider
from agent_loop.llm.reducer import reduce_chunks
from agent_loop.types.error_types import TransportError
from agent_loop.types.llm_types import Message, ToolCallDraft, Turn
from agent_loop.types.tool_types import ToolResult, ToolSpec


class FakeChunk:
    def __init__(self, data):
        self.data = data

    def model_dump(self):
        return self.data


class FakeStream:
    def __init__(self, chunks):
        self.chunks = [FakeChunk(c) for c in chunks]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk


def make_provider(create: AsyncMock, **kwargs) -> OpenAIProvider:
    sdk = MagicMock()
    sdk.chat.completions.create = create
    return OpenAIProvider(model="test-model", client=sdk, **kwargs)


async def collect(provider, messages, tools=None):
    return [chunk async for chunk in provider.stream_chat(messages, tools)]


class TestOpenAIProvider:
    def test_message_conversion(self):
        provider = make_provider(AsyncMock())
        turn = Turn(
            content="Let me look",
            tool_calls=(
                ToolCallDraft(index=0, id="call_1", function_name="view_file", raw_arguments='{"path": "a"}'),
            ),
        )
        messages = [
            Message(role="system", content="sys"),
            Message(role="user", content="hi", name="alice"),
            turn,
            ToolResult(tool_name="view_file", success=False, errors="not found", call_id="call_1"),
        ]

        converted = provider._prepare_messages(messages)

        assert converted[0] == {"role": "system", "content": "sys"}
        assert converted[1] == {"role": "user", "content": "hi", "name": "alice"}
        assert converted[2]["tool_calls"][0] == {
            "id": "call_1",
            "type": "function",
            "function": {"name": "view_file", "arguments": '{"path": "a"}'},
        }
        assert converted[3] == {"role": "tool", "tool_call_id": "call_1", "content": "not found"}

    @pytest.mark.asyncio
    async def test_streaming_request(self):
        chunks = [
            {"choices": [{"index": 0, "delta": {"content": "Hi"}, "finish_reason": None}]},
            {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
        ]
        create = AsyncMock(return_value=FakeStream(chunks))
        provider = make_provider(create)
        tools = [ToolSpec(name="bash", description="Run", input_schema={"type": "object"})]

        received = await collect(provider, [Message(role="user", content="hi")], tools)

        assert received == chunks
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert kwargs["tools"][0]["function"]["name"] == "bash"

    @pytest.mark.asyncio
    async def test_non_streaming_response_is_one_chunk(self):
        response = MagicMock()
        response.model_dump.return_value = {
            "choices": [
                {"index": 0, "message": {"role": "assistant", "content": "Done"}, "finish_reason": "stop"}
            ],
            "usage": {"prompt_tokens": 4, "completion_tokens": 1},
        }
        provider = make_provider(AsyncMock(return_value=response), stream=False)

        received = await collect(provider, [Message(role="user", content="hi")])

        assert len(received) == 1
        turn = reduce_chunks(received)
        assert turn.content == "Done"
        assert turn.usage.prompt_tokens == 4

    @pytest.mark.asyncio
    async def test_sdk_errors_become_transport_errors(self):
        provider = make_provider(AsyncMock(side_effect=OpenAIError("quota exceeded")))

        with pytest.raises(TransportError, match="LLM request failed: quota exceeded"):
            await collect(provider, [Message(role="user", content="hi")])
