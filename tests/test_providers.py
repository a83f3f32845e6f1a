"""Tests for the OpenAI provider — message conversion, requests, and a mocked client."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from jorel.core.errors import JorElAbortError
from jorel.llm.contracts import ChunkEvent, LlmGenerationConfig, ReasoningChunkEvent, ResponseEvent
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessage,
    AssistantMessageWithToolCalls,
    ImageDataContent,
    SystemMessage,
    ToolCall,
    ToolCallRequest,
    generate_user_message,
)
from jorel.providers.openai_llm import (
    OpenAIProvider,
    build_request,
    convert_messages,
    parse_tool_arguments,
)
from jorel.tools.tool import LlmTool
from jorel.tools.toolkit import LlmToolKit


# ─── Fixtures ────────────────────────────────────────────────


class _FakeStream:
    """Async iterator standing in for an OpenAI stream."""

    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def close(self):
        self.closed = True


def _make_usage(prompt=12, completion=7):
    return SimpleNamespace(prompt_tokens=prompt, completion_tokens=completion, completion_tokens_details=None)


def _make_chunk(content=None, tool_calls=None, usage=None, reasoning=None):
    if content is None and tool_calls is None and reasoning is None:
        return SimpleNamespace(usage=usage, choices=[])
    delta = SimpleNamespace(content=content, tool_calls=tool_calls, reasoning_content=reasoning)
    return SimpleNamespace(usage=usage, choices=[SimpleNamespace(delta=delta)])


def _make_tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


@pytest.fixture
def client():
    mock = MagicMock()
    mock.chat.completions.create = AsyncMock()
    mock.embeddings.create = AsyncMock()
    return mock


@pytest.fixture
def provider(client):
    return OpenAIProvider(client=client)


def _make_tools():
    return LlmToolKit(
        [
            LlmTool("get_weather", "Weather", executor=lambda args: args),
            LlmTool("delete_file", "Delete", executor=lambda args: args, requires_confirmation=True),
        ]
    )


# ─── Conversion ──────────────────────────────────────────────


class TestConversion:
    def test_plain_messages(self):
        converted = convert_messages(
            [SystemMessage(content="sys"), generate_user_message("hi"), AssistantMessage(content="hello")]
        )
        assert converted == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_images_become_content_parts(self):
        message = generate_user_message(["Look", ImageDataContent(data="AAAA", mime_type="image/jpeg")])
        converted = convert_messages([message])[0]
        assert converted["content"][1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/jpeg;base64,AAAA"},
        }

    def test_tool_calls_are_followed_by_results(self):
        done = ToolCall(request=ToolCallRequest(id="call_1", name="get_weather", arguments={"city": "Oslo"}))
        failed = ToolCall(request=ToolCallRequest(id="call_2", name="get_weather"))
        message = AssistantMessageWithToolCalls(
            content=None,
            tool_calls=(done.completed({"temp": 3}), failed.failed("ValueError", "bad city")),
        )
        converted = convert_messages([message])

        assert converted[0]["tool_calls"][0]["function"] == {
            "name": "get_weather",
            "arguments": '{"city": "Oslo"}',
        }
        assert converted[1] == {"role": "tool", "tool_call_id": "call_1", "content": '{"temp": 3}'}
        assert converted[2]["content"] == '{"error": "bad city"}'

    def test_parse_tool_arguments(self):
        assert parse_tool_arguments('{"a": 1}') == {"a": 1}
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("{not json") == {}


class TestBuildRequest:
    def test_json_mode_and_tools(self):
        kwargs = build_request(
            "gpt-4o",
            [generate_user_message("hi")],
            LlmGenerationConfig(temperature=0.3, json_mode=True, tools=_make_tools()),
        )
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.3
        assert kwargs["tool_choice"] == "auto"
        assert [tool["function"]["name"] for tool in kwargs["tools"]] == ["get_weather", "delete_file"]
        assert "parallel_tool_calls" not in kwargs

    def test_json_schema(self):
        schema = {"type": "object", "properties": {"x": {"type": "number"}}}
        kwargs = build_request("gpt-4o", [], LlmGenerationConfig(json_mode=schema))
        assert kwargs["response_format"]["json_schema"]["schema"] == schema

    def test_named_tool_choice_and_serial_calls(self):
        tools = _make_tools()
        tools.allow_parallel_calls = False
        kwargs = build_request("gpt-4o", [], LlmGenerationConfig(tools=tools, tool_choice="get_weather"))
        assert kwargs["tool_choice"] == {"type": "function", "function": {"name": "get_weather"}}
        assert kwargs["parallel_tool_calls"] is False

    def test_unset_fields_are_omitted(self):
        kwargs = build_request("gpt-4o", [], LlmGenerationConfig())
        assert set(kwargs) == {"model", "messages"}


# ─── Client calls ────────────────────────────────────────────


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_response(self, provider, client):
        tool_call = SimpleNamespace(
            id="call_9",
            function=SimpleNamespace(name="delete_file", arguments='{"path": "/tmp/x"}'),
        )
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None, tool_calls=[tool_call]))],
            usage=_make_usage(),
        )

        response = await provider.generate_response(
            "gpt-4o", [generate_user_message("clean up")], LlmGenerationConfig(tools=_make_tools())
        )

        call = response.tool_calls[0]
        assert call.request.id == "call_9"
        assert call.arguments == {"path": "/tmp/x"}
        assert call.approval_state == ApprovalState.REQUIRES_APPROVAL
        assert response.meta.provider == "openai"
        assert response.meta.input_tokens == 12
        assert response.meta.output_tokens == 7

    @pytest.mark.asyncio
    async def test_stream_accumulates_tool_call_fragments(self, provider, client):
        stream = _FakeStream(
            [
                _make_chunk(content="Checking"),
                _make_chunk(reasoning="thinking"),
                _make_chunk(tool_calls=[_make_tool_delta(0, "call_1", "get_weather", '{"ci')]),
                _make_chunk(tool_calls=[_make_tool_delta(0, arguments='ty": "Rome"}')]),
                _make_chunk(usage=_make_usage(20, 4)),
            ]
        )
        client.chat.completions.create.return_value = stream

        events = [
            event
            async for event in provider.generate_response_stream(
                "gpt-4o", [generate_user_message("weather?")], LlmGenerationConfig(tools=_make_tools())
            )
        ]

        assert isinstance(events[0], ChunkEvent)
        assert isinstance(events[1], ReasoningChunkEvent)
        response = events[-1]
        assert isinstance(response, ResponseEvent)
        assert response.content == "Checking"
        assert response.reasoning_content == "thinking"
        assert response.tool_calls[0].arguments == {"city": "Rome"}
        assert response.tool_calls[0].approval_state == ApprovalState.NO_APPROVAL_REQUIRED
        assert response.meta.input_tokens == 20
        assert stream.closed

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_already_aborted_request(self, provider, client):
        abort = asyncio.Event()
        abort.set()
        with pytest.raises(JorElAbortError):
            await provider.generate_response("gpt-4o", [], LlmGenerationConfig(abort=abort))

    @pytest.mark.asyncio
    async def test_abort_while_waiting(self, provider, client):
        abort = asyncio.Event()

        async def hang(**kwargs):
            await asyncio.sleep(10)

        client.chat.completions.create.side_effect = hang
        task = asyncio.ensure_future(
            provider.generate_response("gpt-4o", [], LlmGenerationConfig(abort=abort))
        )
        await asyncio.sleep(0.01)
        abort.set()
        with pytest.raises(JorElAbortError):
            await task

    @pytest.mark.asyncio
    async def test_cancelling_the_caller_cancels_the_request(self, provider, client):
        abort = asyncio.Event()
        request_cancelled = asyncio.Event()

        async def hang(**kwargs):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                request_cancelled.set()
                raise

        client.chat.completions.create.side_effect = hang
        task = asyncio.ensure_future(
            provider.generate_response("gpt-4o", [], LlmGenerationConfig(abort=abort))
        )
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.wait_for(request_cancelled.wait(), timeout=1)
        assert request_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_embedding(self, provider, client):
        client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.5, 0.25])]
        )
        assert await provider.create_embedding("text-embedding-3-small", "hello") == [0.5, 0.25]
        client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input="hello")
