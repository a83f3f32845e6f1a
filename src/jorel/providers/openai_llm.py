"""
OpenAI LLM Provider — chat completions with streaming and tool calling.

Also serves every OpenAI-compatible vendor (Groq, Grok, Mistral,
OpenRouter, Ollama) through base_url, and Azure OpenAI through
AsyncAzureOpenAI. Streams text and reasoning tokens as they arrive;
tool calls are accumulated across chunks (OpenAI sends them
incrementally) and reported once in the final ResponseEvent.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Awaitable, Sequence, TypeVar

from openai import AsyncAzureOpenAI, AsyncOpenAI

from jorel.core.errors import JorElAbortError
from jorel.core.logging import GenerationTimer
from jorel.core.serialization import deserialize, serialize
from jorel.llm.contracts import (
    ChunkEvent,
    LlmGenerationConfig,
    LlmResponse,
    ProviderStreamEvent,
    ReasoningChunkEvent,
    ResponseEvent,
)
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessage,
    AssistantMessageMeta,
    AssistantMessageWithToolCalls,
    ExecutionState,
    ImageDataContent,
    ImageUrlContent,
    Message,
    SystemMessage,
    TextContent,
    ToolCall,
    ToolCallRequest,
    UserMessage,
)
from jorel.providers.base import LlmCoreProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _with_abort(awaitable: Awaitable[T], abort: asyncio.Event | None) -> T:
    """Await `awaitable`, cancelling it if the abort event fires first."""
    if abort is None:
        return await awaitable
    if abort.is_set():
        raise JorElAbortError("Request was aborted")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if task in done:
        return task.result()
    task.cancel()
    raise JorElAbortError("Request was aborted")


def parse_tool_arguments(raw: str | None) -> Any:
    if not raw:
        return {}
    try:
        return deserialize(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool args: {raw[:100]}")
        return {}


def create_tool_call(call_id: str, name: str, raw_arguments: str | None, config: LlmGenerationConfig) -> ToolCall:
    """Build a pending ToolCall, gated on approval if the tool asks for it."""
    tool = config.tools.get_tool(name) if config.tools is not None else None
    approval = (
        ApprovalState.REQUIRES_APPROVAL
        if tool is not None and tool.requires_confirmation
        else ApprovalState.NO_APPROVAL_REQUIRED
    )
    return ToolCall(
        request=ToolCallRequest(id=call_id, name=name, arguments=parse_tool_arguments(raw_arguments)),
        approval_state=approval,
    )


def _tool_result_content(call: ToolCall) -> str:
    if call.execution_state == ExecutionState.COMPLETED:
        return serialize(call.result)
    if call.execution_state == ExecutionState.ERROR and call.error is not None:
        return serialize({"error": call.error.message})
    if call.execution_state == ExecutionState.CANCELLED:
        return serialize({"error": "Tool call was cancelled"})
    return serialize({"error": "Tool call has not been executed"})


def convert_messages(messages: Sequence[Message]) -> list[dict]:
    """Neutral messages -> OpenAI chat completion messages."""
    converted: list[dict] = []
    for message in messages:
        if isinstance(message, SystemMessage):
            converted.append({"role": "system", "content": message.content})
        elif isinstance(message, UserMessage):
            converted.append({"role": "user", "content": _convert_user_content(message)})
        elif isinstance(message, AssistantMessage):
            converted.append({"role": "assistant", "content": message.content})
        elif isinstance(message, AssistantMessageWithToolCalls):
            converted.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.request.id,
                            "type": "function",
                            "function": {
                                "name": call.request.name,
                                "arguments": serialize(call.request.arguments),
                            },
                        }
                        for call in message.tool_calls
                    ],
                }
            )
            for call in message.tool_calls:
                converted.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.request.id,
                        "content": _tool_result_content(call),
                    }
                )
    return converted


def _convert_user_content(message: UserMessage) -> str | list[dict]:
    if len(message.content) == 1 and isinstance(message.content[0], TextContent):
        return message.content[0].text
    parts: list[dict] = []
    for part in message.content:
        if isinstance(part, TextContent):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImageUrlContent):
            parts.append({"type": "image_url", "image_url": {"url": part.url}})
        elif isinstance(part, ImageDataContent):
            parts.append({"type": "image_url", "image_url": {"url": part.data_url}})
    return parts


def _tool_choice(choice: str) -> str | dict:
    if choice in ("none", "auto", "required"):
        return choice
    return {"type": "function", "function": {"name": choice}}


def build_request(model: str, messages: Sequence[Message], config: LlmGenerationConfig) -> dict:
    kwargs: dict = {"model": model, "messages": convert_messages(messages)}
    if config.temperature is not None:
        kwargs["temperature"] = config.temperature
    if config.max_tokens is not None:
        kwargs["max_tokens"] = config.max_tokens
    if config.json_mode is True:
        kwargs["response_format"] = {"type": "json_object"}
    elif isinstance(config.json_mode, dict):
        kwargs["response_format"] = {
            "type": "json_schema",
            "json_schema": {"name": "response", "schema": config.json_mode},
        }
    if config.reasoning_effort:
        kwargs["reasoning_effort"] = config.reasoning_effort
    if config.verbosity:
        kwargs["verbosity"] = config.verbosity

    functions = config.tools.as_llm_functions() if config.tools is not None else None
    if functions:
        kwargs["tools"] = functions
        kwargs["tool_choice"] = _tool_choice(config.tool_choice or "auto")
        if not config.tools.allow_parallel_calls:
            kwargs["parallel_tool_calls"] = False
    return kwargs


class OpenAIProvider(LlmCoreProvider):
    """OpenAI chat completions, or any API speaking the same protocol."""

    def __init__(
        self,
        name: str = "openai",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ):
        self.name = name
        self._api_key = api_key or None
        self._base_url = base_url or None
        self._timeout = timeout
        self._client = client

    def _create_client(self) -> AsyncOpenAI:
        client_kwargs: dict = {"timeout": self._timeout}
        if self._api_key:
            client_kwargs["api_key"] = self._api_key
        if self._base_url:
            client_kwargs["base_url"] = self._base_url
            logger.info(f"Using custom base_url: {self._base_url}")
        return AsyncOpenAI(**client_kwargs)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def generate_response(
        self,
        model: str,
        messages: Sequence[Message],
        config: LlmGenerationConfig,
    ) -> LlmResponse:
        timer = GenerationTimer()
        kwargs = build_request(model, messages, config)
        response = await _with_abort(self.client.chat.completions.create(**kwargs), config.abort)

        choice = response.choices[0]
        tool_calls = tuple(
            create_tool_call(tc.id, tc.function.name, tc.function.arguments, config)
            for tc in (choice.message.tool_calls or [])
        )
        usage = response.usage
        return LlmResponse(
            content=choice.message.content,
            tool_calls=tool_calls,
            reasoning_content=getattr(choice.message, "reasoning_content", None),
            meta=AssistantMessageMeta(
                model=model,
                provider=self.name,
                temperature=config.temperature,
                duration_ms=timer.elapsed_ms(),
                input_tokens=usage.prompt_tokens if usage else None,
                output_tokens=usage.completion_tokens if usage else None,
                reasoning_tokens=_reasoning_tokens(usage),
            ),
        )

    async def generate_response_stream(
        self,
        model: str,
        messages: Sequence[Message],
        config: LlmGenerationConfig,
    ) -> AsyncGenerator[ProviderStreamEvent, None]:
        timer = GenerationTimer()
        kwargs = build_request(model, messages, config)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        stream = await _with_abort(self.client.chat.completions.create(**kwargs), config.abort)

        content = ""
        reasoning = ""
        pending_tool_calls: dict[int, dict] = {}
        usage = None

        try:
            async for chunk in stream:
                if config.aborted:
                    break
                if chunk.usage:
                    usage = chunk.usage
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta

                if delta.content:
                    content += delta.content
                    yield ChunkEvent(content=delta.content)

                reasoning_delta = getattr(delta, "reasoning_content", None) or getattr(
                    delta, "reasoning", None
                )
                if reasoning_delta:
                    reasoning += reasoning_delta
                    yield ReasoningChunkEvent(content=reasoning_delta)

                # index, name, then argument fragments
                for tc in delta.tool_calls or []:
                    entry = pending_tool_calls.setdefault(
                        tc.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function and tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["arguments"] += tc.function.arguments
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

        tool_calls = tuple(
            create_tool_call(data["id"], data["name"], data["arguments"], config)
            for _, data in sorted(pending_tool_calls.items())
        )
        yield ResponseEvent(
            content=content,
            reasoning_content=reasoning or None,
            tool_calls=tool_calls,
            meta=AssistantMessageMeta(
                model=model,
                provider=self.name,
                temperature=config.temperature,
                duration_ms=timer.elapsed_ms(),
                input_tokens=usage.prompt_tokens if usage else None,
                output_tokens=usage.completion_tokens if usage else None,
                reasoning_tokens=_reasoning_tokens(usage),
            ),
        )

    async def create_embedding(
        self,
        model: str,
        text: str,
        abort: asyncio.Event | None = None,
    ) -> list[float]:
        response = await _with_abort(
            self.client.embeddings.create(model=model, input=text), abort
        )
        return list(response.data[0].embedding)

    async def get_available_models(self) -> list[str]:
        return [model.id async for model in self.client.models.list()]


class AzureOpenAIProvider(OpenAIProvider):
    """Azure OpenAI. Model names are deployment names."""

    def __init__(
        self,
        name: str = "azure-openai",
        api_key: str | None = None,
        endpoint: str | None = None,
        api_version: str = "2024-10-21",
        timeout: float = 60.0,
        client: AsyncAzureOpenAI | None = None,
    ):
        super().__init__(name=name, api_key=api_key, timeout=timeout, client=client)
        self._endpoint = endpoint
        self._api_version = api_version

    def _create_client(self) -> AsyncAzureOpenAI:
        return AsyncAzureOpenAI(
            api_key=self._api_key,
            azure_endpoint=self._endpoint,
            api_version=self._api_version,
            timeout=self._timeout,
        )


def _reasoning_tokens(usage: Any) -> int | None:
    details = getattr(usage, "completion_tokens_details", None) if usage else None
    return getattr(details, "reasoning_tokens", None) if details else None
