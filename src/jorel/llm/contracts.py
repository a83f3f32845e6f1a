"""
LLM contracts — generation config, provider responses and stream events.

Everything that crosses the boundary between JorElCoreStore, providers
and callers lives here:

- LlmGenerationConfig: per-request knobs (all optional, None = unset)
- LlmResponse:         one completed provider generation
- GenerationResult:    outcome of a non-streaming tool loop
- Stream events:       messageStart, chunk, reasoningChunk, toolCallStarted,
                       toolCallCompleted, messageEnd, response, messages
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Union

from jorel.core.ids import generate_unique_id
from jorel.llm.messages import (
    AssistantMessage,
    AssistantMessageMeta,
    AssistantMessageWithToolCalls,
    Message,
    MessageRole,
    ToolCall,
    generate_assistant_message,
)

if TYPE_CHECKING:
    from jorel.tools.toolkit import LlmToolKit


class StopReason(str, Enum):
    COMPLETED = "completed"
    USER_CANCELLED = "userCancelled"
    GENERATION_ERROR = "generationError"
    TOOL_CALLS_REQUIRE_APPROVAL = "toolCallsRequireApproval"


@dataclass(frozen=True)
class StreamBufferConfig:
    """Coalesce content chunks arriving within buffer_time_ms of each other."""

    buffer_time_ms: int = 0
    disabled: bool = False

    @property
    def active(self) -> bool:
        return not self.disabled and self.buffer_time_ms > 0


@dataclass
class LlmGenerationConfig:
    """Per-request generation settings. None means "not set"."""

    model: str | None = None
    system_message: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    # True for free-form JSON, or a JSON schema dict
    json_mode: bool | dict | None = None
    tools: LlmToolKit | None = None
    # "none" | "auto" | "required" | a tool name
    tool_choice: str | None = None
    reasoning_effort: str | None = None
    verbosity: str | None = None
    abort: asyncio.Event | None = None
    logger: logging.Logger | None = None
    stream_buffer: StreamBufferConfig | None = None
    context: dict | None = None
    secure_context: dict | None = field(default=None, repr=False)
    max_tool_calls: int | None = None
    max_tool_call_errors: int | None = None

    @property
    def aborted(self) -> bool:
        return self.abort is not None and self.abort.is_set()

    def merged(self, **overrides: Any) -> LlmGenerationConfig:
        return replace(self, **overrides)


@dataclass(frozen=True)
class LlmError:
    message: str
    type: str = "unknown"


@dataclass(frozen=True)
class LlmResponse:
    """A single provider generation: text or tool calls, plus usage."""

    content: str | None
    meta: AssistantMessageMeta
    tool_calls: tuple[ToolCall, ...] = ()
    reasoning_content: str | None = None
    id: str = field(default_factory=generate_unique_id)

    @property
    def role(self) -> MessageRole:
        return MessageRole.ASSISTANT_WITH_TOOLS if self.tool_calls else MessageRole.ASSISTANT

    def to_message(self) -> AssistantMessage | AssistantMessageWithToolCalls:
        return generate_assistant_message(
            self.content, self.tool_calls, self.reasoning_content, self.meta
        )


@dataclass(frozen=True)
class GenerationResult:
    """Final output of generate_and_process_tools."""

    output: AssistantMessage | AssistantMessageWithToolCalls
    messages: list[Message]
    stop_reason: StopReason = StopReason.COMPLETED


# ─── Stream events ───────────────────────────────────────────


@dataclass(frozen=True)
class MessageStartEvent:
    type: ClassVar[str] = "messageStart"
    message_id: str


@dataclass(frozen=True)
class ChunkEvent:
    type: ClassVar[str] = "chunk"
    content: str
    chunk_id: str = field(default_factory=generate_unique_id)


@dataclass(frozen=True)
class ReasoningChunkEvent:
    type: ClassVar[str] = "reasoningChunk"
    content: str
    chunk_id: str = field(default_factory=generate_unique_id)


@dataclass(frozen=True)
class ToolCallStartedEvent:
    type: ClassVar[str] = "toolCallStarted"
    tool_call: ToolCall


@dataclass(frozen=True)
class ToolCallCompletedEvent:
    type: ClassVar[str] = "toolCallCompleted"
    tool_call: ToolCall


@dataclass(frozen=True)
class MessageEndEvent:
    type: ClassVar[str] = "messageEnd"
    message_id: str
    message: Message


@dataclass(frozen=True)
class ResponseEvent:
    """Terminal summary of one generation inside a stream."""

    type: ClassVar[str] = "response"
    content: str | None
    meta: AssistantMessageMeta
    tool_calls: tuple[ToolCall, ...] = ()
    reasoning_content: str | None = None
    stop_reason: StopReason = StopReason.COMPLETED
    error: LlmError | None = None

    @property
    def role(self) -> MessageRole:
        return MessageRole.ASSISTANT_WITH_TOOLS if self.tool_calls else MessageRole.ASSISTANT


@dataclass(frozen=True)
class MessagesEvent:
    """Terminal event of a request: full transcript and why it stopped."""

    type: ClassVar[str] = "messages"
    messages: list[Message]
    stop_reason: StopReason
    error: LlmError | None = None


ProviderStreamEvent = Union[
    ChunkEvent,
    ReasoningChunkEvent,
    ToolCallStartedEvent,
    ToolCallCompletedEvent,
    ResponseEvent,
]

StreamEvent = Union[
    MessageStartEvent,
    ChunkEvent,
    ReasoningChunkEvent,
    ToolCallStartedEvent,
    ToolCallCompletedEvent,
    MessageEndEvent,
    ResponseEvent,
    MessagesEvent,
]
