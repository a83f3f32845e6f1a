"""
LLM layer — message model, request/stream contracts, and the generation core.

    messages.py   Message variants, ToolCall, metadata, factories
    contracts.py  LlmGenerationConfig, LlmResponse, stream events
    buffer.py     chunk coalescing for streams
    overrides.py  model-specific parameter quirks
    registry.py   ProviderManager / ModelManager
    core.py       JorElCoreStore

The core is imported from jorel.llm.core directly; this package only
re-exports the data model so that tools and providers can depend on it.
"""

from jorel.llm.contracts import (
    ChunkEvent,
    GenerationResult,
    LlmError,
    LlmGenerationConfig,
    LlmResponse,
    MessageEndEvent,
    MessagesEvent,
    MessageStartEvent,
    ReasoningChunkEvent,
    ResponseEvent,
    StopReason,
    StreamBufferConfig,
    ToolCallCompletedEvent,
    ToolCallStartedEvent,
)
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessage,
    AssistantMessageMeta,
    AssistantMessageWithToolCalls,
    ExecutionState,
    GenerationAttempt,
    ImageDataContent,
    ImageUrlContent,
    Message,
    MessageRole,
    SystemMessage,
    TextContent,
    ToolCall,
    ToolCallError,
    ToolCallRequest,
    UserMessage,
    generate_assistant_message,
    generate_system_message,
    generate_user_message,
)

__all__ = [
    "ApprovalState",
    "AssistantMessage",
    "AssistantMessageMeta",
    "AssistantMessageWithToolCalls",
    "ChunkEvent",
    "ExecutionState",
    "GenerationAttempt",
    "GenerationResult",
    "ImageDataContent",
    "ImageUrlContent",
    "LlmError",
    "LlmGenerationConfig",
    "LlmResponse",
    "Message",
    "MessageEndEvent",
    "MessageRole",
    "MessageStartEvent",
    "MessagesEvent",
    "ReasoningChunkEvent",
    "ResponseEvent",
    "StopReason",
    "StreamBufferConfig",
    "SystemMessage",
    "TextContent",
    "ToolCall",
    "ToolCallCompletedEvent",
    "ToolCallError",
    "ToolCallRequest",
    "ToolCallStartedEvent",
    "UserMessage",
    "generate_assistant_message",
    "generate_system_message",
    "generate_user_message",
]
