"""
Message model — the provider-neutral shape of a conversation.

Four message variants, all frozen dataclasses:
- SystemMessage             plain text
- UserMessage               ordered content parts (text / image url / image data)
- AssistantMessage          plain text (+ optional reasoning)
- AssistantMessageWithToolCalls  text or None + ordered ToolCalls

Only AssistantMessageWithToolCalls carries tool calls. Messages and tool
calls are never mutated: every state change produces a new instance
(dataclasses.replace), and the owner swaps it into its list.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Sequence, Union

from jorel.core.ids import generate_unique_id, now_ms
from jorel.core.serialization import parse_iso_datetime, revive_dates, to_json_data
from jorel.documents import LlmDocumentCollection


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    ASSISTANT_WITH_TOOLS = "assistant_with_tools"


class ApprovalState(str, Enum):
    NO_APPROVAL_REQUIRED = "noApprovalRequired"
    REQUIRES_APPROVAL = "requiresApproval"
    APPROVED = "approved"
    REJECTED = "rejected"


class ExecutionState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_EXECUTION_STATES = frozenset(
    {ExecutionState.COMPLETED, ExecutionState.ERROR, ExecutionState.CANCELLED}
)


# ─── Tool calls ──────────────────────────────────────────────


@dataclass(frozen=True)
class ToolCallRequest:
    """What the model asked for: vendor call id, function name, arguments."""

    id: str
    name: str
    arguments: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallError:
    type: str
    message: str
    number_of_attempts: int = 1
    last_attempt: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation, tracked through approval and execution.

    `result` is only set for completed calls, and for in-progress calls
    where it carries the handle of a delegated thread. `error` is only
    set when execution_state is error.
    """

    request: ToolCallRequest
    id: str = field(default_factory=generate_unique_id)
    approval_state: ApprovalState = ApprovalState.NO_APPROVAL_REQUIRED
    execution_state: ExecutionState = ExecutionState.PENDING
    result: Any = None
    error: ToolCallError | None = None

    def __post_init__(self):
        object.__setattr__(self, "approval_state", ApprovalState(self.approval_state))
        object.__setattr__(self, "execution_state", ExecutionState(self.execution_state))
        if self.error is not None and self.execution_state != ExecutionState.ERROR:
            raise ValueError(
                f"Tool call {self.id}: error is only allowed in the error state"
            )
        if self.result is not None and self.execution_state not in (
            ExecutionState.COMPLETED,
            ExecutionState.IN_PROGRESS,
        ):
            raise ValueError(
                f"Tool call {self.id}: result is not allowed in the "
                f"{self.execution_state.value} state"
            )

    @property
    def name(self) -> str:
        return self.request.name

    @property
    def arguments(self) -> Any:
        return self.request.arguments

    @property
    def is_terminal(self) -> bool:
        return self.execution_state in TERMINAL_EXECUTION_STATES

    @property
    def is_unresolved(self) -> bool:
        return self.execution_state in (ExecutionState.PENDING, ExecutionState.IN_PROGRESS)

    # --- Transitions ---

    def completed(self, result: Any) -> ToolCall:
        return replace(self, execution_state=ExecutionState.COMPLETED, result=result, error=None)

    def in_progress(self, result: Any = None) -> ToolCall:
        return replace(self, execution_state=ExecutionState.IN_PROGRESS, result=result, error=None)

    def failed(self, error_type: str, message: str) -> ToolCall:
        attempts = self.error.number_of_attempts + 1 if self.error else 1
        return replace(
            self,
            execution_state=ExecutionState.ERROR,
            result=None,
            error=ToolCallError(
                type=error_type,
                message=message,
                number_of_attempts=attempts,
                last_attempt=datetime.now(timezone.utc),
            ),
        )

    def cancelled(self) -> ToolCall:
        return replace(self, execution_state=ExecutionState.CANCELLED, result=None, error=None)

    def with_approval(self, state: ApprovalState | str) -> ToolCall:
        return replace(self, approval_state=ApprovalState(state))

    # --- Plain data ---

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request": {
                "id": self.request.id,
                "name": self.request.name,
                "arguments": to_json_data(self.request.arguments),
            },
            "approval_state": self.approval_state.value,
            "execution_state": self.execution_state.value,
            "result": to_json_data(self.result),
            "error": (
                {
                    "type": self.error.type,
                    "message": self.error.message,
                    "number_of_attempts": self.error.number_of_attempts,
                    "last_attempt": self.error.last_attempt.isoformat(),
                }
                if self.error
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ToolCall:
        request = data["request"]
        error = data.get("error")
        return cls(
            id=data["id"],
            request=ToolCallRequest(
                id=request["id"],
                name=request["name"],
                arguments=revive_dates(request.get("arguments", {})),
            ),
            approval_state=ApprovalState(data.get("approval_state", "noApprovalRequired")),
            execution_state=ExecutionState(data.get("execution_state", "pending")),
            result=revive_dates(data.get("result")),
            error=(
                ToolCallError(
                    type=error["type"],
                    message=error["message"],
                    number_of_attempts=error.get("number_of_attempts", 1),
                    last_attempt=_as_datetime(error.get("last_attempt")),
                )
                if error
                else None
            ),
        )


# ─── Metadata ────────────────────────────────────────────────


@dataclass(frozen=True)
class GenerationAttempt:
    """Usage of a single provider call inside a tool loop."""

    model: str
    provider: str
    temperature: float | None
    duration_ms: int
    input_tokens: int | None
    output_tokens: int | None
    had_tool_calls: bool
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class AssistantMessageMeta:
    model: str
    provider: str
    temperature: float | None = None
    duration_ms: int = 0
    input_tokens: int | None = None
    output_tokens: int | None = None
    reasoning_tokens: int | None = None
    generations: tuple[GenerationAttempt, ...] | None = None


# ─── Content parts ───────────────────────────────────────────


@dataclass(frozen=True)
class TextContent:
    type: ClassVar[str] = "text"
    text: str


@dataclass(frozen=True)
class ImageUrlContent:
    type: ClassVar[str] = "imageUrl"
    url: str
    mime_type: str | None = None


@dataclass(frozen=True)
class ImageDataContent:
    """Base64-encoded image payload."""

    type: ClassVar[str] = "imageData"
    data: str
    mime_type: str | None = None

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type or 'image/png'};base64,{self.data}"


ContentPart = Union[TextContent, ImageUrlContent, ImageDataContent]


# ─── Messages ────────────────────────────────────────────────


@dataclass(frozen=True)
class SystemMessage:
    role: ClassVar[MessageRole] = MessageRole.SYSTEM
    content: str
    id: str = field(default_factory=generate_unique_id)
    created_at: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class UserMessage:
    role: ClassVar[MessageRole] = MessageRole.USER
    content: tuple[ContentPart, ...]
    id: str = field(default_factory=generate_unique_id)
    created_at: int = field(default_factory=now_ms)

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.content if isinstance(part, TextContent))


@dataclass(frozen=True)
class AssistantMessage:
    role: ClassVar[MessageRole] = MessageRole.ASSISTANT
    content: str
    id: str = field(default_factory=generate_unique_id)
    created_at: int = field(default_factory=now_ms)
    reasoning_content: str | None = None
    meta: AssistantMessageMeta | None = None


@dataclass(frozen=True)
class AssistantMessageWithToolCalls:
    role: ClassVar[MessageRole] = MessageRole.ASSISTANT_WITH_TOOLS
    content: str | None
    tool_calls: tuple[ToolCall, ...]
    id: str = field(default_factory=generate_unique_id)
    created_at: int = field(default_factory=now_ms)
    reasoning_content: str | None = None
    meta: AssistantMessageMeta | None = None

    def __post_init__(self):
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    def with_tool_calls(self, tool_calls: Sequence[ToolCall]) -> AssistantMessageWithToolCalls:
        return replace(self, tool_calls=tuple(tool_calls))

    def replace_tool_call(self, tool_call: ToolCall) -> AssistantMessageWithToolCalls:
        return self.with_tool_calls(
            tool_call if existing.id == tool_call.id else existing
            for existing in self.tool_calls
        )


Message = Union[SystemMessage, UserMessage, AssistantMessage, AssistantMessageWithToolCalls]


# ─── Factories ───────────────────────────────────────────────


def generate_user_message(content: str | ContentPart | Sequence[str | ContentPart]) -> UserMessage:
    if isinstance(content, (str, TextContent, ImageUrlContent, ImageDataContent)):
        content = [content]
    parts = tuple(TextContent(text=part) if isinstance(part, str) else part for part in content)
    return UserMessage(content=parts)


def generate_system_message(
    system_message: str,
    document_system_message: str | None = None,
    documents: LlmDocumentCollection | None = None,
) -> SystemMessage:
    """Build a system message, appending rendered documents if any are given."""
    if documents is not None and len(documents) > 0:
        if not document_system_message:
            raise ValueError(
                "Document system message must be provided when documents are provided."
            )
        if "{{documents}}" not in document_system_message:
            raise ValueError(
                "System message must include '{{documents}}' placeholder when documents are provided."
            )
        rendered = document_system_message.replace(
            "{{documents}}", documents.system_message_representation
        )
        return SystemMessage(content=f"{system_message}\n{rendered}")
    return SystemMessage(content=system_message)


def generate_assistant_message(
    content: str | None,
    tool_calls: Sequence[ToolCall] | None = None,
    reasoning_content: str | None = None,
    meta: AssistantMessageMeta | None = None,
) -> AssistantMessage | AssistantMessageWithToolCalls:
    if not tool_calls:
        return AssistantMessage(
            content=content or "", reasoning_content=reasoning_content, meta=meta
        )
    return AssistantMessageWithToolCalls(
        content=content or None,
        tool_calls=tuple(tool_calls),
        reasoning_content=reasoning_content,
        meta=meta,
    )


# ─── Plain data conversion ───────────────────────────────────


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        parsed = parse_iso_datetime(value)
        if parsed is not None:
            return parsed
    return datetime.now(timezone.utc)


def _meta_to_dict(meta: AssistantMessageMeta | None) -> dict | None:
    if meta is None:
        return None
    return {
        "model": meta.model,
        "provider": meta.provider,
        "temperature": meta.temperature,
        "duration_ms": meta.duration_ms,
        "input_tokens": meta.input_tokens,
        "output_tokens": meta.output_tokens,
        "reasoning_tokens": meta.reasoning_tokens,
        "generations": (
            [
                {
                    "model": g.model,
                    "provider": g.provider,
                    "temperature": g.temperature,
                    "duration_ms": g.duration_ms,
                    "input_tokens": g.input_tokens,
                    "output_tokens": g.output_tokens,
                    "had_tool_calls": g.had_tool_calls,
                    "timestamp": g.timestamp,
                }
                for g in meta.generations
            ]
            if meta.generations is not None
            else None
        ),
    }


def _meta_from_dict(data: dict | None) -> AssistantMessageMeta | None:
    if not data:
        return None
    generations = data.get("generations")
    return AssistantMessageMeta(
        model=data["model"],
        provider=data["provider"],
        temperature=data.get("temperature"),
        duration_ms=data.get("duration_ms", 0),
        input_tokens=data.get("input_tokens"),
        output_tokens=data.get("output_tokens"),
        reasoning_tokens=data.get("reasoning_tokens"),
        generations=(
            tuple(GenerationAttempt(**g) for g in generations) if generations is not None else None
        ),
    )


def _part_to_dict(part: ContentPart) -> dict:
    if isinstance(part, TextContent):
        return {"type": part.type, "text": part.text}
    if isinstance(part, ImageUrlContent):
        return {"type": part.type, "url": part.url, "mime_type": part.mime_type}
    return {"type": part.type, "data": part.data, "mime_type": part.mime_type}


def _part_from_dict(data: dict) -> ContentPart:
    kind = data.get("type")
    if kind == "text":
        return TextContent(text=data["text"])
    if kind == "imageUrl":
        return ImageUrlContent(url=data["url"], mime_type=data.get("mime_type"))
    if kind == "imageData":
        return ImageDataContent(data=data["data"], mime_type=data.get("mime_type"))
    raise ValueError(f"Unknown content part type: {kind}")


def message_to_dict(message: Message) -> dict:
    base = {"id": message.id, "role": message.role.value, "created_at": message.created_at}
    if isinstance(message, SystemMessage):
        return {**base, "content": message.content}
    if isinstance(message, UserMessage):
        return {**base, "content": [_part_to_dict(part) for part in message.content]}
    if isinstance(message, AssistantMessage):
        return {
            **base,
            "content": message.content,
            "reasoning_content": message.reasoning_content,
            "meta": _meta_to_dict(message.meta),
        }
    return {
        **base,
        "content": message.content,
        "tool_calls": [tool_call.to_dict() for tool_call in message.tool_calls],
        "reasoning_content": message.reasoning_content,
        "meta": _meta_to_dict(message.meta),
    }


def message_from_dict(data: dict) -> Message:
    role = MessageRole(data["role"])
    common = {"id": data["id"], "created_at": data.get("created_at") or now_ms()}
    if role == MessageRole.SYSTEM:
        return SystemMessage(content=data["content"], **common)
    if role == MessageRole.USER:
        content = data["content"]
        if isinstance(content, str):
            parts: tuple[ContentPart, ...] = (TextContent(text=content),)
        else:
            parts = tuple(_part_from_dict(part) for part in content)
        return UserMessage(content=parts, **common)
    if role == MessageRole.ASSISTANT:
        return AssistantMessage(
            content=data.get("content") or "",
            reasoning_content=data.get("reasoning_content"),
            meta=_meta_from_dict(data.get("meta")),
            **common,
        )
    return AssistantMessageWithToolCalls(
        content=data.get("content"),
        tool_calls=tuple(ToolCall.from_dict(tc) for tc in data.get("tool_calls", [])),
        reasoning_content=data.get("reasoning_content"),
        meta=_meta_from_dict(data.get("meta")),
        **common,
    )
