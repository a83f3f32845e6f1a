"""Thread events: the append-only audit log of a task execution thread."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from jorel.core.ids import next_sequence, now_ms
from jorel.core.serialization import revive_dates, to_json_data


class ThreadEventType(str, Enum):
    GENERATION = "generation"
    DELEGATION = "delegation"
    TRANSFER = "transfer"
    THREAD_CHANGE = "threadChange"
    TOOL_USE = "toolUse"


@dataclass(frozen=True)
class TokenUsage:
    input: int | None = None
    output: int | None = None


@dataclass(frozen=True)
class GenerationEvent:
    event_type: ClassVar[ThreadEventType] = ThreadEventType.GENERATION
    message_id: str
    action: str
    model: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    timestamp: int = field(default_factory=now_ms)
    sequence: int = field(default_factory=next_sequence)


@dataclass(frozen=True)
class DelegationEvent:
    event_type: ClassVar[ThreadEventType] = ThreadEventType.DELEGATION
    message_id: str
    action: str
    delegate_to_agent_name: str
    timestamp: int = field(default_factory=now_ms)
    sequence: int = field(default_factory=next_sequence)


@dataclass(frozen=True)
class TransferEvent:
    event_type: ClassVar[ThreadEventType] = ThreadEventType.TRANSFER
    message_id: str
    action: str
    from_agent_name: str
    to_agent_name: str
    timestamp: int = field(default_factory=now_ms)
    sequence: int = field(default_factory=next_sequence)


@dataclass(frozen=True)
class ThreadChangeEvent:
    event_type: ClassVar[ThreadEventType] = ThreadEventType.THREAD_CHANGE
    message_id: str
    action: str
    target_thread_id: str
    timestamp: int = field(default_factory=now_ms)
    sequence: int = field(default_factory=next_sequence)


@dataclass(frozen=True)
class ToolUseEvent:
    event_type: ClassVar[ThreadEventType] = ThreadEventType.TOOL_USE
    message_id: str
    action: str
    tool_id: str
    tool_arguments: Any = None
    tool_result: Any = None
    tool_error: str | None = None
    timestamp: int = field(default_factory=now_ms)
    sequence: int = field(default_factory=next_sequence)


ThreadEvent = Union[GenerationEvent, DelegationEvent, TransferEvent, ThreadChangeEvent, ToolUseEvent]

_EVENT_CLASSES = {
    ThreadEventType.GENERATION: GenerationEvent,
    ThreadEventType.DELEGATION: DelegationEvent,
    ThreadEventType.TRANSFER: TransferEvent,
    ThreadEventType.THREAD_CHANGE: ThreadChangeEvent,
    ThreadEventType.TOOL_USE: ToolUseEvent,
}


@dataclass(frozen=True)
class ThreadEventRecord:
    """An event seen from the task: tagged with its thread and that thread's parent."""

    event: ThreadEvent
    thread_id: str
    parent_thread_id: str | None

    @property
    def timestamp(self) -> int:
        return self.event.timestamp

    @property
    def sequence(self) -> int:
        return self.event.sequence

    @property
    def event_type(self) -> ThreadEventType:
        return self.event.event_type


def event_to_dict(event: ThreadEvent) -> dict:
    return {"event_type": event.event_type.value, **to_json_data(asdict(event))}


def event_from_dict(data: dict) -> ThreadEvent:
    payload = dict(data)
    event_type = ThreadEventType(payload.pop("event_type"))
    if event_type == ThreadEventType.GENERATION:
        payload["token_usage"] = TokenUsage(**(payload.get("token_usage") or {}))
    elif event_type == ThreadEventType.TOOL_USE:
        payload["tool_arguments"] = revive_dates(payload.get("tool_arguments"))
        payload["tool_result"] = revive_dates(payload.get("tool_result"))
    # older snapshots carry no sequence
    payload.setdefault("sequence", 0)
    return _EVENT_CLASSES[event_type](**payload)
