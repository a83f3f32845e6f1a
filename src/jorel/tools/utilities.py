"""
Tool-call utilities — pure functions over tool calls and messages.

Approval helpers only ever touch calls that are still `requiresApproval`,
so approving or rejecting twice is a no-op. Cancellation only touches
calls that have not reached a terminal execution state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from jorel.llm.messages import (
    ApprovalState,
    AssistantMessageWithToolCalls,
    ExecutionState,
    Message,
    ToolCall,
)


def _id_filter(ids: str | Iterable[str] | None) -> set[str] | None:
    if ids is None:
        return None
    if isinstance(ids, str):
        return {ids}
    return set(ids)


# ─── Extraction ──────────────────────────────────────────────


def extract_calls_requiring_approval(calls: Sequence[ToolCall]) -> list[ToolCall]:
    return [call for call in calls if call.approval_state == ApprovalState.REQUIRES_APPROVAL]


def extract_pending_calls(calls: Sequence[ToolCall]) -> list[ToolCall]:
    return [call for call in calls if call.execution_state == ExecutionState.PENDING]


def extract_completed_calls(calls: Sequence[ToolCall]) -> list[ToolCall]:
    return [call for call in calls if call.execution_state == ExecutionState.COMPLETED]


def extract_errored_calls(calls: Sequence[ToolCall]) -> list[ToolCall]:
    return [call for call in calls if call.execution_state == ExecutionState.ERROR]


def has_calls_requiring_approval(calls: Sequence[ToolCall]) -> bool:
    return any(call.approval_state == ApprovalState.REQUIRES_APPROVAL for call in calls)


def has_pending_calls(calls: Sequence[ToolCall]) -> bool:
    return any(call.is_unresolved for call in calls)


# ─── Transitions over calls ──────────────────────────────────


def _set_approval(
    calls: Sequence[ToolCall], state: ApprovalState, ids: str | Iterable[str] | None
) -> list[ToolCall]:
    wanted = _id_filter(ids)
    updated = []
    for call in calls:
        if call.approval_state == ApprovalState.REQUIRES_APPROVAL and (
            wanted is None or call.id in wanted
        ):
            call = call.with_approval(state)
        updated.append(call)
    return updated


def approve_calls(
    calls: Sequence[ToolCall], ids: str | Iterable[str] | None = None
) -> list[ToolCall]:
    return _set_approval(calls, ApprovalState.APPROVED, ids)


def reject_calls(
    calls: Sequence[ToolCall], ids: str | Iterable[str] | None = None
) -> list[ToolCall]:
    return _set_approval(calls, ApprovalState.REJECTED, ids)


def cancel_calls(
    calls: Sequence[ToolCall], ids: str | Iterable[str] | None = None
) -> list[ToolCall]:
    wanted = _id_filter(ids)
    return [
        call.cancelled()
        if not call.is_terminal and (wanted is None or call.id in wanted)
        else call
        for call in calls
    ]


# ─── Message-level helpers ───────────────────────────────────


def approve_message_calls(
    message: AssistantMessageWithToolCalls, ids: str | Iterable[str] | None = None
) -> AssistantMessageWithToolCalls:
    return message.with_tool_calls(approve_calls(message.tool_calls, ids))


def reject_message_calls(
    message: AssistantMessageWithToolCalls, ids: str | Iterable[str] | None = None
) -> AssistantMessageWithToolCalls:
    return message.with_tool_calls(reject_calls(message.tool_calls, ids))


def cancel_message_calls(
    message: AssistantMessageWithToolCalls, ids: str | Iterable[str] | None = None
) -> AssistantMessageWithToolCalls:
    return message.with_tool_calls(cancel_calls(message.tool_calls, ids))


def _map_tool_messages(messages: Sequence[Message], func, ids) -> list[Message]:
    return [
        func(message, ids) if isinstance(message, AssistantMessageWithToolCalls) else message
        for message in messages
    ]


def approve_calls_in_messages(
    messages: Sequence[Message], ids: str | Iterable[str] | None = None
) -> list[Message]:
    return _map_tool_messages(messages, approve_message_calls, ids)


def reject_calls_in_messages(
    messages: Sequence[Message], ids: str | Iterable[str] | None = None
) -> list[Message]:
    return _map_tool_messages(messages, reject_message_calls, ids)


def cancel_calls_in_messages(
    messages: Sequence[Message], ids: str | Iterable[str] | None = None
) -> list[Message]:
    return _map_tool_messages(messages, cancel_message_calls, ids)


def calls_requiring_approval_in_messages(messages: Sequence[Message]) -> list[ToolCall]:
    return [
        call
        for message in messages
        if isinstance(message, AssistantMessageWithToolCalls)
        for call in extract_calls_requiring_approval(message.tool_calls)
    ]


# ─── Summary ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ToolCallSummary:
    total: int
    pending: int
    in_progress: int
    completed: int
    error: int
    cancelled: int
    requires_approval: int
    approved: int
    rejected: int


def get_tool_call_summary(calls: Sequence[ToolCall]) -> ToolCallSummary:
    def count_execution(state: ExecutionState) -> int:
        return sum(1 for call in calls if call.execution_state == state)

    def count_approval(state: ApprovalState) -> int:
        return sum(1 for call in calls if call.approval_state == state)

    return ToolCallSummary(
        total=len(calls),
        pending=count_execution(ExecutionState.PENDING),
        in_progress=count_execution(ExecutionState.IN_PROGRESS),
        completed=count_execution(ExecutionState.COMPLETED),
        error=count_execution(ExecutionState.ERROR),
        cancelled=count_execution(ExecutionState.CANCELLED),
        requires_approval=count_approval(ApprovalState.REQUIRES_APPROVAL),
        approved=count_approval(ApprovalState.APPROVED),
        rejected=count_approval(ApprovalState.REJECTED),
    )
