"""
TaskExecutionThread — one agent's branch of conversation inside a task.

Threads live in the task's thread map and point at their parent by id
only. Messages are immutable; changing a tool call means swapping the
whole message via replace_message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Union

from jorel.agents.events import ThreadEvent, event_from_dict, event_to_dict
from jorel.core.errors import TaskCreationError, TaskExecutionError
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessage,
    AssistantMessageWithToolCalls,
    ToolCall,
    UserMessage,
    message_from_dict,
    message_to_dict,
)
from jorel.tools import utilities

MAIN_THREAD_ID = "__main__"

ThreadMessage = Union[UserMessage, AssistantMessage, AssistantMessageWithToolCalls]


@dataclass
class TaskExecutionThreadDefinition:
    """Plain-data snapshot of a thread."""

    id: str
    agent_id: str
    messages: list[ThreadMessage]
    parent_thread_id: str | None = None
    parent_tool_call_id: str | None = None
    events: list[ThreadEvent] = field(default_factory=list)
    modified: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "messages": [message_to_dict(message) for message in self.messages],
            "parent_thread_id": self.parent_thread_id,
            "parent_tool_call_id": self.parent_tool_call_id,
            "events": [event_to_dict(event) for event in self.events],
            "modified": self.modified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TaskExecutionThreadDefinition:
        return cls(
            id=data["id"],
            agent_id=data["agent_id"],
            messages=[message_from_dict(message) for message in data.get("messages", [])],
            parent_thread_id=data.get("parent_thread_id"),
            parent_tool_call_id=data.get("parent_tool_call_id"),
            events=[event_from_dict(event) for event in data.get("events", [])],
            modified=bool(data.get("modified", False)),
        )


@dataclass(frozen=True)
class PendingApproval:
    """A tool call waiting for approval, with where to find it."""

    tool_call: ToolCall
    message_id: str
    thread_id: str


class TaskExecutionThread:
    """Messages and events of one agent within a task."""

    def __init__(self, definition: TaskExecutionThreadDefinition):
        if not definition.messages:
            raise TaskCreationError(f"Thread {definition.id}: messages cannot be empty")
        for message in definition.messages:
            if not isinstance(message, (UserMessage, AssistantMessage, AssistantMessageWithToolCalls)):
                raise TaskCreationError(
                    f"Thread {definition.id}: {message.role.value} messages are not allowed in a thread"
                )

        self.id = definition.id
        self.agent_id = definition.agent_id
        self.parent_thread_id = definition.parent_thread_id
        self.parent_tool_call_id = definition.parent_tool_call_id
        self._messages: list[ThreadMessage] = list(definition.messages)
        self._events: list[ThreadEvent] = list(definition.events)
        self.modified = definition.modified

    @property
    def is_main(self) -> bool:
        return self.id == MAIN_THREAD_ID

    @property
    def messages(self) -> list[ThreadMessage]:
        return list(self._messages)

    @property
    def events(self) -> list[ThreadEvent]:
        return list(self._events)

    @property
    def latest_message(self) -> ThreadMessage:
        return self._messages[-1]

    # --- Mutations (all mark the thread modified) ---

    def add_message(self, message: ThreadMessage) -> None:
        self._messages.append(message)
        self.modified = True

    def replace_message(self, message: ThreadMessage) -> None:
        """Swap the message that has the same id."""
        for index, existing in enumerate(self._messages):
            if existing.id == message.id:
                self._messages[index] = message
                self.modified = True
                return
        raise TaskExecutionError(f"Thread {self.id}: message {message.id} not found")

    def add_event(self, event: ThreadEvent) -> None:
        self._events.append(event)
        self.modified = True

    def reassign_agent(self, agent_id: str) -> None:
        self.agent_id = agent_id
        self.modified = True

    def find_tool_call_message(self, tool_call_id: str) -> AssistantMessageWithToolCalls | None:
        for message in self._messages:
            if isinstance(message, AssistantMessageWithToolCalls) and any(
                call.id == tool_call_id for call in message.tool_calls
            ):
                return message
        return None

    # --- Approvals ---

    @property
    def tool_calls_with_pending_approvals(self) -> list[PendingApproval]:
        return [
            PendingApproval(tool_call=call, message_id=message.id, thread_id=self.id)
            for message in self._messages
            if isinstance(message, AssistantMessageWithToolCalls)
            for call in utilities.extract_calls_requiring_approval(message.tool_calls)
        ]

    def approve_or_reject_tool_calls(
        self,
        approval_state: ApprovalState,
        tool_call_ids: str | Iterable[str] | None = None,
        message_id: str | None = None,
    ) -> bool:
        """Approve or reject calls awaiting approval. True if anything changed.

        Without ids every waiting call is affected; without message_id every
        message of the thread is searched.
        """
        if approval_state == ApprovalState.APPROVED:
            transition = utilities.approve_message_calls
        elif approval_state == ApprovalState.REJECTED:
            transition = utilities.reject_message_calls
        else:
            raise ValueError(f"Cannot set approval state to {approval_state}")

        changed = False
        for index, message in enumerate(self._messages):
            if not isinstance(message, AssistantMessageWithToolCalls):
                continue
            if message_id is not None and message.id != message_id:
                continue
            updated = transition(message, tool_call_ids)
            if updated != message:
                self._messages[index] = updated
                changed = True
        if changed:
            self.modified = True
        return changed

    # --- Snapshots ---

    @property
    def definition(self) -> TaskExecutionThreadDefinition:
        return TaskExecutionThreadDefinition(
            id=self.id,
            agent_id=self.agent_id,
            messages=list(self._messages),
            parent_thread_id=self.parent_thread_id,
            parent_tool_call_id=self.parent_tool_call_id,
            events=list(self._events),
            modified=self.modified,
        )

    def copy(self) -> TaskExecutionThread:
        return TaskExecutionThread(self.definition)

    def __repr__(self) -> str:
        return f"<TaskExecutionThread:{self.id} agent={self.agent_id} messages={len(self._messages)}>"
