"""
TaskExecution — the resumable unit of work of an agent team.

A task is a map of threads (thread id -> TaskExecutionThread) plus the id
of the thread that drives the next step. Status changes only through the
transition methods:

    pending --start()--> running --halt(reason)--> halted --reopen()--> running
                                 --complete()----> completed

Every cross reference (active thread, parent threads, agents) is checked
when a task is built, so a persisted definition either rehydrates into a
consistent graph or fails with TaskCreationError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence

from jorel.agents.events import GenerationEvent, ThreadEventRecord
from jorel.agents.thread import (
    MAIN_THREAD_ID,
    PendingApproval,
    TaskExecutionThread,
    TaskExecutionThreadDefinition,
)
from jorel.core.errors import TaskCreationError, TaskExecutionError
from jorel.core.ids import generate_unique_id
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessage,
    ContentPart,
    generate_user_message,
)

if TYPE_CHECKING:
    from jorel.agents.manager import JorElAgentManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    HALTED = "halted"
    COMPLETED = "completed"


class HaltReason(str, Enum):
    MAX_ITERATIONS = "maxIterations"
    MAX_GENERATIONS = "maxGenerations"
    MAX_DELEGATIONS = "maxDelegations"
    APPROVAL_REQUIRED = "approvalRequired"
    INVALID_STATE = "invalidState"
    ERROR = "error"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TaskStats:
    generations: int = 0
    delegations: int = 0


@dataclass(frozen=True)
class TaskExecutionLimits:
    """Checked before every execute_task iteration.

    A generation or delegation limit of None or 0 means unlimited.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_generations: int | None = None
    max_delegations: int | None = None


@dataclass(frozen=True)
class ModelTokenUsage:
    input: int = 0
    output: int = 0


@dataclass(frozen=True)
class TaskEventStatistics:
    events: list[ThreadEventRecord]
    stats: TaskStats
    tokens: dict[str, ModelTokenUsage]


@dataclass
class TaskExecutionDefinition:
    """Plain-data snapshot of a task, suitable for JSON persistence."""

    id: str
    status: TaskStatus
    threads: dict[str, TaskExecutionThreadDefinition]
    active_thread_id: str
    stats: TaskStats = field(default_factory=TaskStats)
    modified: bool = False
    halt_reason: HaltReason | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": TaskStatus(self.status).value,
            "threads": {thread_id: thread.to_dict() for thread_id, thread in self.threads.items()},
            "active_thread_id": self.active_thread_id,
            "stats": {
                "generations": self.stats.generations,
                "delegations": self.stats.delegations,
            },
            "modified": self.modified,
            "halt_reason": HaltReason(self.halt_reason).value if self.halt_reason else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TaskExecutionDefinition:
        stats = data.get("stats") or {}
        halt_reason = data.get("halt_reason")
        return cls(
            id=data["id"],
            status=TaskStatus(data["status"]),
            threads={
                thread_id: TaskExecutionThreadDefinition.from_dict(thread)
                for thread_id, thread in data["threads"].items()
            },
            active_thread_id=data["active_thread_id"],
            stats=TaskStats(
                generations=stats.get("generations", 0),
                delegations=stats.get("delegations", 0),
            ),
            modified=bool(data.get("modified", False)),
            halt_reason=HaltReason(halt_reason) if halt_reason else None,
        )


class TaskExecution:
    """A task: threads, the active thread, status and statistics."""

    def __init__(self, definition: TaskExecutionDefinition, manager: JorElAgentManager):
        self.id = definition.id
        self._manager = manager
        self._status = TaskStatus(definition.status)
        self._halt_reason = HaltReason(definition.halt_reason) if definition.halt_reason else None
        self._stats = definition.stats
        self._modified = definition.modified

        self.threads: dict[str, TaskExecutionThread] = {}
        for thread_id, thread_definition in definition.threads.items():
            if thread_definition.id != thread_id:
                raise TaskCreationError(
                    f"Task {self.id}: thread {thread_definition.id} is stored under id {thread_id}"
                )
            self.threads[thread_id] = TaskExecutionThread(thread_definition)

        for thread in self.threads.values():
            if thread.parent_thread_id is not None and thread.parent_thread_id not in self.threads:
                raise TaskCreationError(
                    f"Task {self.id}: parent thread {thread.parent_thread_id} "
                    f"not found (thread {thread.id})"
                )
            if manager.get_agent(thread.agent_id) is None:
                raise TaskCreationError(
                    f"Task {self.id}: agent {thread.agent_id} not found (thread {thread.id})"
                )

        if definition.active_thread_id not in self.threads:
            raise TaskCreationError(
                f"Task {self.id}: active thread {definition.active_thread_id} not found"
            )
        self._active_thread_id = definition.active_thread_id

    @classmethod
    def from_task(
        cls,
        task: str | ContentPart | Sequence[str | ContentPart],
        agent_id: str,
        manager: JorElAgentManager,
    ) -> TaskExecution:
        """A pending task whose main thread holds one user message."""
        return cls(
            TaskExecutionDefinition(
                id=generate_unique_id(),
                status=TaskStatus.PENDING,
                threads={
                    MAIN_THREAD_ID: TaskExecutionThreadDefinition(
                        id=MAIN_THREAD_ID,
                        agent_id=agent_id,
                        messages=[generate_user_message(task)],
                    )
                },
                active_thread_id=MAIN_THREAD_ID,
            ),
            manager,
        )

    # --- State ---

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def halt_reason(self) -> HaltReason | None:
        return self._halt_reason

    @property
    def stats(self) -> TaskStats:
        return self._stats

    @property
    def is_finished(self) -> bool:
        return self._status in (TaskStatus.HALTED, TaskStatus.COMPLETED)

    @property
    def active_thread_id(self) -> str:
        return self._active_thread_id

    @property
    def active_thread(self) -> TaskExecutionThread:
        return self.threads[self._active_thread_id]

    @property
    def modified(self) -> bool:
        return self._modified or any(thread.modified for thread in self.threads.values())

    def reset_modified(self) -> None:
        self._modified = False
        for thread in self.threads.values():
            thread.modified = False

    # --- Transitions ---

    def start(self) -> None:
        if self._status == TaskStatus.RUNNING:
            return
        if self._status != TaskStatus.PENDING:
            raise TaskExecutionError(f"Task {self.id}: cannot start a {self._status.value} task")
        self._status = TaskStatus.RUNNING
        self._modified = True

    def halt(self, reason: HaltReason) -> TaskExecution:
        reason = HaltReason(reason)
        if reason == HaltReason.COMPLETED:
            return self.complete()
        self._status = TaskStatus.HALTED
        self._halt_reason = reason
        self._modified = True
        logger.debug(f"Task {self.id} halted: {reason.value}", extra={"task_id": self.id})
        return self

    def complete(self) -> TaskExecution:
        self._status = TaskStatus.COMPLETED
        self._halt_reason = HaltReason.COMPLETED
        self._modified = True
        return self

    def reopen(self) -> TaskExecution:
        """Halted -> running. Completed tasks reopen only through a follow-up message."""
        if self._status == TaskStatus.COMPLETED:
            raise TaskExecutionError(f"Task {self.id}: cannot reopen a completed task")
        self._status = TaskStatus.RUNNING
        self._halt_reason = None
        self._modified = True
        return self

    def switch_thread(self, thread_id: str) -> None:
        if thread_id not in self.threads:
            raise TaskExecutionError(f"Task {self.id}: thread {thread_id} not found")
        self._active_thread_id = thread_id
        self._modified = True

    def add_thread(self, thread: TaskExecutionThread) -> None:
        if thread.id in self.threads:
            raise TaskExecutionError(f"Task {self.id}: thread {thread.id} already exists")
        if thread.parent_thread_id is not None and thread.parent_thread_id not in self.threads:
            raise TaskExecutionError(
                f"Task {self.id}: parent thread {thread.parent_thread_id} not found"
            )
        if self._manager.get_agent(thread.agent_id) is None:
            raise TaskExecutionError(f"Task {self.id}: agent {thread.agent_id} not found")
        self.threads[thread.id] = thread
        self._modified = True

    def record_generation(self) -> None:
        self._stats = replace(self._stats, generations=self._stats.generations + 1)
        self._modified = True

    def record_delegation(self) -> None:
        self._stats = replace(self._stats, delegations=self._stats.delegations + 1)
        self._modified = True

    # --- Results and events ---

    @property
    def result(self) -> str | None:
        """The final answer: the main thread's closing assistant message."""
        thread = self.active_thread
        if not thread.is_main or not isinstance(thread.latest_message, AssistantMessage):
            return None
        return thread.latest_message.content

    def get_events_by_thread(self, thread_id: str | None = None) -> list[ThreadEventRecord]:
        """Events of one thread, or all threads, in the order they were recorded."""
        if thread_id is not None and thread_id not in self.threads:
            raise TaskExecutionError(f"Task {self.id}: thread {thread_id} not found")
        thread_ids = [thread_id] if thread_id is not None else list(self.threads)

        records = [
            ThreadEventRecord(
                event=event,
                thread_id=current_id,
                parent_thread_id=self.threads[current_id].parent_thread_id,
            )
            for current_id in thread_ids
            for event in self.threads[current_id].events
        ]
        records.sort(key=lambda record: (record.timestamp, record.sequence))
        return records

    @property
    def events(self) -> list[ThreadEventRecord]:
        return self.get_events_by_thread()

    @property
    def events_with_statistics(self) -> TaskEventStatistics:
        events = self.get_events_by_thread()
        tokens: dict[str, ModelTokenUsage] = {}
        for record in events:
            event = record.event
            if isinstance(event, GenerationEvent):
                usage = tokens.get(event.model, ModelTokenUsage())
                tokens[event.model] = ModelTokenUsage(
                    input=usage.input + (event.token_usage.input or 0),
                    output=usage.output + (event.token_usage.output or 0),
                )
        return TaskEventStatistics(events=events, stats=self._stats, tokens=tokens)

    # --- Approvals ---

    @property
    def tool_calls_with_pending_approvals(self) -> list[PendingApproval]:
        return [
            pending
            for thread in self.threads.values()
            for pending in thread.tool_calls_with_pending_approvals
        ]

    def approve_tool_calls(
        self,
        tool_call_ids: str | Iterable[str] | None = None,
        message_id: str | None = None,
        thread_id: str | None = None,
    ) -> TaskExecution:
        return self._set_approval(ApprovalState.APPROVED, tool_call_ids, message_id, thread_id)

    def reject_tool_calls(
        self,
        tool_call_ids: str | Iterable[str] | None = None,
        message_id: str | None = None,
        thread_id: str | None = None,
    ) -> TaskExecution:
        return self._set_approval(ApprovalState.REJECTED, tool_call_ids, message_id, thread_id)

    def _set_approval(
        self,
        state: ApprovalState,
        tool_call_ids: str | Iterable[str] | None,
        message_id: str | None,
        thread_id: str | None,
    ) -> TaskExecution:
        if isinstance(tool_call_ids, str):
            tool_call_ids = [tool_call_ids]
        elif tool_call_ids is not None:
            tool_call_ids = list(tool_call_ids)

        if thread_id is not None and thread_id not in self.threads:
            raise TaskExecutionError(f"Task {self.id}: thread {thread_id} not found")
        threads = [self.threads[thread_id]] if thread_id is not None else self.threads.values()
        for thread in threads:
            thread.approve_or_reject_tool_calls(state, tool_call_ids, message_id)

        if (
            self._status == TaskStatus.HALTED
            and self._halt_reason == HaltReason.APPROVAL_REQUIRED
            and not self.tool_calls_with_pending_approvals
        ):
            self.reopen()
        return self

    # --- Follow-ups and snapshots ---

    def add_follow_up_user_message(
        self, content: str | ContentPart | Sequence[str | ContentPart]
    ) -> TaskExecution:
        """A running copy of this task with a new user message on the main thread."""
        if not self.active_thread.is_main:
            raise TaskExecutionError(f"Task {self.id}: cannot add a message to a non-main thread")
        if not isinstance(self.active_thread.latest_message, AssistantMessage):
            raise TaskExecutionError(
                f"Task {self.id}: the last message is not an assistant response"
            )

        task = self.copy()
        task.active_thread.add_message(generate_user_message(content))
        task._status = TaskStatus.RUNNING
        task._halt_reason = None
        task._modified = True
        return task

    @property
    def definition(self) -> TaskExecutionDefinition:
        return TaskExecutionDefinition(
            id=self.id,
            status=self._status,
            threads={thread_id: thread.definition for thread_id, thread in self.threads.items()},
            active_thread_id=self._active_thread_id,
            stats=self._stats,
            modified=self._modified,
            halt_reason=self._halt_reason,
        )

    def copy(self) -> TaskExecution:
        return TaskExecution(self.definition, self._manager)

    def to_dict(self) -> dict:
        return self.definition.to_dict()

    def __repr__(self) -> str:
        return (
            f"<TaskExecution:{self.id} status={self._status.value} "
            f"active={self._active_thread_id} threads={len(self.threads)}>"
        )
