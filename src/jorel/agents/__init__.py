"""Agents — personas, task threads, the task state machine and the team manager."""

from jorel.agents.agent import LlmAgent, LlmAgentDefinition
from jorel.agents.events import (
    DelegationEvent,
    GenerationEvent,
    ThreadChangeEvent,
    ThreadEventRecord,
    ThreadEventType,
    TokenUsage,
    ToolUseEvent,
    TransferEvent,
)
from jorel.agents.manager import DELEGATE_TOOL_NAME, TRANSFER_TOOL_NAME, JorElAgentManager
from jorel.agents.task_execution import (
    HaltReason,
    TaskExecution,
    TaskExecutionDefinition,
    TaskExecutionLimits,
    TaskStats,
    TaskStatus,
)
from jorel.agents.thread import (
    MAIN_THREAD_ID,
    PendingApproval,
    TaskExecutionThread,
    TaskExecutionThreadDefinition,
)

__all__ = [
    "DELEGATE_TOOL_NAME",
    "DelegationEvent",
    "GenerationEvent",
    "HaltReason",
    "JorElAgentManager",
    "LlmAgent",
    "LlmAgentDefinition",
    "MAIN_THREAD_ID",
    "PendingApproval",
    "TRANSFER_TOOL_NAME",
    "TaskExecution",
    "TaskExecutionDefinition",
    "TaskExecutionLimits",
    "TaskExecutionThread",
    "TaskExecutionThreadDefinition",
    "TaskStats",
    "TaskStatus",
    "ThreadChangeEvent",
    "ThreadEventRecord",
    "ThreadEventType",
    "TokenUsage",
    "ToolUseEvent",
    "TransferEvent",
]
