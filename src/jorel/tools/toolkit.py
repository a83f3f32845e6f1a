"""
LlmToolKit — tool registry and invocation engine.

Holds tools by unique name, classifies a batch of tool calls, executes
approved function calls with error capture, and batch approves / rejects /
cancels calls. Tool failures never escape as exceptions: they are written
into the ToolCall's error field and the batch moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence

from jorel.core.errors import ToolKitError
from jorel.core.serialization import deserialize, serialize, to_jsonable
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessageWithToolCalls,
    ExecutionState,
    ToolCall,
)
from jorel.tools import utilities
from jorel.tools.tool import LlmTool, ToolType

logger = logging.getLogger(__name__)

DEFAULT_MAX_ERRORS = 5
DEFAULT_MAX_CALLS = 8

REJECTED_RESULT = {"error": "Tool call was rejected by user"}


class ToolCallClassification(str, Enum):
    APPROVAL_PENDING = "approvalPending"
    TRANSFER_PENDING = "transferPending"
    MISSING_EXECUTOR = "missingExecutor"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ToolCallOutcome:
    tool_call: ToolCall
    handled: bool


@dataclass(frozen=True)
class ProcessedCalls:
    """A processed message plus how many calls actually ran, and how many of those failed."""

    message: AssistantMessageWithToolCalls
    calls: int
    errors: int


class LlmToolKit:
    """A named set of tools plus the machinery to run their calls."""

    def __init__(
        self,
        tools: Iterable[LlmTool | dict] = (),
        allow_parallel_calls: bool = True,
    ):
        self._tools: dict[str, LlmTool] = {}
        self.allow_parallel_calls = allow_parallel_calls
        self.register_tools(tools)

    # --- Registry ---

    @property
    def tools(self) -> list[LlmTool]:
        return list(self._tools.values())

    @property
    def has_tools(self) -> bool:
        return bool(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def as_llm_functions(self) -> list[dict] | None:
        if not self._tools:
            return None
        return [tool.as_llm_function() for tool in self._tools.values()]

    def register_tool(self, tool: LlmTool | dict) -> None:
        self.register_tools([tool])

    def register_tools(self, tools: Iterable[LlmTool | dict]) -> None:
        """Register all tools or none: duplicates are checked up front."""
        prepared = [tool if isinstance(tool, LlmTool) else LlmTool(**tool) for tool in tools]
        seen: set[str] = set()
        for tool in prepared:
            if tool.name in self._tools or tool.name in seen:
                raise ToolKitError(f"A tool with name {tool.name} already exists")
            seen.add(tool.name)
        for tool in prepared:
            self._tools[tool.name] = tool

    def unregister_tool(self, name: str) -> None:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolKitError(f"Tool not found: {name}")
        if tool.type in (ToolType.TRANSFER, ToolType.SUB_TASK):
            raise ToolKitError(
                f'Cannot unregister tool "{name}". {tool.type.value} tools cannot be unregistered.'
            )
        del self._tools[name]

    def get_tool(self, name: str) -> LlmTool | None:
        return self._tools.get(name)

    def with_allowed_tools_only(self, names: Iterable[str]) -> LlmToolKit:
        allowed = set(names)
        return LlmToolKit(
            [tool for tool in self._tools.values() if tool.name in allowed],
            allow_parallel_calls=self.allow_parallel_calls,
        )

    def get_next_tool_call(self, calls: Sequence[ToolCall]) -> tuple[ToolCall, LlmTool] | None:
        """First pending or in-progress call, paired with its tool."""
        for call in calls:
            if call.is_unresolved:
                tool = self.get_tool(call.name)
                if tool is None:
                    raise ToolKitError(f"Tool not found: {call.name}")
                return call, tool
        return None

    # --- Classification ---

    def classify_tool_calls(self, calls: Sequence[ToolCall]) -> ToolCallClassification:
        """Exactly one classification, first match wins.

        approvalPending > transferPending > missingExecutor > completed.
        Calls naming an unknown tool do not affect the result.
        """
        if any(call.approval_state == ApprovalState.REQUIRES_APPROVAL for call in calls):
            return ToolCallClassification.APPROVAL_PENDING

        unresolved_types = set()
        for call in calls:
            if not call.is_unresolved:
                continue
            tool = self.get_tool(call.name)
            if tool is not None:
                unresolved_types.add(tool.type)

        if unresolved_types & {ToolType.TRANSFER, ToolType.SUB_TASK}:
            return ToolCallClassification.TRANSFER_PENDING
        if ToolType.FUNCTION_DEFINITION in unresolved_types:
            return ToolCallClassification.MISSING_EXECUTOR
        return ToolCallClassification.COMPLETED

    # --- Execution ---

    async def process_tool_call(
        self,
        tool_call: ToolCall,
        context: dict | None = None,
        secure_context: dict | None = None,
        retry_failed: bool = False,
    ) -> ToolCallOutcome:
        """Advance one call as far as this tool kit can take it."""
        if tool_call.approval_state == ApprovalState.REQUIRES_APPROVAL:
            return ToolCallOutcome(tool_call, handled=False)

        state = tool_call.execution_state
        if state == ExecutionState.COMPLETED:
            return ToolCallOutcome(tool_call, handled=True)
        if state == ExecutionState.ERROR and not retry_failed:
            return ToolCallOutcome(tool_call, handled=True)
        if state == ExecutionState.CANCELLED:
            return ToolCallOutcome(tool_call, handled=True)
        if state == ExecutionState.IN_PROGRESS:
            return ToolCallOutcome(tool_call, handled=False)

        if tool_call.approval_state == ApprovalState.REJECTED:
            return ToolCallOutcome(tool_call.completed(dict(REJECTED_RESULT)), handled=True)

        tool = self.get_tool(tool_call.name)
        if tool is None:
            return ToolCallOutcome(
                tool_call.failed("ToolNotFoundError", f"Tool not found: {tool_call.name}"),
                handled=True,
            )

        if tool.type != ToolType.FUNCTION:
            return ToolCallOutcome(tool_call, handled=False)

        try:
            result = await tool.execute(tool_call.arguments, context, secure_context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Tool '{tool.name}' failed: {e}")
            return ToolCallOutcome(
                tool_call.failed(type(e).__name__, str(e) or f"Unable to execute tool: {tool.name}"),
                handled=True,
            )

        try:
            result = to_jsonable(result)
        except (TypeError, ValueError) as e:
            return ToolCallOutcome(
                tool_call.failed("SerializationError", f"Tool result is not serializable: {e}"),
                handled=True,
            )

        logger.debug(f"Tool '{tool.name}' completed (call={tool_call.id})")
        return ToolCallOutcome(tool_call.completed(result), handled=True)

    async def process_calls(
        self,
        message: AssistantMessageWithToolCalls,
        context: dict | None = None,
        secure_context: dict | None = None,
        max_errors: int = DEFAULT_MAX_ERRORS,
        max_calls: int = DEFAULT_MAX_CALLS,
        abort: asyncio.Event | None = None,
        retry_failed: bool = False,
    ) -> AssistantMessageWithToolCalls:
        """Process every non-terminal call of a message, within budget.

        Calls beyond the error or call budget, after an abort, or on a
        schema-only tool are forced into the error state instead of run.
        Calls still awaiting approval are left untouched.
        """
        processed = await self.process_calls_with_usage(
            message,
            context=context,
            secure_context=secure_context,
            max_errors=max_errors,
            max_calls=max_calls,
            abort=abort,
            retry_failed=retry_failed,
        )
        return processed.message

    async def process_calls_with_usage(
        self,
        message: AssistantMessageWithToolCalls,
        context: dict | None = None,
        secure_context: dict | None = None,
        max_errors: int = DEFAULT_MAX_ERRORS,
        max_calls: int = DEFAULT_MAX_CALLS,
        abort: asyncio.Event | None = None,
        retry_failed: bool = False,
    ) -> ProcessedCalls:
        """Like ``process_calls``, also counting the calls handled in this pass.

        Calls that were already terminal and calls forced into the error
        state do not count against either budget.
        """
        classification = self.classify_tool_calls(message.tool_calls)
        if classification == ToolCallClassification.TRANSFER_PENDING:
            raise ToolKitError("Transfer tools cannot be processed by this method")

        errors = 0
        calls = 0
        processed: list[ToolCall] = []
        for call in message.tool_calls:
            if call.is_terminal and not (
                retry_failed and call.execution_state == ExecutionState.ERROR
            ):
                processed.append(call)
                continue
            if call.approval_state == ApprovalState.REQUIRES_APPROVAL:
                processed.append(call)
                continue

            if abort is not None and abort.is_set():
                processed.append(call.failed("AbortError", "Tool call processing was aborted"))
            elif errors >= max_errors:
                processed.append(call.failed("ToolExecutionError", "Too many tool call errors"))
            elif calls >= max_calls:
                processed.append(call.failed("ToolExecutionError", "Too many tool calls"))
            elif self._is_schema_only(call):
                processed.append(
                    call.failed("ToolExecutionError", f"Unable to execute tool: {call.name}")
                )
            else:
                outcome = await self.process_tool_call(call, context, secure_context, retry_failed)
                processed.append(outcome.tool_call)
                if outcome.handled:
                    calls += 1
                if outcome.tool_call.execution_state == ExecutionState.ERROR:
                    errors += 1

        return ProcessedCalls(message.with_tool_calls(processed), calls=calls, errors=errors)

    def _is_schema_only(self, call: ToolCall) -> bool:
        tool = self.get_tool(call.name)
        return tool is not None and tool.type == ToolType.FUNCTION_DEFINITION

    # --- Approval ---

    @staticmethod
    def approve_calls(
        calls: Sequence[ToolCall], ids: str | Iterable[str] | None = None
    ) -> list[ToolCall]:
        return utilities.approve_calls(calls, ids)

    @staticmethod
    def reject_calls(
        calls: Sequence[ToolCall], ids: str | Iterable[str] | None = None
    ) -> list[ToolCall]:
        return utilities.reject_calls(calls, ids)

    @staticmethod
    def cancel_calls(
        calls: Sequence[ToolCall], ids: str | Iterable[str] | None = None
    ) -> list[ToolCall]:
        return utilities.cancel_calls(calls, ids)

    # --- Serialization ---

    @staticmethod
    def serialize(value: Any) -> str:
        return serialize(value)

    @staticmethod
    def deserialize(text: str) -> Any:
        return deserialize(text)

    def __repr__(self) -> str:
        return f"<LlmToolKit tools={list(self._tools)}>"
