"""
JorElAgentManager — agent registry and task driver.

Owns the agents, a shared tool kit (seeded with the two built-in tools
below) and the transitions that move a TaskExecution forward:

    ask_agent          (subTask)  spawn a child thread for another agent
    handover_to_agent  (transfer) hand the current thread to another agent

resume_task performs exactly one step, chosen from the active thread's
latest message:

    user                              -> generate
    assistant, child thread           -> return the answer to the parent
    assistant, main thread            -> complete
    assistant_with_tools, all settled -> generate
    assistant_with_tools, pending     -> process tool calls
    anything else                     -> halt (invalidState)

execute_task repeats resume_task until the task finishes or a limit is hit.

Usage:
    team = JorElAgentManager(core)
    team.add_agent(LlmAgentDefinition(name="writer", description="...",
                                      system_message_template="..."))
    task = team.create_task("Write a haiku")
    task = await team.execute_task(task)
    print(task.result)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Iterable, Sequence

from pydantic import BaseModel, Field

from jorel.agents.agent import AgentLike, LlmAgent
from jorel.agents.events import (
    DelegationEvent,
    GenerationEvent,
    ThreadChangeEvent,
    TokenUsage,
    ToolUseEvent,
    TransferEvent,
)
from jorel.agents.task_execution import (
    HaltReason,
    TaskExecution,
    TaskExecutionDefinition,
    TaskExecutionLimits,
    TaskStatus,
)
from jorel.agents.thread import TaskExecutionThread, TaskExecutionThreadDefinition
from jorel.core.errors import (
    AgentError,
    ConfigurationError,
    LlmProviderError,
    TaskCreationError,
    TaskExecutionError,
)
from jorel.core.ids import generate_unique_id
from jorel.documents import LlmDocument, LlmDocumentCollection
from jorel.llm.contracts import LlmGenerationConfig
from jorel.llm.core import JorElCoreStore
from jorel.llm.messages import (
    AssistantMessage,
    AssistantMessageWithToolCalls,
    ContentPart,
    ExecutionState,
    ToolCall,
    UserMessage,
    generate_system_message,
    generate_user_message,
)
from jorel.tools.tool import LlmTool, ToolType
from jorel.tools.toolkit import LlmToolKit, ToolCallClassification

logger = logging.getLogger(__name__)

DELEGATE_TOOL_NAME = "ask_agent"
TRANSFER_TOOL_NAME = "handover_to_agent"


class DelegateToAgentParams(BaseModel):
    agentName: str
    taskDescription: str = Field(
        description="The description of the task that you want the agent to handle"
    )


class TransferToAgentParams(BaseModel):
    agentName: str


def _builtin_tools() -> list[LlmTool]:
    return [
        LlmTool(
            name=DELEGATE_TOOL_NAME,
            description="Ask another agent to handle a task for you",
            executor="subTask",
            params=DelegateToAgentParams,
        ),
        LlmTool(
            name=TRANSFER_TOOL_NAME,
            description="Transfer the conversation to another agent",
            executor="transfer",
            params=TransferToAgentParams,
        ),
    ]


def _non_empty_string(arguments: Any, key: str) -> bool:
    value = arguments.get(key) if isinstance(arguments, dict) else None
    return isinstance(value, str) and value != ""


class JorElAgentManager:
    """Registers agents and drives their tasks through a JorElCoreStore."""

    delegate_tool_name = DELEGATE_TOOL_NAME
    transfer_tool_name = TRANSFER_TOOL_NAME

    def __init__(
        self,
        core: JorElCoreStore,
        default_limits: TaskExecutionLimits | None = None,
        log: logging.Logger | None = None,
    ):
        self._core = core
        self._log = log or logger
        self.default_limits = default_limits or TaskExecutionLimits()
        self.tools = LlmToolKit(_builtin_tools())
        self._agents: dict[str, LlmAgent] = {}
        self._default_agent_id: str | None = None

    # ─── Agents ──────────────────────────────────────────────

    @property
    def agents(self) -> list[LlmAgent]:
        return list(self._agents.values())

    @property
    def default_agent_id(self) -> str | None:
        return self._default_agent_id

    @default_agent_id.setter
    def default_agent_id(self, name: str | None) -> None:
        if name is not None and name not in self._agents:
            raise ConfigurationError(f"Agent with name {name} is not registered")
        self._default_agent_id = name

    @property
    def default_agent(self) -> LlmAgent | None:
        if self._default_agent_id is None:
            return None
        return self._agents.get(self._default_agent_id)

    def get_agent(self, name: str) -> LlmAgent | None:
        return self._agents.get(name)

    def add_agent(
        self,
        agent: AgentLike,
        documents: LlmDocumentCollection | Iterable[LlmDocument | dict] | None = None,
    ) -> LlmAgent:
        """Register an agent. The first one registered becomes the default."""
        instance = agent if isinstance(agent, LlmAgent) else LlmAgent(agent, self, documents)
        if instance.name in self._agents:
            raise ConfigurationError(f"Agent with name {instance.name} already exists")

        for delegate_name in instance.allowed_delegate_names:
            delegate = self._agents.get(delegate_name)
            if delegate is not None and instance.name in delegate.allowed_delegate_names:
                raise AgentError(
                    instance.name,
                    f"Circular delegation detected between {instance.name} and {delegate_name}",
                )

        self._agents[instance.name] = instance
        if self._default_agent_id is None:
            self._default_agent_id = instance.name
        self._log.debug(f"Registered agent {instance.name}")
        return instance

    def remove_agent(self, agent: LlmAgent | str) -> JorElAgentManager:
        """Unregister an agent and drop it from every other agent's targets."""
        name = agent if isinstance(agent, str) else agent.name
        self._agents.pop(name, None)
        if self._default_agent_id == name:
            self._default_agent_id = next(iter(self._agents), None)
        for registered in self._agents.values():
            registered.remove_delegate(name)
        return self

    def add_tools(self, tools: Iterable[LlmTool | dict] | LlmToolKit) -> JorElAgentManager:
        if isinstance(tools, LlmToolKit):
            self.tools.register_tools(tools.tools)
            self.tools.allow_parallel_calls = tools.allow_parallel_calls
        else:
            self.tools.register_tools(tools)
        return self

    def _tools_for(self, agent: LlmAgent) -> LlmToolKit:
        allowed = agent.allowed_tool_names
        if agent.available_delegate_agents:
            allowed.append(self.delegate_tool_name)
        if agent.available_transfer_agents:
            allowed.append(self.transfer_tool_name)
        return self.tools.with_allowed_tools_only(allowed)

    def _agent_for(self, task: TaskExecution) -> LlmAgent:
        agent = self.get_agent(task.active_thread.agent_id)
        if agent is None:
            raise TaskExecutionError(
                f"Task {task.id}: agent {task.active_thread.agent_id} not found"
            )
        return agent

    # ─── Tasks ───────────────────────────────────────────────

    def hydrate_task(
        self, task: TaskExecution | TaskExecutionDefinition | dict
    ) -> TaskExecution:
        """A working copy of a task, or a task rebuilt from its definition."""
        if isinstance(task, TaskExecution):
            return task.copy()
        if isinstance(task, dict):
            task = TaskExecutionDefinition.from_dict(task)
        return TaskExecution(task, self)

    def create_task(
        self,
        task: str | ContentPart | Sequence[str | ContentPart],
        agent: str | None = None,
    ) -> TaskExecution:
        agent_id = agent or self._default_agent_id
        if not agent_id:
            raise TaskCreationError("No agent specified and no default agent set")
        if agent_id not in self._agents:
            raise TaskCreationError(f"Agent {agent_id} is not registered")
        return TaskExecution.from_task(task, agent_id, self)

    async def resume_task(
        self,
        task: TaskExecution | TaskExecutionDefinition | dict,
        context: dict | None = None,
        secure_context: dict | None = None,
        abort: asyncio.Event | None = None,
    ) -> TaskExecution:
        """Advance a copy of the task by one step."""
        return await self._step(self.hydrate_task(task), context, secure_context, abort)

    async def execute_task(
        self,
        task: TaskExecution | TaskExecutionDefinition | dict,
        limits: TaskExecutionLimits | None = None,
        context: dict | None = None,
        secure_context: dict | None = None,
        abort: asyncio.Event | None = None,
    ) -> TaskExecution:
        """Step a copy of the task until it finishes or a limit is reached.

        Limits are checked before each step: generations, then delegations,
        then iterations. A provider failure halts the task with `error`;
        aborts propagate.
        """
        task = self.hydrate_task(task)
        limits = limits or self.default_limits
        iterations = 0

        while True:
            if task.is_finished:
                return task

            if limits.max_generations and task.stats.generations >= limits.max_generations:
                self._log.warning("Max generations reached", extra={"task_id": task.id})
                return task.halt(HaltReason.MAX_GENERATIONS)

            if limits.max_delegations and task.stats.delegations >= limits.max_delegations:
                self._log.warning("Max delegations reached", extra={"task_id": task.id})
                return task.halt(HaltReason.MAX_DELEGATIONS)

            if iterations >= limits.max_iterations:
                self._log.warning("Max iterations reached", extra={"task_id": task.id})
                return task.halt(HaltReason.MAX_ITERATIONS)

            try:
                task = await self._step(task, context, secure_context, abort)
            except LlmProviderError as e:
                self._log.error(
                    f"Task {task.id} failed: {e}",
                    extra={"task_id": task.id, "provider": e.provider, "model": e.model},
                )
                return task.halt(HaltReason.ERROR)
            iterations += 1

    async def process_tool_calls(
        self,
        task: TaskExecution | TaskExecutionDefinition | dict,
        context: dict | None = None,
        secure_context: dict | None = None,
    ) -> TaskExecution:
        """Process the pending calls of the active thread's latest message.

        Used after approving or rejecting calls: a halted task is reopened
        first. Completed tasks cannot be processed.
        """
        task = self.hydrate_task(task)
        if task.status == TaskStatus.COMPLETED:
            raise TaskExecutionError(f"Task {task.id}: cannot process tool calls of a completed task")
        if task.status == TaskStatus.HALTED:
            task.reopen()
        else:
            task.start()
        return await self._process_tool_calls(task, context, secure_context)

    # ─── Steps ───────────────────────────────────────────────

    async def _step(
        self,
        task: TaskExecution,
        context: dict | None,
        secure_context: dict | None,
        abort: asyncio.Event | None,
    ) -> TaskExecution:
        if task.is_finished:
            return task

        thread = task.active_thread
        agent = self._agent_for(task)
        if task.status == TaskStatus.PENDING:
            self._log.info(f"Starting task with agent {agent.name}", extra={"task_id": task.id})
        else:
            self._log.debug(
                f"Resuming task on thread '{thread.id}' with agent {agent.name}",
                extra={"task_id": task.id, "thread_id": thread.id, "agent": agent.name},
            )

        latest = thread.latest_message
        if isinstance(latest, AssistantMessage) and thread.is_main:
            self._log.debug("Task completed", extra={"task_id": task.id})
            return task.complete()

        task.start()

        if isinstance(latest, UserMessage):
            return await self._generate(task, context, secure_context, abort)

        if isinstance(latest, AssistantMessage):
            return self._return_to_parent(task)

        if isinstance(latest, AssistantMessageWithToolCalls):
            if all(call.is_terminal for call in latest.tool_calls):
                return await self._generate(task, context, secure_context, abort)
            if any(call.execution_state == ExecutionState.PENDING for call in latest.tool_calls):
                return await self._process_tool_calls(task, context, secure_context)

        self._log.warning(
            f"Task {task.id} is in an invalid state", extra={"task_id": task.id, "thread_id": thread.id}
        )
        return task.halt(HaltReason.INVALID_STATE)

    async def _generate(
        self,
        task: TaskExecution,
        context: dict | None,
        secure_context: dict | None,
        abort: asyncio.Event | None,
    ) -> TaskExecution:
        """Generate the active agent's next message for the active thread."""
        thread = task.active_thread
        agent = self._agent_for(task)
        tools = self._tools_for(agent)

        response = await self._core.generate(
            [generate_system_message(agent.system_message), *thread.messages],
            LlmGenerationConfig(
                model=agent.model,
                temperature=agent.temperature,
                json_mode=True if agent.response_type == "json" else None,
                tools=tools if tools.has_tools else None,
                context=context,
                secure_context=secure_context,
                abort=abort,
            ),
        )
        message = replace(response.to_message(), id=response.id)

        thread.add_event(
            GenerationEvent(
                message_id=response.id,
                action=(
                    f"Agent {agent.name} generated {message.role.value} message "
                    f"based on {thread.latest_message.role.value} message"
                ),
                model=response.meta.model,
                token_usage=TokenUsage(
                    input=response.meta.input_tokens,
                    output=response.meta.output_tokens,
                ),
            )
        )
        thread.add_message(message)
        task.record_generation()

        self._log.debug(
            f"Agent {agent.name} generated a {message.role.value} message",
            extra={"task_id": task.id, "thread_id": thread.id, "model": response.meta.model},
        )
        return task

    def _return_to_parent(self, task: TaskExecution) -> TaskExecution:
        """Resolve the parent's delegation call with this thread's answer."""
        thread = task.active_thread
        if thread.is_main:
            raise TaskExecutionError(f"Task {task.id}: cannot return to another thread from the main thread")

        agent = self._agent_for(task)
        parent = task.threads.get(thread.parent_thread_id) if thread.parent_thread_id else None
        if parent is None:
            raise TaskExecutionError(
                f"Task {task.id}: parent thread {thread.parent_thread_id} not found"
            )

        originating = (
            parent.find_tool_call_message(thread.parent_tool_call_id)
            if thread.parent_tool_call_id
            else None
        )
        if originating is None:
            raise TaskExecutionError(
                f"Task {task.id}: unable to return to parent thread. Originating tool call not found"
            )

        answer = thread.latest_message
        call = next(call for call in originating.tool_calls if call.id == thread.parent_tool_call_id)
        parent.replace_message(
            originating.replace_tool_call(
                call.completed({"conversationId": thread.id, "message": answer.content})
            )
        )

        parent_agent = self.get_agent(parent.agent_id)
        parent_name = parent_agent.name if parent_agent else "unknown"
        thread.add_event(
            ThreadChangeEvent(
                message_id=answer.id,
                action=(
                    f"Agent {agent.name} returned execution to agent {parent_name} "
                    f"({'Main' if parent.is_main else 'Sub'} thread)"
                ),
                target_thread_id=parent.id,
            )
        )
        task.switch_thread(parent.id)

        self._log.info(
            f'Returning answer from "{agent.name}" to "{parent_name}"',
            extra={"task_id": task.id, "thread_id": parent.id},
        )
        return task

    async def _process_tool_calls(
        self,
        task: TaskExecution,
        context: dict | None,
        secure_context: dict | None,
    ) -> TaskExecution:
        """Work through the pending calls of the latest message, in order.

        A delegation or transfer ends the batch: later calls stay pending and
        are picked up once control comes back to this thread.
        """
        thread = task.active_thread
        message = thread.latest_message
        if not isinstance(message, AssistantMessageWithToolCalls):
            raise TaskExecutionError(f"Task {task.id}: expected assistant_with_tools message")

        agent = self._agent_for(task)
        tools = self._tools_for(agent)

        classification = tools.classify_tool_calls(message.tool_calls)
        if classification == ToolCallClassification.APPROVAL_PENDING:
            self._log.debug("Approval required for pending tool call", extra={"task_id": task.id})
            return task.halt(HaltReason.APPROVAL_REQUIRED)
        if classification == ToolCallClassification.MISSING_EXECUTOR:
            raise TaskExecutionError(f"Task {task.id}: missing executor for pending tool call")

        processed: list[ToolCall] = []
        branched = False
        for call in message.tool_calls:
            if branched or call.execution_state != ExecutionState.PENDING:
                processed.append(call)
                continue

            tool = tools.get_tool(call.name)
            if tool is None:
                call = call.failed("toolNotFound", f"Tool not found: {call.name}")
                thread.add_event(self._tool_use_event(call, f"Agent {agent.name} tried using tool {call.name}"))
            elif tool.type == ToolType.FUNCTION_DEFINITION:
                call = call.failed("toolNotExecutable", f"Tool not executable: {tool.name}")
                thread.add_event(self._tool_use_event(call, f"Agent {agent.name} tried using tool {tool.name}"))
            elif tool.type == ToolType.FUNCTION:
                outcome = await tools.process_tool_call(
                    call, context=context, secure_context=secure_context
                )
                call = outcome.tool_call
                thread.add_event(self._tool_use_event(call, f"Agent {agent.name} used tool {tool.name}"))
                if not outcome.handled:
                    self._log.warning(f"Tool call not handled: {tool.name}", extra={"task_id": task.id})
            elif tool.type == ToolType.SUB_TASK:
                call, branched = self._delegate(task, agent, call)
            else:
                call, branched = self._transfer(task, agent, call)
            processed.append(call)

        thread.replace_message(message.with_tool_calls(processed))
        self._log.debug("Completed tool call step", extra={"task_id": task.id, "thread_id": thread.id})
        return task

    def _delegate(self, task: TaskExecution, agent: LlmAgent, call: ToolCall) -> tuple[ToolCall, bool]:
        """Spawn a child thread for the delegate. Returns (call, branched)."""
        if not call.arguments:
            return call.failed("missingArguments", f"No arguments provided for tool call {call.name}"), False
        if not (
            _non_empty_string(call.arguments, "agentName")
            and _non_empty_string(call.arguments, "taskDescription")
        ):
            return (
                call.failed(
                    "invalidArguments",
                    f"Invalid arguments provided for tool call {call.name} - "
                    "agentName and taskDescription must be a non-empty string",
                ),
                False,
            )

        agent_name = call.arguments["agentName"]
        delegate = agent.find_delegate(agent_name, "delegate")
        if delegate is None:
            return (
                call.failed(
                    "delegateNotAvailable",
                    f"Agent {agent.name} is not allowed to delegate to {agent_name}",
                ),
                False,
            )

        parent = task.active_thread
        child_id = generate_unique_id()
        task.add_thread(
            TaskExecutionThread(
                TaskExecutionThreadDefinition(
                    id=child_id,
                    agent_id=delegate.name,
                    messages=[generate_user_message(call.arguments["taskDescription"])],
                    parent_thread_id=parent.id,
                    parent_tool_call_id=call.id,
                )
            )
        )
        parent.add_event(
            DelegationEvent(
                message_id=call.id,
                action=f"Agent {agent.name} delegated to {delegate.name}",
                delegate_to_agent_name=delegate.name,
            )
        )
        task.switch_thread(child_id)
        task.record_delegation()

        self._log.info(
            f"Agent {agent.name} delegated to {delegate.name}",
            extra={"task_id": task.id, "thread_id": child_id, "agent": delegate.name},
        )
        return (
            call.in_progress(
                {"message": f"Task delegated to {delegate.name}", "conversationId": child_id}
            ),
            True,
        )

    def _transfer(self, task: TaskExecution, agent: LlmAgent, call: ToolCall) -> tuple[ToolCall, bool]:
        """Hand the active thread to another agent. Returns (call, branched)."""
        if not call.arguments:
            return call.failed("missingArguments", f"No arguments provided for tool call {call.name}"), False
        if not _non_empty_string(call.arguments, "agentName"):
            return (
                call.failed(
                    "invalidArguments",
                    f"Invalid arguments provided for tool call {call.name} - "
                    "agentName is required and must be a non-empty string",
                ),
                False,
            )

        agent_name = call.arguments["agentName"]
        target = agent.find_delegate(agent_name, "transfer")
        if target is None:
            return (
                call.failed(
                    "delegateNotAvailable",
                    f"Agent {agent.name} is not allowed to transfer to {agent_name}",
                ),
                False,
            )

        thread = task.active_thread
        thread.add_event(
            TransferEvent(
                message_id=call.id,
                action=f"Agent {agent.name} transferred to {target.name}",
                from_agent_name=agent.name,
                to_agent_name=target.name,
            )
        )
        thread.reassign_agent(target.name)

        self._log.info(
            f"Agent {agent.name} transferred to {target.name}",
            extra={"task_id": task.id, "thread_id": thread.id, "agent": target.name},
        )
        return (
            call.completed({"message": f"Transfer from {agent.name} to {target.name} successful"}),
            True,
        )

    @staticmethod
    def _tool_use_event(call: ToolCall, action: str) -> ToolUseEvent:
        return ToolUseEvent(
            message_id=call.id,
            action=action,
            tool_id=call.name,
            tool_arguments=call.arguments,
            tool_result=call.result,
            tool_error=call.error.message if call.error else None,
        )

    def __repr__(self) -> str:
        return f"<JorElAgentManager agents={list(self._agents)}>"
