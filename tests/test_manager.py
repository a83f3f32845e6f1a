"""Tests for JorElAgentManager — stepping tasks through generation, tools, and delegation."""

import json
from datetime import datetime, timezone

import pytest

from fakes import ScriptedToolCalls
from jorel.agents.agent import LlmAgentDefinition
from jorel.agents.events import ThreadEventType
from jorel.agents.manager import JorElAgentManager
from jorel.agents.task_execution import HaltReason, TaskExecutionLimits, TaskStatus
from jorel.agents.thread import MAIN_THREAD_ID
from jorel.core.errors import TaskExecutionError
from jorel.llm.messages import (
    ApprovalState,
    AssistantMessage,
    AssistantMessageWithToolCalls,
    ExecutionState,
    MessageRole,
)
from jorel.tools.tool import LlmTool


def _make_definition(name: str, **kwargs) -> LlmAgentDefinition:
    kwargs.setdefault("description", f"The {name} agent")
    kwargs.setdefault("system_message_template", f"You are {name}.")
    return LlmAgentDefinition(name=name, **kwargs)


def _event_types(task, thread_id=None):
    return [record.event_type for record in task.get_events_by_thread(thread_id)]


# ─── Fixtures ────────────────────────────────────────────────


@pytest.fixture
def weather_team(manager):
    manager.add_tools(
        [
            LlmTool("get_weather", "Current weather", executor=lambda args: {"temp": 3}),
            LlmTool(
                "delete_file",
                "Delete a file",
                executor=lambda args: f"deleted {args['path']}",
                requires_confirmation=True,
            ),
        ]
    )
    manager.add_agent(_make_definition("writer", allowed_tools=("get_weather", "delete_file")))
    return manager


@pytest.fixture
def delegating_team(manager):
    manager.add_agent(_make_definition("writer", can_delegate_to=("editor",)))
    manager.add_agent(_make_definition("editor"))
    return manager


# ─── Single agent ────────────────────────────────────────────


class TestSingleAgent:
    @pytest.mark.asyncio
    async def test_plain_answer_completes(self, manager, provider):
        manager.add_agent(_make_definition("writer"))
        provider.queue("An old pond")

        task = await manager.execute_task(manager.create_task("Write a haiku"))

        assert task.status == TaskStatus.COMPLETED
        assert task.halt_reason == HaltReason.COMPLETED
        assert task.result == "An old pond"
        assert task.stats.generations == 1
        assert _event_types(task) == [ThreadEventType.GENERATION]

    @pytest.mark.asyncio
    async def test_system_message_comes_first(self, manager, provider):
        manager.add_agent(_make_definition("writer", temperature=0.7))
        provider.queue("An old pond")

        await manager.execute_task(manager.create_task("Write a haiku"))

        request = provider.requests[0]
        assert request.messages[0].role == MessageRole.SYSTEM
        assert request.messages[0].content == "You are writer."
        assert request.messages[1].text == "Write a haiku"
        assert request.config.temperature == 0.7
        assert request.config.tools is None

    @pytest.mark.asyncio
    async def test_json_agents_request_json_mode(self, manager, provider):
        manager.add_agent(_make_definition("writer", response_type="json"))
        provider.queue('{"poem": "An old pond"}')

        await manager.execute_task(manager.create_task("Write a haiku"))
        assert provider.requests[0].config.json_mode is True

    @pytest.mark.asyncio
    async def test_resume_task_does_not_mutate_its_input(self, manager, provider):
        manager.add_agent(_make_definition("writer"))
        provider.queue("An old pond")
        task = manager.create_task("Write a haiku")

        resumed = await manager.resume_task(task)

        assert task.status == TaskStatus.PENDING
        assert len(task.active_thread.messages) == 1
        assert resumed.status == TaskStatus.RUNNING
        assert isinstance(resumed.active_thread.latest_message, AssistantMessage)

    @pytest.mark.asyncio
    async def test_resume_accepts_plain_definitions(self, manager, provider):
        manager.add_agent(_make_definition("writer"))
        provider.queue("An old pond")

        resumed = await manager.resume_task(manager.create_task("Write a haiku").to_dict())
        assert resumed.active_thread.latest_message.content == "An old pond"

    @pytest.mark.asyncio
    async def test_provider_error_halts_with_error(self, manager, provider):
        manager.add_agent(_make_definition("writer"))
        provider.queue(RuntimeError("connection reset"))

        task = await manager.execute_task(manager.create_task("Write a haiku"))

        assert task.status == TaskStatus.HALTED
        assert task.halt_reason == HaltReason.ERROR
        assert len(task.active_thread.messages) == 1

    @pytest.mark.asyncio
    async def test_finished_tasks_are_returned_as_is(self, manager, provider):
        manager.add_agent(_make_definition("writer"))
        provider.queue("An old pond")
        task = await manager.execute_task(manager.create_task("Write a haiku"))

        again = await manager.execute_task(task)
        assert again.status == TaskStatus.COMPLETED
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_follow_up_continues_the_conversation(self, manager, provider):
        manager.add_agent(_make_definition("writer"))
        provider.queue("An old pond", "A frog jumps in")
        task = await manager.execute_task(manager.create_task("Write a haiku"))

        task = await manager.execute_task(task.add_follow_up_user_message("Continue"))

        assert task.result == "A frog jumps in"
        assert len(provider.requests[1].messages) == 4


# ─── Tools ───────────────────────────────────────────────────


class TestTools:
    @pytest.mark.asyncio
    async def test_function_tool_round_trip(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("get_weather", {"city": "Oslo"})]), "It is 3 degrees")

        task = await weather_team.execute_task(weather_team.create_task("Weather in Oslo?"))

        assert task.status == TaskStatus.COMPLETED
        assert task.result == "It is 3 degrees"
        assert task.stats.generations == 2
        assert _event_types(task) == [
            ThreadEventType.GENERATION,
            ThreadEventType.TOOL_USE,
            ThreadEventType.GENERATION,
        ]

        call = task.active_thread.messages[1].tool_calls[0]
        assert call.execution_state == ExecutionState.COMPLETED
        assert call.result == {"temp": 3}

        offered = [tool.name for tool in provider.requests[0].config.tools.tools]
        assert offered == ["get_weather", "delete_file"]

    @pytest.mark.asyncio
    async def test_unknown_tool_fails_the_call(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("launch_rocket", {})]), "Sorry")

        task = await weather_team.execute_task(weather_team.create_task("Launch"))

        call = task.active_thread.messages[1].tool_calls[0]
        assert call.execution_state == ExecutionState.ERROR
        assert call.error.type == "toolNotFound"
        assert task.result == "Sorry"

    @pytest.mark.asyncio
    async def test_failed_calls_survive_a_json_snapshot(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("launch_rocket", {})]), "Sorry")
        task = await weather_team.execute_task(weather_team.create_task("Launch"))

        restored = weather_team.hydrate_task(json.loads(json.dumps(task.to_dict())))

        call = restored.active_thread.messages[1].tool_calls[0]
        assert call.execution_state == ExecutionState.ERROR
        assert call.error.type == "toolNotFound"
        assert isinstance(call.error.last_attempt, datetime)
        assert call.error.last_attempt == task.active_thread.messages[1].tool_calls[0].error.last_attempt

    @pytest.mark.asyncio
    async def test_tool_dates_survive_a_json_snapshot(self, manager, provider):
        launched_at = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
        manager.add_tools([LlmTool("launch_time", "When it launched", executor=lambda args: {"at": launched_at})])
        manager.add_agent(_make_definition("writer", allowed_tools=("launch_time",)))
        provider.queue(ScriptedToolCalls([("launch_time", {"since": "2024-02-01T00:00:00Z"})]), "Noon")
        task = await manager.execute_task(manager.create_task("When?"))

        restored = manager.hydrate_task(json.loads(json.dumps(task.to_dict())))

        call = restored.active_thread.messages[1].tool_calls[0]
        assert call.result == {"at": launched_at}
        assert call.arguments == {"since": datetime(2024, 2, 1, tzinfo=timezone.utc)}
        [tool_use] = [
            record.event
            for record in restored.get_events_by_thread(MAIN_THREAD_ID)
            if record.event_type == ThreadEventType.TOOL_USE
        ]
        assert tool_use.tool_result == {"at": launched_at}

    @pytest.mark.asyncio
    async def test_function_definitions_are_not_executable(self, manager, provider):
        manager.add_tools([LlmTool("lookup", "Lookup only")])
        manager.add_agent(_make_definition("writer", allowed_tools=("lookup",)))
        provider.queue(ScriptedToolCalls([("lookup", {})]))

        task = await manager.resume_task(manager.create_task("Look it up"))
        with pytest.raises(TaskExecutionError, match="missing executor"):
            await manager.resume_task(task)

    @pytest.mark.asyncio
    async def test_approval_gate(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("delete_file", {"path": "/tmp/x"})]), "Done")

        task = await weather_team.execute_task(weather_team.create_task("Clean up"))
        assert task.status == TaskStatus.HALTED
        assert task.halt_reason == HaltReason.APPROVAL_REQUIRED
        [pending] = task.tool_calls_with_pending_approvals
        assert pending.tool_call.name == "delete_file"

        task.approve_tool_calls()
        assert task.status == TaskStatus.RUNNING

        task = await weather_team.process_tool_calls(task)
        call = task.active_thread.latest_message.tool_calls[0]
        assert call.approval_state == ApprovalState.APPROVED
        assert call.result == "deleted /tmp/x"

        task = await weather_team.execute_task(task)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "Done"

    @pytest.mark.asyncio
    async def test_rejected_calls_report_the_rejection(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("delete_file", {"path": "/tmp/x"})]), "Okay, I won't")

        task = await weather_team.execute_task(weather_team.create_task("Clean up"))
        task.reject_tool_calls()
        task = await weather_team.execute_task(task)

        call = task.active_thread.messages[1].tool_calls[0]
        assert call.result == {"error": "Tool call was rejected by user"}
        assert task.result == "Okay, I won't"

    @pytest.mark.asyncio
    async def test_process_tool_calls_reopens_halted_tasks(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("delete_file", {"path": "/tmp/x"})]))
        task = await weather_team.execute_task(weather_team.create_task("Clean up"))

        task = await weather_team.process_tool_calls(task)
        assert task.status == TaskStatus.HALTED
        assert task.halt_reason == HaltReason.APPROVAL_REQUIRED

    @pytest.mark.asyncio
    async def test_process_tool_calls_rejects_completed_tasks(self, weather_team, provider):
        provider.queue("Nothing to do")
        task = await weather_team.execute_task(weather_team.create_task("Hi"))
        with pytest.raises(TaskExecutionError, match="completed"):
            await weather_team.process_tool_calls(task)


# ─── Delegation and transfer ─────────────────────────────────


class TestDelegation:
    @pytest.mark.asyncio
    async def test_delegate_and_return(self, delegating_team, provider):
        provider.queue(
            ScriptedToolCalls([("ask_agent", {"agentName": "editor", "taskDescription": "Fix grammar"})]),
            "Fixed text",
            "Done: Fixed text",
        )
        task = delegating_team.create_task("Write and polish")

        task = await delegating_team.resume_task(task)
        task = await delegating_team.resume_task(task)

        child = task.active_thread
        assert not child.is_main
        assert child.agent_id == "editor"
        assert child.parent_thread_id == MAIN_THREAD_ID
        assert child.latest_message.text == "Fix grammar"
        parent_call = task.threads[MAIN_THREAD_ID].latest_message.tool_calls[0]
        assert parent_call.execution_state == ExecutionState.IN_PROGRESS
        assert child.parent_tool_call_id == parent_call.id
        assert task.stats.delegations == 1

        task = await delegating_team.execute_task(task)

        assert task.status == TaskStatus.COMPLETED
        assert task.active_thread_id == MAIN_THREAD_ID
        assert task.result == "Done: Fixed text"
        assert task.stats.generations == 3

        parent_call = task.threads[MAIN_THREAD_ID].messages[1].tool_calls[0]
        assert parent_call.execution_state == ExecutionState.COMPLETED
        assert parent_call.result == {"conversationId": child.id, "message": "Fixed text"}

        assert _event_types(task, MAIN_THREAD_ID) == [
            ThreadEventType.GENERATION,
            ThreadEventType.DELEGATION,
            ThreadEventType.GENERATION,
        ]
        assert _event_types(task, child.id) == [
            ThreadEventType.GENERATION,
            ThreadEventType.THREAD_CHANGE,
        ]
        assert provider.requests[1].messages[0].content == "You are editor."

    @pytest.mark.asyncio
    async def test_events_across_threads_keep_their_order(self, delegating_team, provider):
        provider.queue(
            ScriptedToolCalls([("ask_agent", {"agentName": "editor", "taskDescription": "Fix grammar"})]),
            "Fixed text",
            "Done: Fixed text",
        )

        task = await delegating_team.execute_task(delegating_team.create_task("Write and polish"))

        child_id = next(thread_id for thread_id in task.threads if thread_id != MAIN_THREAD_ID)
        assert [(record.thread_id, record.event_type) for record in task.get_events_by_thread()] == [
            (MAIN_THREAD_ID, ThreadEventType.GENERATION),
            (MAIN_THREAD_ID, ThreadEventType.DELEGATION),
            (child_id, ThreadEventType.GENERATION),
            (child_id, ThreadEventType.THREAD_CHANGE),
            (MAIN_THREAD_ID, ThreadEventType.GENERATION),
        ]

        restored = delegating_team.hydrate_task(json.loads(json.dumps(task.to_dict())))
        assert [record.event for record in restored.get_events_by_thread()] == [
            record.event for record in task.get_events_by_thread()
        ]

    @pytest.mark.asyncio
    async def test_delegation_is_offered_as_a_tool(self, delegating_team, provider):
        provider.queue("No help needed")
        await delegating_team.execute_task(delegating_team.create_task("Write"))
        offered = [tool.name for tool in provider.requests[0].config.tools.tools]
        assert offered == ["ask_agent"]

    @pytest.mark.parametrize(
        "arguments,error_type",
        [
            ({}, "missingArguments"),
            ({"agentName": "editor"}, "invalidArguments"),
            ({"agentName": "editor", "taskDescription": ""}, "invalidArguments"),
            ({"agentName": "ghost", "taskDescription": "Fix"}, "delegateNotAvailable"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_delegation(self, delegating_team, provider, arguments, error_type):
        provider.queue(ScriptedToolCalls([("ask_agent", arguments)]))
        task = await delegating_team.resume_task(delegating_team.create_task("Write"))
        task = await delegating_team.resume_task(task)

        assert task.active_thread_id == MAIN_THREAD_ID
        assert len(task.threads) == 1
        call = task.active_thread.latest_message.tool_calls[0]
        assert call.execution_state == ExecutionState.ERROR
        assert call.error.type == error_type
        assert task.stats.delegations == 0

    @pytest.mark.asyncio
    async def test_calls_after_a_delegation_wait(self, delegating_team, provider):
        delegating_team.add_tools([LlmTool("get_weather", "Weather", executor=lambda args: "sunny")])
        delegating_team.get_agent("writer").add_tool_access("get_weather")
        provider.queue(
            ScriptedToolCalls(
                [
                    ("ask_agent", {"agentName": "editor", "taskDescription": "Fix"}),
                    ("get_weather", {}),
                ]
            )
        )
        task = await delegating_team.resume_task(delegating_team.create_task("Write"))
        task = await delegating_team.resume_task(task)

        calls = task.threads[MAIN_THREAD_ID].latest_message.tool_calls
        assert calls[0].execution_state == ExecutionState.IN_PROGRESS
        assert calls[1].execution_state == ExecutionState.PENDING

    @pytest.mark.asyncio
    async def test_transfer_reassigns_the_thread(self, manager, provider):
        manager.add_agent(_make_definition("writer", can_transfer_to=("editor",)))
        manager.add_agent(_make_definition("editor"))
        provider.queue(ScriptedToolCalls([("handover_to_agent", {"agentName": "editor"})]), "Editor here")

        task = await manager.execute_task(manager.create_task("Please edit"))

        assert task.status == TaskStatus.COMPLETED
        assert task.active_thread.agent_id == "editor"
        assert task.result == "Editor here"
        assert len(task.threads) == 1
        call = task.active_thread.messages[1].tool_calls[0]
        assert call.result == {"message": "Transfer from writer to editor successful"}
        assert ThreadEventType.TRANSFER in _event_types(task)
        assert provider.requests[1].messages[0].content == "You are editor."

    @pytest.mark.asyncio
    async def test_transfer_to_unknown_agent(self, manager, provider):
        manager.add_agent(_make_definition("writer", can_transfer_to=("editor",)))
        manager.add_agent(_make_definition("editor"))
        provider.queue(ScriptedToolCalls([("handover_to_agent", {"agentName": "critic"})]))

        task = await manager.resume_task(manager.create_task("Please edit"))
        task = await manager.resume_task(task)

        call = task.active_thread.latest_message.tool_calls[0]
        assert call.error.type == "delegateNotAvailable"
        assert task.active_thread.agent_id == "writer"


# ─── Limits ──────────────────────────────────────────────────


class TestLimits:
    @pytest.mark.asyncio
    async def test_max_iterations(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("get_weather", {})]), "Sunny")

        task = await weather_team.execute_task(
            weather_team.create_task("Weather?"), TaskExecutionLimits(max_iterations=2)
        )

        assert task.status == TaskStatus.HALTED
        assert task.halt_reason == HaltReason.MAX_ITERATIONS
        assert isinstance(task.active_thread.latest_message, AssistantMessageWithToolCalls)
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_max_generations(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("get_weather", {})]), "Sunny")

        task = await weather_team.execute_task(
            weather_team.create_task("Weather?"), TaskExecutionLimits(max_generations=1)
        )

        assert task.halt_reason == HaltReason.MAX_GENERATIONS
        assert task.stats.generations == 1

    @pytest.mark.asyncio
    async def test_max_delegations(self, delegating_team, provider):
        provider.queue(
            ScriptedToolCalls([("ask_agent", {"agentName": "editor", "taskDescription": "Fix"})])
        )

        task = await delegating_team.execute_task(
            delegating_team.create_task("Write"), TaskExecutionLimits(max_delegations=1)
        )

        assert task.halt_reason == HaltReason.MAX_DELEGATIONS
        assert task.stats.delegations == 1
        assert task.active_thread.agent_id == "editor"

    @pytest.mark.asyncio
    async def test_zero_limits_mean_unlimited(self, weather_team, provider):
        provider.queue(ScriptedToolCalls([("get_weather", {})]), "Sunny")

        task = await weather_team.execute_task(
            weather_team.create_task("Weather?"),
            TaskExecutionLimits(max_generations=0, max_delegations=0),
        )

        assert task.status == TaskStatus.COMPLETED
        assert task.result == "Sunny"
        assert task.stats.generations == 2

    @pytest.mark.asyncio
    async def test_manager_default_limits(self, core, provider):
        team = JorElAgentManager(core, default_limits=TaskExecutionLimits(max_iterations=1))
        team.add_agent(_make_definition("writer"))
        provider.queue("An old pond")

        task = await team.execute_task(team.create_task("Write"))
        assert task.halt_reason == HaltReason.MAX_ITERATIONS
