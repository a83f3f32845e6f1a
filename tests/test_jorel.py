"""Tests for the JorEl façade — registration, text/json/stream helpers, and config wiring."""

import logging
import re

import pytest

from fakes import FakeProvider, ScriptedToolCalls
from jorel import JorEl
from jorel.agents.agent import LlmAgentDefinition
from jorel.agents.task_execution import HaltReason, TaskStatus
from jorel.core.config import JorElConfig, LlmDefaultsConfig, ProviderConfig, TaskConfig
from jorel.core.errors import ConfigurationError
from jorel.documents import LlmDocument
from jorel.jorel import DEFAULT_SYSTEM_MESSAGE, TextOutput
from jorel.llm.contracts import (
    ChunkEvent,
    LlmGenerationConfig,
    MessagesEvent,
    StopReason,
)
from jorel.llm.messages import MessageRole
from jorel.tools.tool import LlmTool
from jorel.tools.toolkit import LlmToolKit


@pytest.fixture
def fake():
    return FakeProvider()


@pytest.fixture
def jorel(fake):
    instance = JorEl()
    instance.register_provider("test", fake)
    instance.register_model("test-model", "test")
    instance.register_embedding_model("test-embedding", "test", 3)
    return instance


# ─── Registration ────────────────────────────────────────────


class TestRegistration:
    def test_first_model_becomes_default(self, jorel):
        assert jorel.default_model == "test-model"
        jorel.register_model("test-large", "test", set_as_default=True)
        assert jorel.default_model == "test-large"

    def test_unknown_provider(self, jorel):
        with pytest.raises(ConfigurationError, match="not registered"):
            jorel.register_model("gpt-4o", "openai")
        with pytest.raises(ConfigurationError):
            jorel.register_embedding_model("embed", "openai", 8)

    def test_unknown_default_model(self, jorel):
        with pytest.raises(ConfigurationError):
            jorel.default_model = "gpt-4o"

    def test_temperature(self, jorel):
        assert jorel.temperature == 0
        jorel.temperature = 0.5
        assert jorel.core.default_config.temperature == 0.5

    def test_team_shares_the_core(self, jorel, fake):
        jorel.team.add_agent(
            LlmAgentDefinition(name="writer", description="Writes", system_message_template="Write.")
        )
        assert jorel.team.default_agent_id == "writer"

    def test_from_config_registers_configured_vendors(self):
        config = JorElConfig(
            llm=LlmDefaultsConfig(default_model="gpt-4o", temperature=0.1, stream_buffer_ms=20),
            providers=ProviderConfig(openai_api_key="sk-test"),
            tasks=TaskConfig(max_iterations=3),
        )
        jorel = JorEl.from_config(config)

        assert jorel.core.providers.list_providers() == ["openai"]
        assert jorel.default_model == "gpt-4o"
        assert jorel.temperature == 0.1
        assert jorel.core.default_config.stream_buffer.buffer_time_ms == 20
        assert jorel.core.models.default_embedding_model == "text-embedding-3-small"
        assert jorel.team.default_limits.max_iterations == 3

    def test_from_config_without_credentials(self):
        jorel = JorEl.from_config(JorElConfig())
        assert jorel.core.providers.list_providers() == []
        assert jorel.core.default_config.stream_buffer is None


# ─── Messages ────────────────────────────────────────────────


class TestGenerateMessages:
    def test_default_system_message(self, jorel):
        system, user = jorel.generate_messages("Hi")
        assert system.content == DEFAULT_SYSTEM_MESSAGE
        assert user.role == MessageRole.USER

    def test_documents_are_appended(self, jorel):
        system, _ = jorel.generate_messages(
            "Hi", documents=[LlmDocument.text("d1", "Style", "Be terse")]
        )
        assert system.content.startswith(f"{DEFAULT_SYSTEM_MESSAGE}\nHere are some documents")
        assert "<Document id='d1'" in system.content

    def test_empty_system_message_drops_documents(self, jorel, caplog):
        with caplog.at_level(logging.WARNING):
            messages = jorel.generate_messages(
                "Hi", system_message="", documents=[LlmDocument.text("d1", "Style", "Be terse")]
            )
        assert [message.role for message in messages] == [MessageRole.USER]
        assert "documents will not be included" in caplog.text

    def test_document_system_message_needs_placeholder(self, jorel):
        with pytest.raises(ConfigurationError, match=re.escape("{{documents}}")):
            jorel.document_system_message = "Here are documents"
        jorel.document_system_message = ""
        assert jorel.document_system_message == ""
        with pytest.raises(ConfigurationError):
            JorEl(document_system_message="No placeholder")


# ─── Generation ──────────────────────────────────────────────


class TestGeneration:
    @pytest.mark.asyncio
    async def test_text(self, jorel, fake):
        fake.queue("Paris")
        assert await jorel.text("Capital of France?") == "Paris"

        request = fake.requests[0]
        assert request.model == "test-model"
        assert request.config.temperature == 0
        assert request.messages[0].content == DEFAULT_SYSTEM_MESSAGE

    @pytest.mark.asyncio
    async def test_text_with_meta(self, jorel, fake):
        fake.queue("Paris")
        output = await jorel.text("Capital of France?", include_meta=True)

        assert isinstance(output, TextOutput)
        assert output.response == "Paris"
        assert output.meta.input_tokens == 10
        assert output.stop_reason == StopReason.COMPLETED
        assert [message.role for message in output.messages] == [
            MessageRole.SYSTEM,
            MessageRole.USER,
            MessageRole.ASSISTANT,
        ]

    @pytest.mark.asyncio
    async def test_text_runs_tools(self, jorel, fake):
        tools = LlmToolKit([LlmTool("get_weather", "Weather", executor=lambda args: "sunny")])
        fake.queue(ScriptedToolCalls([("get_weather", {"city": "Rome"})]), "It is sunny")

        answer = await jorel.text("Weather in Rome?", LlmGenerationConfig(tools=tools))

        assert answer == "It is sunny"
        assert len(fake.requests) == 2

    @pytest.mark.asyncio
    async def test_json(self, jorel, fake):
        fake.queue('{"colors": ["red", "blue"]}')
        assert await jorel.json("Two colors") == {"colors": ["red", "blue"]}
        assert fake.requests[0].config.json_mode is True

    @pytest.mark.asyncio
    async def test_empty_json_response(self, jorel, fake):
        fake.queue("")
        assert await jorel.json("Nothing") == {}

    @pytest.mark.asyncio
    async def test_json_keeps_a_schema(self, jorel, fake):
        schema = {"type": "object"}
        fake.queue("{}")
        await jorel.json("Anything", LlmGenerationConfig(json_mode=schema))
        assert fake.requests[0].config.json_mode == schema

    @pytest.mark.asyncio
    async def test_stream(self, jorel, fake):
        fake.queue("Once upon a time")
        chunks = [chunk async for chunk in jorel.stream("Tell me a story")]
        assert "".join(chunks) == "Once upon a time"
        assert len(chunks) > 1

    @pytest.mark.asyncio
    async def test_stream_with_meta_runs_tools(self, jorel, fake):
        tools = LlmToolKit([LlmTool("get_weather", "Weather", executor=lambda args: "sunny")])
        fake.queue(ScriptedToolCalls([("get_weather", {})]), "It is sunny")

        events = [
            event
            async for event in jorel.stream_with_meta("Weather?", LlmGenerationConfig(tools=tools))
        ]

        final = events[-1]
        assert isinstance(final, MessagesEvent)
        assert final.stop_reason == StopReason.COMPLETED
        assert final.messages[-1].content == "It is sunny"
        assert "".join(event.content for event in events if isinstance(event, ChunkEvent)) == "It is sunny"

    @pytest.mark.asyncio
    async def test_embed(self, jorel, fake):
        assert await jorel.embed("hello") == [0.1, 0.2, 0.3]


# ─── Teams ───────────────────────────────────────────────────


class TestTeam:
    @pytest.mark.asyncio
    async def test_team_runs_through_registered_providers(self, jorel, fake):
        jorel.team.add_agent(
            LlmAgentDefinition(name="writer", description="Writes", system_message_template="Write.")
        )
        fake.queue("An old pond")

        task = await jorel.team.execute_task(jorel.team.create_task("Write a haiku"))

        assert task.status == TaskStatus.COMPLETED
        assert task.halt_reason == HaltReason.COMPLETED
        assert task.result == "An old pond"
        assert fake.requests[0].messages[0].content == "Write."
