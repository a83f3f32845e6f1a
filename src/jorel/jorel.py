"""
JorEl — convenience façade over the generation core and the agent team.

    jorel = JorEl.from_config()               # providers from the environment
    answer = await jorel.text("What is the capital of France?")
    data = await jorel.json("List three colors as {\"colors\": [...]}")
    async for chunk in jorel.stream("Tell me a story"):
        print(chunk, end="")

Each call builds [system message, user message] and hands it to the
JorElCoreStore. Multi-agent work goes through `jorel.team`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, AsyncGenerator, Iterable, Sequence, Union

from jorel.agents.manager import JorElAgentManager
from jorel.agents.task_execution import TaskExecutionLimits
from jorel.core.config import JorElConfig
from jorel.core.errors import ConfigurationError
from jorel.documents import LlmDocument, LlmDocumentCollection
from jorel.llm.contracts import (
    ChunkEvent,
    LlmGenerationConfig,
    StopReason,
    StreamBufferConfig,
    StreamEvent,
)
from jorel.llm.core import JorElCoreStore
from jorel.llm.messages import (
    AssistantMessageMeta,
    ContentPart,
    Message,
    generate_system_message,
    generate_user_message,
)
from jorel.llm.overrides import ModelParameterOverrides
from jorel.llm.registry import ModelSpecificDefaults
from jorel.providers.base import LlmCoreProvider
from jorel.providers.registry import (
    DEFAULT_EMBEDDING_MODELS,
    DEFAULT_MODELS,
    configured_vendors,
    get_llm_provider,
)
from jorel.tools.toolkit import LlmToolKit

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = "You are a helpful assistant."
DEFAULT_DOCUMENT_SYSTEM_MESSAGE = (
    "Here are some documents that you can consider in your response: {{documents}}"
)

TaskInput = Union[str, ContentPart, Sequence[Union[str, ContentPart]]]
Documents = Union[LlmDocumentCollection, Iterable[Union[LlmDocument, dict]]]


@dataclass(frozen=True)
class TextOutput:
    """A response plus the metadata and transcript that produced it."""

    response: Any
    meta: AssistantMessageMeta | None
    messages: list[Message]
    stop_reason: StopReason


def _validate_document_system_message(message: str) -> str:
    if message and "{{documents}}" not in message:
        raise ConfigurationError(
            'The document system message must either be empty or include the placeholder '
            '"{{documents}}" to insert the document list.'
        )
    return message


class JorEl:
    """One object to register providers and models, ask questions, and run teams."""

    def __init__(
        self,
        system_message: str = DEFAULT_SYSTEM_MESSAGE,
        document_system_message: str = DEFAULT_DOCUMENT_SYSTEM_MESSAGE,
        default_config: LlmGenerationConfig | None = None,
        task_limits: TaskExecutionLimits | None = None,
        model_overrides: dict[str, ModelParameterOverrides] | None = None,
        log: logging.Logger | None = None,
    ):
        self._log = log or logger
        self.system_message = system_message
        self._document_system_message = _validate_document_system_message(document_system_message)
        self.core = JorElCoreStore(
            default_config=default_config or LlmGenerationConfig(temperature=0),
            model_overrides=model_overrides,
            log=self._log,
        )
        self.team = JorElAgentManager(self.core, default_limits=task_limits, log=self._log)

    @classmethod
    def from_config(cls, config: JorElConfig | None = None, **kwargs: Any) -> JorEl:
        """Build an instance and register every vendor whose credentials are configured."""
        config = config or JorElConfig.from_env()
        defaults = config.llm
        jorel = cls(
            default_config=LlmGenerationConfig(
                temperature=defaults.temperature,
                max_tokens=defaults.max_tokens,
                max_tool_calls=defaults.max_tool_calls,
                max_tool_call_errors=defaults.max_tool_call_errors,
                stream_buffer=(
                    StreamBufferConfig(buffer_time_ms=defaults.stream_buffer_ms)
                    if defaults.stream_buffer_ms > 0
                    else None
                ),
            ),
            task_limits=TaskExecutionLimits(
                max_iterations=config.tasks.max_iterations,
                max_generations=config.tasks.max_generations,
                max_delegations=config.tasks.max_delegations,
            ),
            **kwargs,
        )
        for vendor in configured_vendors(config.providers):
            jorel.register_vendor(vendor, config)
        if defaults.default_model:
            jorel.default_model = defaults.default_model
        return jorel

    # ─── Providers and models ────────────────────────────────

    def register_provider(self, name: str, provider: LlmCoreProvider) -> None:
        self.core.providers.register_provider(name, provider)

    def register_vendor(self, vendor: str, config: JorElConfig | None = None) -> LlmCoreProvider:
        """Register an OpenAI-family vendor and its default models."""
        provider = get_llm_provider(vendor, config.providers if config else None)
        self.register_provider(provider.name, provider)
        for model in DEFAULT_MODELS.get(vendor, ()):
            self.register_model(model, provider.name)
        for model, dimensions in DEFAULT_EMBEDDING_MODELS.get(vendor, ()):
            self.core.models.register_embedding_model(model, provider.name, dimensions)
        self._log.info(f"Registered provider {provider.name}")
        return provider

    def register_model(
        self,
        model: str,
        provider: str,
        set_as_default: bool = False,
        defaults: ModelSpecificDefaults | None = None,
    ) -> None:
        if not self.core.providers.has_provider(provider):
            raise ConfigurationError(f"Provider {provider} is not registered")
        self.core.models.register_model(model, provider, set_as_default, defaults)

    def register_embedding_model(
        self, model: str, provider: str, dimensions: int, set_as_default: bool = False
    ) -> None:
        if not self.core.providers.has_provider(provider):
            raise ConfigurationError(f"Provider {provider} is not registered")
        self.core.models.register_embedding_model(model, provider, dimensions, set_as_default)

    @property
    def default_model(self) -> str:
        return self.core.models.default_model

    @default_model.setter
    def default_model(self, model: str) -> None:
        self.core.models.set_default_model(model)

    @property
    def temperature(self) -> float | None:
        return self.core.default_config.temperature

    @temperature.setter
    def temperature(self, temperature: float | None) -> None:
        self.core.default_config = replace(self.core.default_config, temperature=temperature)

    @property
    def document_system_message(self) -> str:
        return self._document_system_message

    @document_system_message.setter
    def document_system_message(self, message: str) -> None:
        self._document_system_message = _validate_document_system_message(message)

    # ─── Messages ────────────────────────────────────────────

    def generate_messages(
        self,
        task: TaskInput,
        system_message: str | None = None,
        documents: Documents | None = None,
        document_system_message: str | None = None,
    ) -> list[Message]:
        """[system, user], or just [user] when system_message is ""."""
        user_message = generate_user_message(task)
        if system_message == "" or not (system_message or self.system_message):
            if documents:
                self._log.warning(
                    "Documents were provided but no system message was included. "
                    "The documents will not be included in the request."
                )
            return [user_message]

        collection = (
            documents
            if isinstance(documents, LlmDocumentCollection)
            else LlmDocumentCollection(documents or ())
        )
        return [
            generate_system_message(
                system_message or self.system_message,
                document_system_message or self._document_system_message,
                collection,
            ),
            user_message,
        ]

    # ─── Generation ──────────────────────────────────────────

    async def text(
        self,
        task: TaskInput,
        config: LlmGenerationConfig | None = None,
        documents: Documents | None = None,
        auto_approve: bool = False,
        include_meta: bool = False,
    ) -> str | TextOutput:
        """Answer a task as text, running tools if the config has any."""
        config = config or LlmGenerationConfig()
        messages = self.generate_messages(task, config.system_message, documents)
        result = await self.core.generate_and_process_tools(messages, config, auto_approve)
        response = result.output.content or ""
        if not include_meta:
            return response
        return TextOutput(response, result.output.meta, result.messages, result.stop_reason)

    async def json(
        self,
        task: TaskInput,
        config: LlmGenerationConfig | None = None,
        documents: Documents | None = None,
        auto_approve: bool = False,
        include_meta: bool = False,
    ) -> Any:
        """Answer a task as parsed JSON (`{}` for an empty response)."""
        config = config or LlmGenerationConfig()
        if not config.json_mode:
            config = replace(config, json_mode=True)
        messages = self.generate_messages(task, config.system_message, documents)
        result = await self.core.generate_and_process_tools(messages, config, auto_approve)
        parsed = LlmToolKit.deserialize(result.output.content) if result.output.content else {}
        if not include_meta:
            return parsed
        return TextOutput(parsed, result.output.meta, result.messages, result.stop_reason)

    async def stream(
        self,
        task: TaskInput,
        config: LlmGenerationConfig | None = None,
        documents: Documents | None = None,
    ) -> AsyncGenerator[str, None]:
        """Yield content chunks only."""
        async for event in self.stream_with_meta(task, config, documents):
            if isinstance(event, ChunkEvent) and event.content:
                yield event.content

    async def stream_with_meta(
        self,
        task: TaskInput,
        config: LlmGenerationConfig | None = None,
        documents: Documents | None = None,
        auto_approve: bool = False,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield every stream event, running tools when the config has any."""
        config = config or LlmGenerationConfig()
        messages = self.generate_messages(task, config.system_message, documents)
        if config.tools is not None and config.tools.has_tools:
            stream = self.core.generate_stream_and_process_tools(messages, config, auto_approve)
        else:
            stream = self.core.generate_content_stream(messages, config)
        async for event in stream:
            yield event

    async def embed(self, text: str, model: str | None = None) -> list[float]:
        return await self.core.generate_embedding(text, model)

    def __repr__(self) -> str:
        return (
            f"<JorEl providers={self.core.providers.list_providers()} "
            f"default_model={self.default_model!r}>"
        )
