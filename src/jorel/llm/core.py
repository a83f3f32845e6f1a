"""
JorElCoreStore — generation orchestrator.

Resolves model and provider, applies model-specific defaults and
parameter overrides, and drives three kinds of requests:

- generate():                      one provider call
- generate_and_process_tools():    generate -> run tools -> generate ... until
                                   a plain answer, an approval gate, or the
                                   attempt budget is exhausted
- generate_stream_and_process_tools(): the streaming analogue, emitting
                                   messageStart / chunk / toolCall* / messageEnd /
                                   response / messages events

Streaming never raises for provider failures or cancellation: both end
the request with a response event carrying the partial content and a
stop reason (generationError / userCancelled).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import fields, replace
from typing import AsyncGenerator, Mapping, Sequence

from jorel.core.errors import (
    GenerationError,
    JorElAbortError,
    JorElError,
    LlmProviderError,
    ToolKitError,
)
from jorel.core.ids import generate_unique_id, now_ms
from jorel.core.logging import GenerationTimer
from jorel.llm.buffer import buffered_stream
from jorel.llm.contracts import (
    ChunkEvent,
    GenerationResult,
    LlmError,
    LlmGenerationConfig,
    LlmResponse,
    MessageEndEvent,
    MessagesEvent,
    MessageStartEvent,
    ProviderStreamEvent,
    ReasoningChunkEvent,
    ResponseEvent,
    StopReason,
    StreamEvent,
    ToolCallCompletedEvent,
    ToolCallStartedEvent,
)
from jorel.llm.messages import (
    AssistantMessage,
    AssistantMessageMeta,
    AssistantMessageWithToolCalls,
    ExecutionState,
    GenerationAttempt,
    Message,
    MessageRole,
    ToolCall,
)
from jorel.llm.overrides import (
    DEFAULT_MODEL_PARAMETER_OVERRIDES,
    ModelParameterOverrides,
    get_model_overrides,
)
from jorel.llm.registry import ModelEntry, ModelManager, ProviderManager
from jorel.providers.base import LlmCoreProvider
from jorel.tools import utilities
from jorel.tools.tool import ToolType
from jorel.tools.toolkit import ToolCallClassification

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_CALLS = 5
DEFAULT_MAX_TOOL_CALL_ERRORS = 3

# Resolved per model: request, then model-specific default, then store default
_MODEL_DEFAULTED_FIELDS = ("temperature", "reasoning_effort", "verbosity")


def mask_secure_context(secure_context: dict | None) -> dict | None:
    """Replace every secure context value before it reaches a log line."""
    if secure_context is None:
        return None
    return {key: "***" for key in secure_context}


class _UsageTracker:
    """Accumulates per-attempt usage across a tool loop."""

    def __init__(self):
        self.generations: list[GenerationAttempt] = []
        self.input_tokens = 0
        self.output_tokens = 0
        self.duration_ms = 0

    def record(self, meta: AssistantMessageMeta, had_tool_calls: bool) -> None:
        self.generations.append(
            GenerationAttempt(
                model=meta.model,
                provider=meta.provider,
                temperature=meta.temperature,
                duration_ms=meta.duration_ms,
                input_tokens=meta.input_tokens,
                output_tokens=meta.output_tokens,
                had_tool_calls=had_tool_calls,
                timestamp=now_ms(),
            )
        )
        self.input_tokens += meta.input_tokens or 0
        self.output_tokens += meta.output_tokens or 0
        self.duration_ms += meta.duration_ms

    def cumulative(self, meta: AssistantMessageMeta) -> AssistantMessageMeta:
        """Summed meta when more than one generation happened."""
        if len(self.generations) <= 1:
            return meta
        return replace(
            meta,
            input_tokens=self.input_tokens or None,
            output_tokens=self.output_tokens or None,
            duration_ms=self.duration_ms,
            generations=tuple(self.generations),
        )


class JorElCoreStore:
    """Drives generations against registered providers and models."""

    def __init__(
        self,
        provider_manager: ProviderManager | None = None,
        model_manager: ModelManager | None = None,
        default_config: LlmGenerationConfig | None = None,
        model_overrides: Mapping[str, ModelParameterOverrides] | None = None,
        log: logging.Logger | None = None,
    ):
        self._log = log or logger
        self.providers = provider_manager or ProviderManager(self._log)
        self.models = model_manager or ModelManager(self._log)
        self.default_config = default_config or LlmGenerationConfig()
        self.model_overrides = (
            DEFAULT_MODEL_PARAMETER_OVERRIDES if model_overrides is None else model_overrides
        )

    # ─── Resolution ──────────────────────────────────────────

    def _with_defaults(self, config: LlmGenerationConfig | None) -> LlmGenerationConfig:
        config = config or LlmGenerationConfig()
        unset = {
            f.name: getattr(self.default_config, f.name)
            for f in fields(LlmGenerationConfig)
            if f.name not in _MODEL_DEFAULTED_FIELDS
            and getattr(config, f.name) is None and getattr(self.default_config, f.name) is not None
        }
        return replace(config, **unset) if unset else config

    def _resolve_model(self, model: str | None) -> tuple[ModelEntry, LlmCoreProvider]:
        entry = self.models.get_model(model or self.models.default_model)
        return entry, self.providers.get_provider(entry.provider)

    def _apply_overrides(
        self,
        messages: Sequence[Message],
        config: LlmGenerationConfig,
        entry: ModelEntry,
    ) -> tuple[list[Message], LlmGenerationConfig]:
        overrides = get_model_overrides(entry.model, self.model_overrides)

        if overrides.no_system_message and any(m.role == MessageRole.SYSTEM for m in messages):
            self._log.debug(
                f"System messages are not supported for {entry.model} and will be ignored"
            )
        if overrides.no_temperature and config.temperature is not None:
            self._log.debug(f"Temperature is not supported for {entry.model} and will be ignored")

        if overrides.no_system_message:
            messages = [m for m in messages if m.role != MessageRole.SYSTEM]

        defaults = entry.defaults
        fallback = self.default_config
        if overrides.no_temperature:
            temperature = None
        elif config.temperature is not None:
            temperature = config.temperature
        elif defaults.temperature is not None:
            temperature = defaults.temperature
        else:
            temperature = fallback.temperature

        return list(messages), replace(
            config,
            model=entry.model,
            temperature=temperature,
            reasoning_effort=(
                config.reasoning_effort or defaults.reasoning_effort or fallback.reasoning_effort
            ),
            verbosity=config.verbosity or defaults.verbosity or fallback.verbosity,
            logger=config.logger or self._log,
        )

    # ─── Single generation ───────────────────────────────────

    async def generate(
        self,
        messages: Sequence[Message],
        config: LlmGenerationConfig | None = None,
    ) -> LlmResponse:
        config = self._with_defaults(config)
        entry, provider = self._resolve_model(config.model)
        request_messages, request = self._apply_overrides(messages, config, entry)

        if request.aborted:
            raise JorElAbortError("Request was aborted before generation could start")

        self._log.debug(
            f"Generating response with model {entry.model} and provider {entry.provider}",
            extra={"model": entry.model, "provider": entry.provider},
        )
        try:
            response = await provider.generate_response(entry.model, request_messages, request)
        except (JorElError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise LlmProviderError(str(e), provider=entry.provider, model=entry.model) from e

        self._log.debug(
            f"Generated response in {response.meta.duration_ms}ms. "
            f"{response.meta.input_tokens} input tokens, {response.meta.output_tokens} output tokens",
            extra={"duration_ms": response.meta.duration_ms, "model": entry.model},
        )
        return response

    async def generate_and_process_tools(
        self,
        messages: Sequence[Message],
        config: LlmGenerationConfig | None = None,
        auto_approve: bool = False,
    ) -> GenerationResult:
        """Generate and run tool calls until a plain answer or an approval gate."""
        config = self._with_defaults(config)
        transcript: list[Message] = list(messages)
        tools = config.tools

        max_calls = config.max_tool_calls or DEFAULT_MAX_TOOL_CALLS
        max_errors = config.max_tool_call_errors or DEFAULT_MAX_TOOL_CALL_ERRORS
        calls_used = 0
        errors_used = 0
        usage = _UsageTracker()

        generation: LlmResponse | None = None
        for _ in range(max(max_calls, max_errors)):
            if config.aborted:
                raise JorElAbortError("Request was aborted")
            generation = await self.generate(transcript, config)
            usage.record(generation.meta, had_tool_calls=bool(generation.tool_calls))

            if not generation.tool_calls or tools is None:
                break

            message = generation.to_message()
            if auto_approve:
                message = utilities.approve_message_calls(message)

            self._log.debug(
                "Processing tool calls",
                extra={"model": generation.meta.model},
            )
            self._log.debug(
                f"Tool context: {config.context} secure: {mask_secure_context(config.secure_context)}"
            )
            processed = await tools.process_calls_with_usage(
                message,
                context=config.context,
                secure_context=config.secure_context,
                max_errors=max(0, max_errors - errors_used),
                max_calls=max(0, max_calls - calls_used),
                abort=config.abort,
            )
            message = processed.message
            calls_used += processed.calls
            errors_used += processed.errors
            generation = replace(generation, tool_calls=message.tool_calls)

            if tools.classify_tool_calls(message.tool_calls) == ToolCallClassification.APPROVAL_PENDING:
                self._log.debug("Tool calls require approval - stopping processing")
                message = replace(message, meta=usage.cumulative(generation.meta))
                transcript.append(message)
                return GenerationResult(
                    output=message,
                    messages=transcript,
                    stop_reason=StopReason.TOOL_CALLS_REQUIRE_APPROVAL,
                )
            transcript.append(message)

        if generation is None:
            raise GenerationError("Unable to generate a response")

        output = AssistantMessage(
            content=generation.content or "",
            reasoning_content=generation.reasoning_content,
            meta=usage.cumulative(generation.meta),
        )
        transcript.append(output)
        return GenerationResult(
            output=output,
            messages=transcript,
            stop_reason=StopReason.COMPLETED,
        )

    # ─── Streaming ───────────────────────────────────────────

    async def generate_content_stream(
        self,
        messages: Sequence[Message],
        config: LlmGenerationConfig | None = None,
    ) -> AsyncGenerator[ProviderStreamEvent, None]:
        """Stream one generation: chunks, then exactly one ResponseEvent."""
        config = self._with_defaults(config)
        entry, provider = self._resolve_model(config.model)
        request_messages, request = self._apply_overrides(messages, config, entry)

        self._log.debug(
            f"Generating response stream with model {entry.model} and provider {entry.provider}",
            extra={"model": entry.model, "provider": entry.provider},
        )
        source = self._guarded_stream(provider, entry, request_messages, request)
        async for event in buffered_stream(source, request.stream_buffer):
            yield event
            if isinstance(event, ResponseEvent):
                self._log.debug(
                    "Finished generating response stream",
                    extra={"stop_reason": event.stop_reason.value},
                )

    async def _guarded_stream(
        self,
        provider: LlmCoreProvider,
        entry: ModelEntry,
        messages: list[Message],
        request: LlmGenerationConfig,
    ) -> AsyncGenerator[ProviderStreamEvent, None]:
        """Turn provider failures and aborts into a terminal ResponseEvent."""
        timer = GenerationTimer()
        content: list[str] = []
        reasoning: list[str] = []

        def partial(stop_reason: StopReason, error: LlmError | None = None) -> ResponseEvent:
            return ResponseEvent(
                content="".join(content),
                reasoning_content="".join(reasoning) or None,
                meta=AssistantMessageMeta(
                    model=entry.model,
                    provider=entry.provider,
                    temperature=request.temperature,
                    duration_ms=timer.elapsed_ms(),
                ),
                stop_reason=stop_reason,
                error=error,
            )

        if request.aborted:
            yield partial(StopReason.USER_CANCELLED)
            return

        stream = provider.generate_response_stream(entry.model, messages, request)
        try:
            async for event in stream:
                if request.aborted:
                    self._log.debug(f"Stream cancelled after {len(content)} chunks")
                    yield partial(StopReason.USER_CANCELLED)
                    return
                if isinstance(event, ChunkEvent):
                    content.append(event.content)
                elif isinstance(event, ReasoningChunkEvent):
                    reasoning.append(event.content)
                yield event
                if isinstance(event, ResponseEvent):
                    return
        except JorElAbortError:
            yield partial(StopReason.USER_CANCELLED)
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.warning(
                f"Provider {entry.provider} failed mid-stream: {e}",
                extra={"model": entry.model, "provider": entry.provider},
            )
            yield partial(
                StopReason.GENERATION_ERROR,
                LlmError(message=str(e) or type(e).__name__, type=type(e).__name__),
            )
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        # Provider ended without a response event
        yield partial(StopReason.USER_CANCELLED if request.aborted else StopReason.COMPLETED)

    async def generate_stream_and_process_tools(
        self,
        messages: Sequence[Message],
        config: LlmGenerationConfig | None = None,
        auto_approve: bool = False,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Stream generations and run tool calls between them."""
        config = self._with_defaults(config)
        tools = config.tools
        if tools is not None and any(tool.type != ToolType.FUNCTION for tool in tools.tools):
            raise ToolKitError("Only tools with a function executor can be used in this context")

        transcript: list[Message] = list(messages)
        max_calls = config.max_tool_calls or DEFAULT_MAX_TOOL_CALLS
        max_errors = config.max_tool_call_errors or DEFAULT_MAX_TOOL_CALL_ERRORS
        calls_used = 0
        errors_used = 0
        usage = _UsageTracker()

        response: ResponseEvent | None = None
        stop_reason = StopReason.COMPLETED
        error: LlmError | None = None
        message_id = generate_unique_id()

        for _ in range(max(max_calls, max_errors)):
            yield MessageStartEvent(message_id=message_id)

            response = None
            async for event in self.generate_content_stream(transcript, config):
                if isinstance(event, ResponseEvent):
                    response = event
                    usage.record(event.meta, had_tool_calls=bool(event.tool_calls))
                    if event.stop_reason != StopReason.COMPLETED:
                        stop_reason = event.stop_reason
                    if event.error is not None:
                        error = event.error
                else:
                    yield event

            if response is None:
                raise GenerationError("Unable to generate a response")

            if stop_reason in (StopReason.USER_CANCELLED, StopReason.GENERATION_ERROR):
                response = replace(response, meta=usage.cumulative(response.meta))
                message = self._message_from_response(response, message_id, response.tool_calls)
                yield MessageEndEvent(message_id=message_id, message=message)
                transcript.append(message)
                yield response
                yield MessagesEvent(messages=transcript, stop_reason=stop_reason, error=error)
                return

            if not response.tool_calls or tools is None:
                break

            tool_calls = list(response.tool_calls)
            if auto_approve:
                tool_calls = utilities.approve_calls(tool_calls)

            for call in tool_calls:
                yield ToolCallStartedEvent(tool_call=call)

            if utilities.has_calls_requiring_approval(tool_calls):
                message = self._message_from_response(response, message_id, tool_calls)
                yield MessageEndEvent(message_id=message_id, message=message)
                transcript.append(message)
                yield replace(
                    response,
                    tool_calls=tuple(tool_calls),
                    meta=usage.cumulative(response.meta),
                    stop_reason=StopReason.TOOL_CALLS_REQUIRE_APPROVAL,
                )
                yield MessagesEvent(
                    messages=transcript, stop_reason=StopReason.TOOL_CALLS_REQUIRE_APPROVAL
                )
                return

            processed: list[ToolCall] = []
            for call in tool_calls:
                if call.execution_state != ExecutionState.PENDING:
                    pass
                elif config.aborted:
                    call = call.failed("AbortError", "Request was aborted")
                elif errors_used >= max_errors:
                    call = call.failed("ToolExecutionError", "Too many tool call errors")
                elif calls_used >= max_calls:
                    call = call.failed("ToolExecutionError", "Too many tool calls")
                else:
                    outcome = await tools.process_tool_call(
                        call, context=config.context, secure_context=config.secure_context
                    )
                    call = outcome.tool_call
                    if call.execution_state in (ExecutionState.COMPLETED, ExecutionState.ERROR):
                        yield ToolCallCompletedEvent(tool_call=call)
                    if call.execution_state == ExecutionState.ERROR:
                        errors_used += 1
                    calls_used += 1
                processed.append(call)

            message = self._message_from_response(response, message_id, processed)
            yield MessageEndEvent(message_id=message_id, message=message)
            transcript.append(message)
            message_id = generate_unique_id()

        if response is not None:
            response = replace(response, meta=usage.cumulative(response.meta))
            message = self._message_from_response(response, message_id, ())
            yield MessageEndEvent(message_id=message_id, message=message)
            transcript.append(message)
            yield response

        yield MessagesEvent(messages=transcript, stop_reason=stop_reason, error=error)

    @staticmethod
    def _message_from_response(
        response: ResponseEvent,
        message_id: str,
        tool_calls: Sequence[ToolCall],
    ) -> AssistantMessage | AssistantMessageWithToolCalls:
        if tool_calls:
            return AssistantMessageWithToolCalls(
                id=message_id,
                content=response.content or None,
                tool_calls=tuple(tool_calls),
                reasoning_content=response.reasoning_content,
                meta=response.meta,
            )
        return AssistantMessage(
            id=message_id,
            content=response.content or "",
            reasoning_content=response.reasoning_content,
            meta=response.meta,
        )

    # ─── Embeddings ──────────────────────────────────────────

    async def generate_embedding(
        self,
        text: str,
        model: str | None = None,
        abort: asyncio.Event | None = None,
    ) -> list[float]:
        entry = self.models.get_embedding_model(model or self.models.default_embedding_model)
        provider = self.providers.get_provider(entry.provider)
        if abort is not None and abort.is_set():
            raise JorElAbortError("Embedding request was aborted")

        self._log.debug(
            f"Generating embedding with model {entry.model} and provider {entry.provider}"
        )
        try:
            return await provider.create_embedding(entry.model, text, abort)
        except (JorElError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise LlmProviderError(str(e), provider=entry.provider, model=entry.model) from e
