"""
JorEl errors — one hierarchy for everything the library raises.

Tool execution failures are NOT exceptions: they are captured onto the
ToolCall itself. Everything here signals a caller bug, a provider failure
or an intentional abort.
"""

from __future__ import annotations

import asyncio


class JorElError(Exception):
    """Base class for all JorEl errors."""


class ConfigurationError(JorElError):
    """Unknown or duplicate model/provider, malformed definitions."""


class GenerationError(JorElError):
    """The generation loop finished without ever producing a response."""


class LlmProviderError(JorElError):
    """A provider (network / vendor API) call failed."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message)
        self.provider = provider
        self.model = model


class JorElAbortError(JorElError):
    """Generation was cancelled through the abort signal."""

    code = "GENERATION_ABORTED"

    def __init__(self, message: str = "Generation aborted"):
        super().__init__(message)


class ToolKitError(JorElError):
    """Misuse of the tool registry."""


class AgentError(JorElError):
    """Agent misconfiguration. Message is prefixed with the agent name."""

    def __init__(self, agent_name: str, message: str):
        super().__init__(f"Agent {agent_name}: {message}")
        self.agent_name = agent_name


class TaskCreationError(JorElError):
    """A task or thread could not be constructed or rehydrated."""


class TaskExecutionError(JorElError):
    """A task graph operation hit an integrity violation."""


def is_abort_error(error: BaseException) -> bool:
    """True for JorEl aborts and asyncio cancellation."""
    return isinstance(error, (JorElAbortError, asyncio.CancelledError))
