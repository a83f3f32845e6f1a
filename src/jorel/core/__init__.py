"""
Core — configuration, logging, errors and shared helpers.
"""

from jorel.core.config import JorElConfig
from jorel.core.errors import (
    AgentError,
    ConfigurationError,
    GenerationError,
    JorElAbortError,
    JorElError,
    LlmProviderError,
    TaskCreationError,
    TaskExecutionError,
    ToolKitError,
    is_abort_error,
)
from jorel.core.logging import setup_logging

__all__ = [
    "AgentError",
    "ConfigurationError",
    "GenerationError",
    "JorElAbortError",
    "JorElConfig",
    "JorElError",
    "LlmProviderError",
    "TaskCreationError",
    "TaskExecutionError",
    "ToolKitError",
    "is_abort_error",
    "setup_logging",
]
