"""
JorEl — one message model over many LLM vendors, tool calling with
approvals, and resumable multi-agent tasks.

    from jorel import JorEl

    jorel = JorEl.from_config()
    print(await jorel.text("Hello!"))
"""

from jorel.agents import (
    HaltReason,
    JorElAgentManager,
    LlmAgent,
    LlmAgentDefinition,
    TaskExecution,
    TaskExecutionDefinition,
    TaskExecutionLimits,
    TaskStatus,
)
from jorel.core import (
    ConfigurationError,
    JorElAbortError,
    JorElConfig,
    JorElError,
    LlmProviderError,
    setup_logging,
)
from jorel.documents import LlmDocument, LlmDocumentCollection
from jorel.jorel import JorEl, TextOutput
from jorel.llm import (
    LlmGenerationConfig,
    StopReason,
    generate_assistant_message,
    generate_system_message,
    generate_user_message,
)
from jorel.llm.core import JorElCoreStore
from jorel.providers import LlmCoreProvider, OpenAIProvider
from jorel.tools import LlmTool, LlmToolKit

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "HaltReason",
    "JorEl",
    "JorElAbortError",
    "JorElAgentManager",
    "JorElConfig",
    "JorElCoreStore",
    "JorElError",
    "LlmAgent",
    "LlmAgentDefinition",
    "LlmCoreProvider",
    "LlmDocument",
    "LlmDocumentCollection",
    "LlmGenerationConfig",
    "LlmProviderError",
    "LlmTool",
    "LlmToolKit",
    "OpenAIProvider",
    "StopReason",
    "TaskExecution",
    "TaskExecutionDefinition",
    "TaskExecutionLimits",
    "TaskStatus",
    "TextOutput",
    "generate_assistant_message",
    "generate_system_message",
    "generate_user_message",
    "setup_logging",
]
