"""
Tools — definitions, the tool kit, and tool-call utilities.

    LlmTool       one callable capability (or a delegation / transfer marker)
    LlmToolKit    registry + classification + execution with error capture
    utilities     pure helpers over tool calls and messages
"""

from jorel.tools import utilities
from jorel.tools.tool import LlmTool, ToolType
from jorel.tools.toolkit import LlmToolKit, ToolCallClassification, ToolCallOutcome

__all__ = [
    "LlmTool",
    "LlmToolKit",
    "ToolCallClassification",
    "ToolCallOutcome",
    "ToolType",
    "utilities",
]
