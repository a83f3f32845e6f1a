"""
LlmTool — a named capability the model can call.

A tool's type follows from its executor:
- a callable                -> "function"            (executed by the tool kit)
- "subTask"                 -> "subTask"             (delegation to another agent)
- "transfer"                -> "transfer"            (hand-off to another agent)
- None                      -> "functionDefinition"  (schema only, caller executes)

Parameters are a JSON schema dict or a pydantic model class. Dict schemas
get defaults filled in; pydantic models are turned into JSON schema and
used to validate arguments before the executor sees them.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel

from jorel.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ToolExecutor = Callable[..., Union[Any, Awaitable[Any]]]


class ToolType(str, Enum):
    FUNCTION = "function"
    FUNCTION_DEFINITION = "functionDefinition"
    SUB_TASK = "subTask"
    TRANSFER = "transfer"


_MARKER_EXECUTORS = {"subTask": ToolType.SUB_TASK, "transfer": ToolType.TRANSFER}


def normalize_params(params: dict | type[BaseModel] | None) -> dict:
    """Fill in JSON schema defaults the vendor APIs expect."""
    if params is None:
        return {
            "type": "object",
            "properties": {},
            "required": [],
            "additionalProperties": False,
        }
    if isinstance(params, type) and issubclass(params, BaseModel):
        schema = params.model_json_schema()
        schema.pop("title", None)
        return schema
    if not isinstance(params, dict):
        raise ConfigurationError(f"Unsupported tool parameter schema: {params!r}")

    schema = dict(params)
    if "type" not in schema:
        if "items" in schema:
            schema["type"] = "array"
        elif "properties" in schema:
            schema["type"] = "object"
        else:
            schema["type"] = "string"
    if schema["type"] == "object":
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        schema.setdefault("additionalProperties", False)
    return schema


def _positional_capacity(func: Callable) -> int:
    """How many positional arguments `func` accepts (3 if variadic)."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return 3
    count = 0
    for param in signature.parameters.values():
        if param.kind == inspect.Parameter.VAR_POSITIONAL:
            return 3
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            count += 1
    return count


class LlmTool:
    """A tool definition plus, for function tools, its executor."""

    def __init__(
        self,
        name: str,
        description: str,
        executor: ToolExecutor | str | None = None,
        params: dict | type[BaseModel] | None = None,
        requires_confirmation: bool = False,
    ):
        if not name:
            raise ConfigurationError("Tool name must not be empty")
        if isinstance(executor, str) and executor not in _MARKER_EXECUTORS:
            raise ConfigurationError(
                f"Tool {name}: unknown executor marker '{executor}'"
            )

        self.name = name
        self.description = description
        self.executor = executor
        self.requires_confirmation = requires_confirmation
        self.params_model = (
            params if isinstance(params, type) and issubclass(params, BaseModel) else None
        )
        self.params = normalize_params(params)

    @property
    def type(self) -> ToolType:
        if isinstance(self.executor, str):
            return _MARKER_EXECUTORS[self.executor]
        if self.executor is None:
            return ToolType.FUNCTION_DEFINITION
        return ToolType.FUNCTION

    @property
    def is_executable(self) -> bool:
        return self.type == ToolType.FUNCTION

    def as_llm_function(self) -> dict:
        """OpenAI-style function definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.params,
            },
        }

    async def execute(
        self,
        args: Any,
        context: dict | None = None,
        secure_context: dict | None = None,
    ) -> Any:
        """Run the executor. Exceptions propagate to the caller."""
        if self.type in (ToolType.SUB_TASK, ToolType.TRANSFER):
            raise ConfigurationError(
                f'Cannot execute tool "{self.name}". {self.type.value} tools '
                "cannot be executed directly."
            )
        if self.executor is None:
            raise ConfigurationError(f"Executor not defined for tool: {self.name}")

        if self.params_model is not None:
            args = self.params_model.model_validate(args or {})

        executor = self.executor
        capacity = _positional_capacity(executor)
        if capacity >= 3:
            result = executor(args, context or {}, secure_context or {})
        elif capacity == 2:
            result = executor(args, context or {})
        elif capacity == 1:
            result = executor(args)
        else:
            result = executor()

        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"<LlmTool:{self.name} ({self.type.value})>"
