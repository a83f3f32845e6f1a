"""
Model parameter overrides — quirks of specific models.

Some reasoning models reject a temperature, and the early o1 models also
reject system messages. The table is handed to JorElCoreStore at
construction so tests (or callers) can swap it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class ModelParameterOverrides:
    no_temperature: bool = False
    no_system_message: bool = False


_NO_TEMPERATURE = ModelParameterOverrides(no_temperature=True)
_NO_TEMPERATURE_OR_SYSTEM = ModelParameterOverrides(no_temperature=True, no_system_message=True)

DEFAULT_MODEL_PARAMETER_OVERRIDES: Mapping[str, ModelParameterOverrides] = {
    "o1": _NO_TEMPERATURE,
    "o1-2024-12-17": _NO_TEMPERATURE,
    "o1-preview": _NO_TEMPERATURE_OR_SYSTEM,
    "o1-preview-2024-09-12": _NO_TEMPERATURE_OR_SYSTEM,
    "o1-mini": _NO_TEMPERATURE_OR_SYSTEM,
    "o1-mini-2024-09-12": _NO_TEMPERATURE_OR_SYSTEM,
    "o3-mini": _NO_TEMPERATURE,
    "o3-mini-2025-01-31": _NO_TEMPERATURE,
}


def get_model_overrides(
    model: str,
    table: Mapping[str, ModelParameterOverrides] | None = None,
) -> ModelParameterOverrides:
    table = DEFAULT_MODEL_PARAMETER_OVERRIDES if table is None else table
    return table.get(model, ModelParameterOverrides())
