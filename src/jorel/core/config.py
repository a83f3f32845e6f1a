"""
JorEl Configuration — settings read from environment variables.

A `.env` file in the working directory is loaded on import. Nothing here
is a singleton: build a JorElConfig (usually via JorElConfig.from_env())
and hand it to the objects that need it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


def _optional_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


@dataclass(frozen=True)
class LlmDefaultsConfig:
    """Generation defaults applied when a request leaves them unset."""

    default_model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    max_tool_calls: int = 5
    max_tool_call_errors: int = 3
    stream_buffer_ms: int = 0  # 0 disables chunk coalescing

    @classmethod
    def from_env(cls) -> LlmDefaultsConfig:
        return cls(
            default_model=os.getenv("JOREL_DEFAULT_MODEL", ""),
            temperature=_optional_float("JOREL_DEFAULT_TEMPERATURE"),
            max_tokens=_optional_int("JOREL_MAX_TOKENS"),
            max_tool_calls=int(os.getenv("JOREL_MAX_TOOL_CALLS", "5")),
            max_tool_call_errors=int(os.getenv("JOREL_MAX_TOOL_CALL_ERRORS", "3")),
            stream_buffer_ms=int(os.getenv("JOREL_STREAM_BUFFER_MS", "0")),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials and endpoints for the OpenAI-family providers."""

    openai_api_key: str = ""
    openai_base_url: str = ""
    groq_api_key: str = ""
    grok_api_key: str = ""
    mistral_api_key: str = ""
    openrouter_api_key: str = ""
    ollama_base_url: str = ""
    azure_api_key: str = ""
    azure_endpoint: str = ""
    azure_api_version: str = "2024-10-21"
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> ProviderConfig:
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL", ""),
            groq_api_key=os.getenv("GROQ_API_KEY", ""),
            grok_api_key=os.getenv("GROK_API_KEY", ""),
            mistral_api_key=os.getenv("MISTRAL_API_KEY", ""),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY", ""),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", ""),
            azure_api_key=os.getenv("AZURE_OPENAI_API_KEY", ""),
            azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT", ""),
            azure_api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21"),
            timeout=float(os.getenv("JOREL_PROVIDER_TIMEOUT", "60.0")),
        )


@dataclass(frozen=True)
class TaskConfig:
    """Default limits for executeTask loops. None means unlimited."""

    max_iterations: int = 10
    max_generations: int | None = None
    max_delegations: int | None = None

    @classmethod
    def from_env(cls) -> TaskConfig:
        return cls(
            max_iterations=int(os.getenv("JOREL_MAX_ITERATIONS", "10")),
            max_generations=_optional_int("JOREL_MAX_GENERATIONS"),
            max_delegations=_optional_int("JOREL_MAX_DELEGATIONS"),
        )


@dataclass(frozen=True)
class JorElConfig:
    """Root configuration."""

    llm: LlmDefaultsConfig = field(default_factory=LlmDefaultsConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    tasks: TaskConfig = field(default_factory=TaskConfig)

    @classmethod
    def from_env(cls) -> JorElConfig:
        return cls(
            llm=LlmDefaultsConfig.from_env(),
            providers=ProviderConfig.from_env(),
            tasks=TaskConfig.from_env(),
        )
