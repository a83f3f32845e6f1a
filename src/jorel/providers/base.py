"""
LlmCoreProvider — the capability contract every vendor adapter satisfies.

JorElCoreStore only talks to providers through this interface. Adapters
are responsible for translating the neutral message model to their
vendor's payloads, honouring the abort event, and reporting usage.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncGenerator, Sequence

from jorel.llm.contracts import LlmGenerationConfig, LlmResponse, ProviderStreamEvent
from jorel.llm.messages import Message


class LlmCoreProvider(ABC):
    """Abstract base for LLM providers."""

    name: str = ""

    @abstractmethod
    async def generate_response(
        self,
        model: str,
        messages: Sequence[Message],
        config: LlmGenerationConfig,
    ) -> LlmResponse:
        """Single-shot generation."""
        ...

    @abstractmethod
    def generate_response_stream(
        self,
        model: str,
        messages: Sequence[Message],
        config: LlmGenerationConfig,
    ) -> AsyncGenerator[ProviderStreamEvent, None]:
        """Stream chunk / reasoning / tool-call events, ending with one ResponseEvent."""
        ...

    @abstractmethod
    async def create_embedding(
        self,
        model: str,
        text: str,
        abort: asyncio.Event | None = None,
    ) -> list[float]:
        ...

    @abstractmethod
    async def get_available_models(self) -> list[str]:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__}:{self.name}>"
