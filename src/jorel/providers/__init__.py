"""Providers — the LlmCoreProvider contract and OpenAI-family adapters."""

from jorel.providers.base import LlmCoreProvider
from jorel.providers.openai_llm import AzureOpenAIProvider, OpenAIProvider
from jorel.providers.registry import get_llm_provider

__all__ = ["AzureOpenAIProvider", "LlmCoreProvider", "OpenAIProvider", "get_llm_provider"]
