"""
Provider registry — build a provider by vendor name.

All supported vendors speak the OpenAI chat completions protocol; they
differ only in base URL and credentials.
"""

from __future__ import annotations

import logging

from jorel.core.config import ProviderConfig
from jorel.core.errors import ConfigurationError
from jorel.providers.base import LlmCoreProvider
from jorel.providers.openai_llm import AzureOpenAIProvider, OpenAIProvider

logger = logging.getLogger(__name__)

VENDOR_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "grok": "https://api.x.ai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://localhost:11434/v1",
}

SUPPORTED_VENDORS = ("openai", "azure-openai", *VENDOR_BASE_URLS)

# Chat models registered alongside a vendor
DEFAULT_MODELS: dict[str, tuple[str, ...]] = {
    "openai": (
        "gpt-4o-mini",
        "gpt-4o",
        "gpt-4o-2024-08-06",
        "gpt-4o-2024-11-20",
        "gpt-4-turbo",
        "gpt-4",
        "gpt-3.5-turbo",
        "o1",
        "o1-mini",
        "o3-mini",
    ),
    "mistral": (
        "mistral-large-latest",
        "pixtral-large-latest",
        "ministral-3b-latest",
        "ministral-8b-latest",
        "codestral-latest",
    ),
}

# (model, dimensions)
DEFAULT_EMBEDDING_MODELS: dict[str, tuple[tuple[str, int], ...]] = {
    "openai": (
        ("text-embedding-3-small", 1536),
        ("text-embedding-3-large", 3072),
        ("text-embedding-ada-002", 1536),
    ),
    "mistral": (("mistral-embed", 1024),),
}


def get_llm_provider(vendor: str, config: ProviderConfig | None = None) -> LlmCoreProvider:
    config = config or ProviderConfig.from_env()
    if vendor == "openai":
        return OpenAIProvider(
            name="openai",
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.timeout,
        )
    elif vendor == "azure-openai":
        return AzureOpenAIProvider(
            api_key=config.azure_api_key,
            endpoint=config.azure_endpoint,
            api_version=config.azure_api_version,
            timeout=config.timeout,
        )
    elif vendor == "groq":
        return OpenAIProvider("groq", config.groq_api_key, VENDOR_BASE_URLS["groq"], config.timeout)
    elif vendor == "grok":
        return OpenAIProvider("grok", config.grok_api_key, VENDOR_BASE_URLS["grok"], config.timeout)
    elif vendor == "mistral":
        return OpenAIProvider(
            "mistral", config.mistral_api_key, VENDOR_BASE_URLS["mistral"], config.timeout
        )
    elif vendor == "openrouter":
        return OpenAIProvider(
            "openrouter", config.openrouter_api_key, VENDOR_BASE_URLS["openrouter"], config.timeout
        )
    elif vendor == "ollama":
        return OpenAIProvider(
            "ollama",
            "ollama",
            config.ollama_base_url or VENDOR_BASE_URLS["ollama"],
            config.timeout,
        )
    else:
        raise ConfigurationError(f"Unknown LLM provider: {vendor}")


def configured_vendors(config: ProviderConfig) -> list[str]:
    """Vendors whose credentials (or endpoint) are present in config."""
    vendors = []
    if config.openai_api_key:
        vendors.append("openai")
    if config.azure_api_key and config.azure_endpoint:
        vendors.append("azure-openai")
    if config.groq_api_key:
        vendors.append("groq")
    if config.grok_api_key:
        vendors.append("grok")
    if config.mistral_api_key:
        vendors.append("mistral")
    if config.openrouter_api_key:
        vendors.append("openrouter")
    if config.ollama_base_url:
        vendors.append("ollama")
    return vendors
