"""Tests for the config system."""

import logging

import pytest

from jorel.core.config import JorElConfig, LlmDefaultsConfig, ProviderConfig, TaskConfig
from jorel.core.errors import ConfigurationError
from jorel.core.logging import StructuredFormatter
from jorel.providers.openai_llm import AzureOpenAIProvider, OpenAIProvider
from jorel.providers.registry import configured_vendors, get_llm_provider


def test_llm_defaults():
    cfg = LlmDefaultsConfig()
    assert cfg.default_model == ""
    assert cfg.temperature is None
    assert cfg.max_tool_calls == 5
    assert cfg.max_tool_call_errors == 3
    assert cfg.stream_buffer_ms == 0


def test_task_defaults():
    cfg = TaskConfig()
    assert cfg.max_iterations == 10
    assert cfg.max_generations is None
    assert cfg.max_delegations is None


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("JOREL_DEFAULT_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("JOREL_DEFAULT_TEMPERATURE", "0.2")
    monkeypatch.setenv("JOREL_MAX_ITERATIONS", "4")
    monkeypatch.setenv("JOREL_MAX_DELEGATIONS", "2")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    cfg = JorElConfig.from_env()
    assert cfg.llm.default_model == "gpt-4o-mini"
    assert cfg.llm.temperature == 0.2
    assert cfg.tasks.max_iterations == 4
    assert cfg.tasks.max_delegations == 2
    assert cfg.tasks.max_generations is None
    assert cfg.providers.openai_api_key == "sk-test"


def test_blank_optional_values_are_unset(monkeypatch):
    monkeypatch.setenv("JOREL_MAX_GENERATIONS", "  ")
    assert TaskConfig.from_env().max_generations is None


def test_configured_vendors():
    cfg = ProviderConfig(openai_api_key="sk", mistral_api_key="m", azure_api_key="a")
    # azure needs an endpoint as well
    assert configured_vendors(cfg) == ["openai", "mistral"]


def test_get_llm_provider_for_compatible_vendor():
    provider = get_llm_provider("groq", ProviderConfig(groq_api_key="gsk"))
    assert isinstance(provider, OpenAIProvider)
    assert provider.name == "groq"


def test_get_llm_provider_for_azure():
    provider = get_llm_provider(
        "azure-openai", ProviderConfig(azure_api_key="a", azure_endpoint="https://x.openai.azure.com")
    )
    assert isinstance(provider, AzureOpenAIProvider)
    assert provider.name == "azure-openai"


def test_get_llm_provider_unknown():
    with pytest.raises(ConfigurationError, match="Unknown LLM provider"):
        get_llm_provider("nope", ProviderConfig())


def test_structured_formatter_includes_extra_fields():
    record = logging.LogRecord("jorel.test", logging.INFO, __file__, 1, "hello", None, None)
    record.task_id = "task-1"
    record.duration_ms = 42
    line = StructuredFormatter().format(record)
    assert '"task_id": "task-1"' in line
    assert '"duration_ms": 42' in line
    assert '"msg": "hello"' in line
