"""
Provider and model registries.

ProviderManager maps provider names to LlmCoreProvider instances.
ModelManager maps model ids to their provider and per-model defaults,
and tracks the default (chat and embedding) model. Lookups of unknown
names raise ConfigurationError; nothing is created implicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from jorel.core.errors import ConfigurationError
from jorel.providers.base import LlmCoreProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSpecificDefaults:
    temperature: float | None = None
    reasoning_effort: str | None = None
    verbosity: str | None = None


@dataclass(frozen=True)
class ModelEntry:
    model: str
    provider: str
    defaults: ModelSpecificDefaults = field(default_factory=ModelSpecificDefaults)


@dataclass(frozen=True)
class EmbeddingModelEntry:
    model: str
    provider: str
    dimensions: int


class ProviderManager:
    def __init__(self, log: logging.Logger | None = None):
        self._providers: dict[str, LlmCoreProvider] = {}
        self._log = log or logger

    def register_provider(self, name: str, provider: LlmCoreProvider) -> None:
        if name in self._providers:
            raise ConfigurationError(f"Provider {name} is already registered")
        self._providers[name] = provider
        self._log.debug(f"Registered provider {name}")

    def unregister_provider(self, name: str) -> None:
        if name not in self._providers:
            raise ConfigurationError(f"Provider {name} is not registered")
        del self._providers[name]

    def get_provider(self, name: str) -> LlmCoreProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise ConfigurationError(f"Provider {name} is not registered")
        return provider

    def has_provider(self, name: str) -> bool:
        return name in self._providers

    def list_providers(self) -> list[str]:
        return list(self._providers)


class ModelManager:
    def __init__(self, log: logging.Logger | None = None):
        self._models: dict[str, ModelEntry] = {}
        self._embedding_models: dict[str, EmbeddingModelEntry] = {}
        self._default_model = ""
        self._default_embedding_model = ""
        self._log = log or logger

    # --- Chat models ---

    def register_model(
        self,
        model: str,
        provider: str,
        set_as_default: bool = False,
        defaults: ModelSpecificDefaults | None = None,
    ) -> None:
        self._models[model] = ModelEntry(
            model=model, provider=provider, defaults=defaults or ModelSpecificDefaults()
        )
        self._log.debug(f"Registered model {model} with provider {provider}")
        if set_as_default or not self._default_model:
            self._default_model = model

    def unregister_model(self, model: str) -> None:
        self._models.pop(model, None)
        self._log.debug(f"Unregistered model {model}")
        if self._default_model == model:
            self._default_model = next(iter(self._models), "")

    def get_model(self, model: str) -> ModelEntry:
        entry = self._models.get(model)
        if entry is None:
            raise ConfigurationError(f"Model {model} is not registered")
        return entry

    def set_model_specific_defaults(self, model: str, defaults: ModelSpecificDefaults) -> None:
        self._models[model] = replace(self.get_model(model), defaults=defaults)

    @property
    def default_model(self) -> str:
        return self._default_model

    def set_default_model(self, model: str) -> None:
        self.get_model(model)
        self._default_model = model

    def list_models(self) -> list[ModelEntry]:
        return list(self._models.values())

    # --- Embedding models ---

    def register_embedding_model(
        self, model: str, provider: str, dimensions: int, set_as_default: bool = False
    ) -> None:
        self._embedding_models[model] = EmbeddingModelEntry(model, provider, dimensions)
        self._log.debug(f"Registered embedding model {model} with provider {provider}")
        if set_as_default or not self._default_embedding_model:
            self._default_embedding_model = model

    def unregister_embedding_model(self, model: str) -> None:
        self._embedding_models.pop(model, None)
        if self._default_embedding_model == model:
            self._default_embedding_model = next(iter(self._embedding_models), "")

    def get_embedding_model(self, model: str) -> EmbeddingModelEntry:
        entry = self._embedding_models.get(model)
        if entry is None:
            raise ConfigurationError(f"Model {model} is not registered")
        return entry

    @property
    def default_embedding_model(self) -> str:
        return self._default_embedding_model

    def set_default_embedding_model(self, model: str) -> None:
        self.get_embedding_model(model)
        self._default_embedding_model = model

    def list_embedding_models(self) -> list[EmbeddingModelEntry]:
        return list(self._embedding_models.values())
