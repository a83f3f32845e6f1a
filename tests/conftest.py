"""Shared fixtures: a core wired to the scripted provider, and a team manager."""

import pytest

from fakes import FakeProvider
from jorel.agents.manager import JorElAgentManager
from jorel.llm.core import JorElCoreStore


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def core(provider):
    store = JorElCoreStore()
    store.providers.register_provider("test", provider)
    store.models.register_model("test-model", "test")
    store.models.register_embedding_model("test-embedding", "test", 3)
    return store


@pytest.fixture
def manager(core):
    return JorElAgentManager(core)
