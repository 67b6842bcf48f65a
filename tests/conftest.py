"""
Shared fixtures built on the fakes in ``tests.fakes``.
"""
from __future__ import annotations

import pytest

from insight_copilot.copilot.service import CopilotService
from insight_copilot.core.config import Settings
from insight_copilot.governance.policy import load_security_policy
from insight_copilot.providers.embeddings import MockEmbedder
from insight_copilot.providers.vector_store import InMemoryVectorStore

from tests.fakes import DIMENSION, CountingSqlGenerator, FakeWarehouse


@pytest.fixture
def policy():
    return load_security_policy()


@pytest.fixture
def embedder():
    return MockEmbedder(DIMENSION)


@pytest.fixture
def vector_store():
    return InMemoryVectorStore(DIMENSION)


@pytest.fixture
def make_service(embedder, vector_store, policy):
    """Factory: a service around the shared fakes; any port can be overridden."""

    def _make(**overrides) -> CopilotService:
        kwargs = dict(
            embedder=embedder,
            vector_store=vector_store,
            sql_generator=CountingSqlGenerator(),
            warehouse=FakeWarehouse(),
            synthesizer=None,
            policy=policy,
            settings=Settings(),
        )
        kwargs.update(overrides)
        return CopilotService(**kwargs)

    return _make
