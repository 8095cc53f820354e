"""Shared fixtures: a prompt-routed fake text generator and wired stores."""

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.orchestration.core.main_agent import build_mesh
from agent_mesh.infrastructure.config.settings import (
    ExecutorSettings,
    SchedulerSettings,
    Settings,
)
from agent_mesh.infrastructure.llm.embedder import LangChainEmbedder

from tests.fakes import FailingEmbedder, ScriptedGenerator


@pytest.fixture
def embedder():
    """Deterministic 32-dimension embedder: equal text, equal vector."""
    return LangChainEmbedder(DeterministicFakeEmbedding(size=32))


@pytest.fixture
def store(embedder):
    return HybridStore(embedder)


@pytest.fixture
def keyword_only_store():
    """Store whose embeddings always fail, leaving only keyword search."""
    return HybridStore(FailingEmbedder())


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def settings():
    """Settings with instant retries and the output review switched off."""
    return Settings(
        executor=ExecutorSettings(backoff_base=0.0, backoff_max=0.0),
        scheduler=SchedulerSettings(review_output=False),
    )


@pytest.fixture
def mesh(generator, embedder, settings):
    return build_mesh(generator, embedder, settings=settings)
