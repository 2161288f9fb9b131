# tests/conftest.py
"""
Pytest configuration and shared fakes for KnowledgeQuery tests.
"""

import hashlib
import re
from typing import List, Union

import numpy as np
import pytest
import pytest_asyncio
from qdrant_client import AsyncQdrantClient

from knowledge_query.cache import ResponseCache
from knowledge_query.generation import GenerationParams
from knowledge_query.pacer import RequestPacer
from knowledge_query.pipeline import QueryOrchestrator
from knowledge_query.qdrant_store import QdrantVectorStore
from knowledge_query.quota import QuotaManager
from knowledge_query.vectors import Embedder

# Register pytest-asyncio plugin
pytest_plugins = ('pytest_asyncio',)

TEST_DIMENSION = 16


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test."
    )


class FakeEmbeddingModel:
    """
    Bag-of-words stand-in for a SentenceTransformer.

    Each word is hashed into one of `dimension` buckets, so texts sharing
    words point in similar directions. Empty text embeds to all zeros.
    """

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls = 0

    def encode(self, texts, convert_to_numpy=True):
        self.calls += 1
        single = isinstance(texts, str)
        rows = []
        for text in ([texts] if single else texts):
            row = np.zeros(self.dimension)
            for word in re.findall(r"\w+", text.lower()):
                bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
                row[bucket] += 1.0
            rows.append(row)
        matrix = np.array(rows)
        return matrix[0] if single else matrix


class BrokenEmbeddingModel:
    """Model whose encode always fails."""

    def encode(self, texts, convert_to_numpy=True):
        raise RuntimeError("model unavailable")


class FakeGenerator:
    """
    Scripted generator.

    Each call consumes the next scripted outcome: a string is returned, an
    exception is raised. When the script runs out the last outcome repeats.
    """

    def __init__(self, *outcomes: Union[str, BaseException]):
        self.outcomes = list(outcomes) or ["Generated answer"]
        self.calls: List[dict] = []

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        self.calls.append({"prompt": prompt, "params": params})
        index = min(len(self.calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def fake_model():
    return FakeEmbeddingModel()


@pytest.fixture
def embedder(fake_model):
    return Embedder(model=fake_model, dimension=TEST_DIMENSION)


@pytest_asyncio.fixture
async def store():
    """An in-memory Qdrant store."""
    vector_store = QdrantVectorStore(
        client=AsyncQdrantClient(location=":memory:"),
        collection="test_content",
        dimension=TEST_DIMENSION,
    )
    await vector_store.ensure_collection()
    yield vector_store
    await vector_store.close()


@pytest.fixture
def make_orchestrator(embedder, store):
    """Factory for orchestrators over the shared in-memory store."""
    def _make(generator=None, **kwargs):
        kwargs.setdefault("response_cache", ResponseCache())
        kwargs.setdefault("quota", QuotaManager())
        kwargs.setdefault("pacer", RequestPacer(min_interval=0.0))
        return QueryOrchestrator(
            embedder=embedder,
            store=store,
            generator=generator or FakeGenerator(),
            **kwargs
        )
    return _make
