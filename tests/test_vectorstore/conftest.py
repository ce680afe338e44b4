"""Pytest fixtures for vectorstore tests."""

import math
from unittest.mock import AsyncMock

import pytest

from pgdocstore.vectorstore.base import EmbeddedDocument
from pgdocstore.vectorstore.config import VectorStoreConfig
from pgdocstore.vectorstore.manager import VectorStoreManager
from pgdocstore.vectorstore.memory_store import InMemoryVectorStore


@pytest.fixture
def vector_store_config() -> VectorStoreConfig:
    """Small chunk size so multi-chunk paths are cheap to exercise."""
    return VectorStoreConfig(chunk_size=2, default_k=4)


@pytest.fixture
def sample_embedding() -> list[float]:
    """Sample 4-dimensional unit embedding."""
    value = 1.0 / math.sqrt(4)
    return [value] * 4


@pytest.fixture
def sample_rows(sample_embedding) -> list[EmbeddedDocument]:
    """Rows ready to upsert."""
    return [
        EmbeddedDocument(
            id=f"doc_{i}",
            content=f"content {i}",
            metadata={"i": i},
            embedding=sample_embedding,
        )
        for i in range(3)
    ]


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock Database instance."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="DELETE 0")
    db.executemany = AsyncMock(return_value=None)
    return db


@pytest.fixture
def memory_store() -> InMemoryVectorStore:
    """Empty in-memory store (cosine distance)."""
    return InMemoryVectorStore()


@pytest.fixture
def manager(memory_store, fake_embeddings, vector_store_config, metrics) -> VectorStoreManager:
    """Manager over the in-memory store with fake embeddings."""
    return VectorStoreManager(
        memory_store,
        fake_embeddings,
        config=vector_store_config,
        metrics=metrics,
    )
