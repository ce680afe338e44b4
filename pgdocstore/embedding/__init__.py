"""
Embedding gateways for the vector store.

This module provides:
- Embeddings: Interface every embedding provider implements
- HTTPEmbeddings: OpenAI-compatible HTTP provider with retries
- FakeEmbeddings: Deterministic hash-seeded vectors for tests
- EmbeddingConfig: Configuration settings for the HTTP provider
"""

from pgdocstore.embedding.base import Embeddings
from pgdocstore.embedding.config import EmbeddingConfig
from pgdocstore.embedding.fake import FakeEmbeddings
from pgdocstore.embedding.service import HTTPEmbeddings

__all__ = [
    "EmbeddingConfig",
    "Embeddings",
    "FakeEmbeddings",
    "HTTPEmbeddings",
]
