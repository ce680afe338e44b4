"""
Vector store over PostgreSQL + pgvector.

Main components:
- VectorStoreManager: High-level orchestration (batch + embed + store + search)
- VectorStore: Abstract base class defining the backend interface
- PgVectorStore: pgvector implementation on an asyncpg pool
- InMemoryVectorStore: Dict-backed implementation for tests
- FilterCompiler: Metadata filter expressions to predicates
- Document / VectorSearchResult: Data classes passed across the API
- Error kinds: ValidationError, FilterError, EmbeddingError, StorageError
"""

from pgdocstore.vectorstore.base import (
    Document,
    EmbeddedDocument,
    VectorSearchResult,
    VectorStore,
)
from pgdocstore.vectorstore.batching import DocumentBatch, assign_ids, batch_documents
from pgdocstore.vectorstore.config import DistanceStrategy, VectorStoreConfig
from pgdocstore.vectorstore.errors import (
    EmbeddingError,
    FilterError,
    StorageError,
    ValidationError,
    VectorStoreError,
)
from pgdocstore.vectorstore.filters import FilterCompiler, Predicate, compile_filter
from pgdocstore.vectorstore.manager import VectorStoreManager
from pgdocstore.vectorstore.memory_store import InMemoryVectorStore
from pgdocstore.vectorstore.pgvector_store import PgVectorStore

__all__ = [
    "DistanceStrategy",
    "Document",
    "DocumentBatch",
    "EmbeddedDocument",
    "EmbeddingError",
    "FilterCompiler",
    "FilterError",
    "InMemoryVectorStore",
    "PgVectorStore",
    "Predicate",
    "StorageError",
    "ValidationError",
    "VectorSearchResult",
    "VectorStore",
    "VectorStoreConfig",
    "VectorStoreError",
    "VectorStoreManager",
    "assign_ids",
    "batch_documents",
    "compile_filter",
]
