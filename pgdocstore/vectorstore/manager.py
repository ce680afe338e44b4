"""
High-level manager for vector store operations.

VectorStoreManager orchestrates batching, embedding generation, identifier
assignment and storage behind one caller-facing API.
"""

import time
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

import structlog

from pgdocstore.embedding.base import Embeddings
from pgdocstore.observability.metrics import MetricsCollector, get_metrics
from pgdocstore.vectorstore.base import (
    Document,
    EmbeddedDocument,
    VectorSearchResult,
    VectorStore,
)
from pgdocstore.vectorstore.batching import (
    DocumentBatch,
    IdFactory,
    assign_ids,
    batch_documents,
    new_id,
    normalize_ids,
)
from pgdocstore.vectorstore.config import VectorStoreConfig
from pgdocstore.vectorstore.errors import EmbeddingError, ValidationError, VectorStoreError
from pgdocstore.vectorstore.filters import FilterCompiler

logger = structlog.get_logger(__name__)

DocumentLike = Document | Mapping[str, Any]


class VectorStoreManager:
    """
    High-level orchestration for vector operations.

    Combines an Embeddings gateway and a VectorStore backend to provide:
    - Ingesting documents (batch + embed + assign ids + upsert)
    - Querying by text or by vector with metadata filters
    - Deleting by id set or by filter

    Chunks are processed strictly in sequence. If chunk N fails, chunks
    before it stay committed and the error propagates unchanged; wrap the
    call in an external transaction if the whole import must be atomic.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embeddings: Embeddings,
        config: VectorStoreConfig | None = None,
        filter_compiler: FilterCompiler | None = None,
        metrics: MetricsCollector | None = None,
        id_factory: IdFactory = new_id,
    ):
        """
        Initialize the manager.

        Args:
            vector_store: VectorStore implementation for storage/search
            embeddings: Gateway for generating embeddings
            config: Optional configuration (chunk size, dimensions, default k)
            filter_compiler: Compiler with any custom operators registered
            metrics: Metrics collector (global collector if None)
            id_factory: Generates ids for documents that have none
        """
        self._store = vector_store
        self._embeddings = embeddings
        self._config = config or VectorStoreConfig()
        self._filters = filter_compiler or FilterCompiler()
        self._metrics = metrics or get_metrics()
        self._id_factory = id_factory
        self._dimensions: int | None = self._config.dimensions

    @classmethod
    async def from_documents(
        cls,
        documents: Sequence[DocumentLike],
        embeddings: Embeddings,
        vector_store: VectorStore,
        ids: Sequence[Any] | None = None,
        **kwargs: Any,
    ) -> "VectorStoreManager":
        """Build a manager and ingest documents in one step."""
        manager = cls(vector_store, embeddings, **kwargs)
        await manager.add_documents(documents, ids=ids)
        return manager

    @property
    def vector_store(self) -> VectorStore:
        return self._store

    @property
    def embeddings(self) -> Embeddings:
        return self._embeddings

    @property
    def filter_compiler(self) -> FilterCompiler:
        return self._filters

    @asynccontextmanager
    async def _observe(self, operation: str) -> AsyncIterator[None]:
        """Record latency of an operation and count its failures by kind."""
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            self._metrics.operation_errors.labels(
                operation=operation,
                error_type=type(e).__name__,
            ).inc()
            logger.error(
                "Vector store operation failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            self._metrics.operation_latency.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    # ── Ingestion ─────────────────────────────────────────────

    async def add_documents(
        self,
        documents: Sequence[DocumentLike],
        ids: Sequence[Any] | None = None,
    ) -> list[str]:
        """
        Embed and store documents, chunk by chunk.

        Each chunk of at most chunk_size documents is one embed_batch call
        followed by one upsert. Existing ids are overwritten in place.

        Args:
            documents: Documents (or mappings with content/metadata/id)
            ids: Optional explicit ids, same length as documents

        Returns:
            Assigned ids in input order

        Raises:
            ValidationError: ids length mismatch or malformed documents
            EmbeddingError: Gateway failure or inconsistent vectors
            StorageError: Backing store failure
        """
        async with self._observe("add_documents"):
            docs = _coerce_documents(documents)
            batches = batch_documents(docs, self._config.chunk_size, ids=ids)

            assigned: list[str] = []
            for batch in batches:
                vectors = await self._embed_batch(batch)
                assigned.extend(await self._write_batch(batch, vectors))

        logger.info("Added documents", count=len(assigned))
        return assigned

    async def add_vectors(
        self,
        vectors: Sequence[Sequence[float]],
        documents: Sequence[DocumentLike],
        ids: Sequence[Any] | None = None,
    ) -> list[str]:
        """
        Store documents with precomputed embeddings.

        Same batching, id assignment and upsert semantics as add_documents,
        without calling the embedding gateway.

        Raises:
            ValidationError: vectors/ids length mismatch or wrong dimensions
        """
        async with self._observe("add_vectors"):
            docs = _coerce_documents(documents)
            if len(vectors) != len(docs):
                raise ValidationError(
                    f"vectors and documents must have same length: "
                    f"{len(vectors)} != {len(docs)}"
                )
            rows = [[float(x) for x in vector] for vector in vectors]
            self._check_dimensions(rows, ValidationError)

            assigned: list[str] = []
            for batch in batch_documents(docs, self._config.chunk_size, ids=ids):
                chunk = rows[batch.offset:batch.offset + len(batch)]
                assigned.extend(await self._write_batch(batch, chunk))

        logger.info("Added vectors", count=len(assigned))
        return assigned

    async def _embed_batch(self, batch: DocumentBatch) -> list[list[float]]:
        texts = [document.content for document in batch.documents]
        self._metrics.embedding_batch_size.observe(len(texts))

        try:
            vectors = await self._embeddings.embed_batch(texts)
        except VectorStoreError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding gateway failed: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding gateway returned {len(vectors)} vectors for {len(texts)} texts"
            )
        self._check_dimensions(vectors, EmbeddingError)
        return vectors

    async def _write_batch(
        self,
        batch: DocumentBatch,
        vectors: list[list[float]],
    ) -> list[str]:
        batch_ids = assign_ids(batch, self._id_factory)
        rows = [
            EmbeddedDocument(
                id=row_id,
                content=document.content,
                metadata=document.metadata,
                embedding=list(vector),
            )
            for row_id, document, vector in zip(batch_ids, batch.documents, vectors)
        ]
        written = await self._store.upsert(rows)
        self._metrics.documents_written.inc(written)

        logger.debug("Wrote chunk", offset=batch.offset, size=len(rows))
        return batch_ids

    def _check_dimensions(
        self,
        vectors: Sequence[Sequence[float]],
        error_cls: type[VectorStoreError],
    ) -> None:
        """Every vector must have the store's dimensionality (learned on first use)."""
        for vector in vectors:
            expected = self._dimensions or self._embeddings.dimensions
            if expected is None:
                self._dimensions = len(vector)
            elif len(vector) != expected:
                raise error_cls(
                    f"Embedding has {len(vector)} dimensions, expected {expected}"
                )

    # ── Search ────────────────────────────────────────────────

    async def similarity_search(
        self,
        query: str,
        k: int | None = None,
        filter: Mapping[str, Any] | None = None,
        include_ids: bool = False,
    ) -> list[Document]:
        """
        Return up to k documents closest to the query text.

        Results are ordered by ascending distance; equal distances are
        ordered by ascending id. Returned documents carry content and
        metadata only, unless include_ids is set.

        Args:
            query: Query text (embedded with the gateway)
            k: Maximum results (default from config)
            filter: Optional metadata filter expression
            include_ids: Attach the stored id to each document
        """
        results = await self.similarity_search_with_score(
            query, k=k, filter=filter, include_ids=include_ids
        )
        return [document for document, _ in results]

    async def similarity_search_with_score(
        self,
        query: str,
        k: int | None = None,
        filter: Mapping[str, Any] | None = None,
        include_ids: bool = False,
    ) -> list[tuple[Document, float]]:
        """Like similarity_search, paired with the raw distance (lower is closer)."""
        async with self._observe("search"):
            if not isinstance(query, str):
                raise ValidationError(f"query must be a string, got {type(query).__name__}")
            k = self._check_k(k)
            predicate = self._filters.compile(filter)
            embedding = await self._embed_query(query)
            results = await self._store.query(embedding, k, predicate)
            self._metrics.searches.inc()

        logger.debug("Similarity search", k=k, results=len(results))
        return [(result.to_document(include_ids), result.distance) for result in results]

    async def similarity_search_by_vector(
        self,
        vector: Sequence[float],
        k: int | None = None,
        filter: Mapping[str, Any] | None = None,
        include_ids: bool = False,
    ) -> list[Document]:
        """Search with a precomputed query vector."""
        results = await self.search_results_by_vector(vector, k=k, filter=filter)
        return [result.to_document(include_ids) for result in results]

    async def search_results_by_vector(
        self,
        vector: Sequence[float],
        k: int | None = None,
        filter: Mapping[str, Any] | None = None,
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        """Raw backend results for a precomputed query vector."""
        async with self._observe("search"):
            k = self._check_k(k)
            predicate = self._filters.compile(filter)
            embedding = [float(x) for x in vector]
            self._check_dimensions([embedding], ValidationError)
            results = await self._store.query(
                embedding, k, predicate, include_embeddings=include_embeddings
            )
            self._metrics.searches.inc()
        return results

    async def _embed_query(self, query: str) -> list[float]:
        try:
            embedding = await self._embeddings.embed(query)
        except VectorStoreError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding gateway failed: {e}") from e

        self._check_dimensions([embedding], EmbeddingError)
        return embedding

    def _check_k(self, k: Any) -> int:
        if k is None:
            return self._config.default_k
        if not isinstance(k, int) or isinstance(k, bool) or k < 1:
            raise ValidationError(f"k must be a positive integer, got {k!r}")
        return k

    # ── Deletion and lookup ───────────────────────────────────

    async def delete(
        self,
        ids: Sequence[Any] | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Delete rows by id set or by metadata filter.

        Exactly one of ids or filter must be given. Unknown ids are ignored,
        an empty id list deletes nothing, and an empty filter ({}) matches
        and deletes every row.

        Returns:
            Number of rows deleted

        Raises:
            ValidationError: Both or neither of ids and filter supplied
            FilterError: Filter cannot be compiled
        """
        async with self._observe("delete"):
            if ids is not None and filter is not None:
                raise ValidationError("delete accepts either ids or filter, not both")
            if ids is None and filter is None:
                raise ValidationError("delete requires ids or filter")

            if ids is not None:
                if isinstance(ids, str):
                    raise ValidationError("ids must be a sequence of ids, not a string")
                unique_ids = list(dict.fromkeys(normalize_ids(ids)))
                deleted = await self._store.delete_by_ids(unique_ids) if unique_ids else 0
                mode = "ids"
            else:
                predicate = self._filters.compile(filter)
                deleted = await self._store.delete_by_filter(predicate)
                mode = "filter"

            self._metrics.rows_deleted.labels(mode=mode).inc(deleted)

        logger.info("Deleted rows", mode=mode, deleted=deleted)
        return deleted

    async def count(self, filter: Mapping[str, Any] | None = None) -> int:
        """Number of stored rows, optionally restricted by a metadata filter."""
        async with self._observe("count"):
            predicate = self._filters.compile(filter)
            return await self._store.count(predicate)

    async def get_by_ids(self, ids: Sequence[Any]) -> list[Document]:
        """Fetch stored documents by id, in ascending id order."""
        async with self._observe("get_by_ids"):
            if isinstance(ids, str):
                raise ValidationError("ids must be a sequence of ids, not a string")
            results = await self._store.get_by_ids(normalize_ids(ids))
        return [result.to_document(include_id=True) for result in results]

    async def close(self) -> None:
        """Release the gateway and backend."""
        await self._embeddings.close()
        await self._store.close()


def _coerce_documents(documents: Sequence[DocumentLike]) -> list[Document]:
    """Accept Document instances or mappings with content/metadata/id keys."""
    if isinstance(documents, (str, bytes)) or not isinstance(documents, Sequence):
        raise ValidationError("documents must be a sequence of documents")

    coerced = []
    for document in documents:
        if isinstance(document, Document):
            coerced.append(document)
        elif isinstance(document, Mapping):
            if "content" not in document:
                raise ValidationError("Document mapping is missing 'content'")
            coerced.append(
                Document(
                    content=document["content"],
                    metadata=document.get("metadata") or {},
                    id=document.get("id"),
                )
            )
        else:
            raise ValidationError(
                f"Expected a Document or mapping, got {type(document).__name__}"
            )
    return coerced
