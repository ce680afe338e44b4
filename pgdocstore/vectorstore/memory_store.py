"""
In-process implementation of the VectorStore interface.

Keeps rows in a dict and evaluates compiled predicates in Python, with
the same distance strategies and tie-break rule as PgVectorStore. Useful
for tests and local development; nothing is persisted.
"""

import asyncio
import copy

import numpy as np
import structlog

from pgdocstore.vectorstore.base import EmbeddedDocument, VectorSearchResult, VectorStore
from pgdocstore.vectorstore.config import DistanceStrategy
from pgdocstore.vectorstore.filters import Predicate

logger = structlog.get_logger(__name__)


def distance(
    left: np.ndarray,
    right: np.ndarray,
    strategy: DistanceStrategy,
) -> float:
    """
    Distance between two vectors, matching pgvector's operators.

    cosine: 1 - cos(a, b) (NaN-free: zero vectors are at distance 1.0)
    euclidean: L2 norm of a - b
    inner_product: -(a . b)
    """
    if strategy is DistanceStrategy.EUCLIDEAN:
        return float(np.linalg.norm(left - right))
    if strategy is DistanceStrategy.INNER_PRODUCT:
        return float(-np.dot(left, right))

    norm = float(np.linalg.norm(left) * np.linalg.norm(right))
    if norm == 0.0:
        return 1.0
    return float(1.0 - np.dot(left, right) / norm)


class InMemoryVectorStore(VectorStore):
    """
    Dict-backed vector store.

    Writes of one upsert call are applied together under a lock, so a
    concurrent reader never observes half of a batch.
    """

    def __init__(self, distance_strategy: DistanceStrategy = DistanceStrategy.COSINE):
        self._strategy = distance_strategy
        self._rows: dict[str, EmbeddedDocument] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, rows: list[EmbeddedDocument]) -> int:
        if not rows:
            return 0

        staged = {
            row.id: (
                EmbeddedDocument(
                    id=row.id,
                    content=row.content,
                    metadata=copy.deepcopy(row.metadata),
                    embedding=list(row.embedding),
                ),
                np.asarray(row.embedding, dtype=np.float64),
            )
            for row in rows
        }
        async with self._lock:
            for row_id, (row, vector) in staged.items():
                self._rows[row_id] = row
                self._vectors[row_id] = vector

        logger.debug("Upserted rows in memory", count=len(rows))
        return len(rows)

    async def query(
        self,
        embedding: list[float],
        k: int,
        predicate: Predicate,
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        query_vector = np.asarray(embedding, dtype=np.float64)

        async with self._lock:
            scored = [
                (distance(self._vectors[row_id], query_vector, self._strategy), row_id)
                for row_id, row in self._rows.items()
                if predicate.matches(row.metadata)
            ]
            scored.sort()
            return [
                self._to_result(self._rows[row_id], dist, include_embeddings)
                for dist, row_id in scored[:k]
            ]

    async def delete_by_ids(self, ids: list[str]) -> int:
        deleted = 0
        async with self._lock:
            for row_id in set(ids):
                if self._rows.pop(row_id, None) is not None:
                    del self._vectors[row_id]
                    deleted += 1
        return deleted

    async def delete_by_filter(self, predicate: Predicate) -> int:
        async with self._lock:
            doomed = [
                row_id for row_id, row in self._rows.items()
                if predicate.matches(row.metadata)
            ]
            for row_id in doomed:
                del self._rows[row_id]
                del self._vectors[row_id]
        return len(doomed)

    async def count(self, predicate: Predicate | None = None) -> int:
        async with self._lock:
            if predicate is None or predicate.is_match_all:
                return len(self._rows)
            return sum(1 for row in self._rows.values() if predicate.matches(row.metadata))

    async def get_by_ids(
        self,
        ids: list[str],
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        async with self._lock:
            return [
                self._to_result(self._rows[row_id], 0.0, include_embeddings)
                for row_id in sorted(set(ids))
                if row_id in self._rows
            ]

    @staticmethod
    def _to_result(
        row: EmbeddedDocument,
        dist: float,
        include_embedding: bool,
    ) -> VectorSearchResult:
        return VectorSearchResult(
            document_id=row.id,
            distance=dist,
            content=row.content,
            metadata=copy.deepcopy(row.metadata),
            embedding=list(row.embedding) if include_embedding else None,
        )
