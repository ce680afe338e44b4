"""
Abstract base class and data models for vector store backends.

A backend persists (id, embedding, content, metadata) rows and answers
the five logical requests the orchestration layer issues: upsert, ranked
query, delete by ids, delete by predicate, and count.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pgdocstore.vectorstore.errors import ValidationError
from pgdocstore.vectorstore.filters import Predicate


@dataclass
class Document:
    """
    A unit of text to store and retrieve.

    Attributes:
        content: Text that gets embedded and returned by searches
        metadata: JSON-compatible mapping used by metadata filters
        id: Optional identifier; generated at write time when absent
    """

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def __post_init__(self) -> None:
        """Validate content and normalise metadata to a plain dict."""
        if not isinstance(self.content, str):
            raise ValidationError(
                f"Document content must be a string, got {type(self.content).__name__}"
            )
        if self.metadata is None:
            self.metadata = {}
        elif not isinstance(self.metadata, Mapping):
            raise ValidationError(
                f"Document metadata must be a mapping, got {type(self.metadata).__name__}"
            )
        else:
            self.metadata = dict(self.metadata)


@dataclass
class EmbeddedDocument:
    """A document with its assigned id and embedding, ready to be written."""

    id: str
    content: str
    metadata: dict[str, Any]
    embedding: list[float]


@dataclass
class VectorSearchResult:
    """
    A row returned by a backend query.

    Attributes:
        document_id: Identifier of the stored row
        distance: Distance to the query vector under the store's strategy
            (lower is closer; 0.0 for exact id lookups)
        content: Stored text
        metadata: Stored metadata
        embedding: Stored vector (only populated when requested)
    """

    document_id: str
    distance: float
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None

    def to_document(self, include_id: bool = False) -> Document:
        """Caller-facing view: content and metadata, plus the id when asked for."""
        return Document(
            content=self.content,
            metadata=dict(self.metadata),
            id=self.document_id if include_id else None,
        )


class VectorStore(ABC):
    """
    Abstract base class for backing store implementations.

    Implementations translate the logical requests below into their own
    query language. Ordering contract for query(): ascending distance,
    ties broken by ascending document id in code point order (the SQL
    "C" collation).

    All methods are async to support non-blocking I/O.
    """

    @abstractmethod
    async def upsert(self, rows: list[EmbeddedDocument]) -> int:
        """
        Insert rows, overwriting content/metadata/embedding of existing ids.

        The whole list is written as one unit: either every row is
        persisted or none is.

        Returns:
            Number of rows written
        """
        ...

    @abstractmethod
    async def query(
        self,
        embedding: list[float],
        k: int,
        predicate: Predicate,
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        """
        Return up to k rows satisfying predicate, closest first.

        Args:
            embedding: Query vector
            k: Maximum number of rows
            predicate: Compiled metadata filter
            include_embeddings: Whether to return stored vectors
        """
        ...

    @abstractmethod
    async def delete_by_ids(self, ids: list[str]) -> int:
        """
        Delete rows whose id is in ids. Unknown ids are ignored.

        Returns:
            Number of rows deleted
        """
        ...

    @abstractmethod
    async def delete_by_filter(self, predicate: Predicate) -> int:
        """
        Delete every row whose metadata satisfies predicate.

        Returns:
            Number of rows deleted
        """
        ...

    @abstractmethod
    async def count(self, predicate: Predicate | None = None) -> int:
        """Count rows, optionally only those satisfying predicate."""
        ...

    @abstractmethod
    async def get_by_ids(
        self,
        ids: list[str],
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        """
        Retrieve rows by id, in ascending id order.

        Returns:
            Matching rows (distance is 0.0); unknown ids are skipped
        """
        ...

    async def close(self) -> None:
        """Release backend resources. Default: nothing to release."""
        return None
