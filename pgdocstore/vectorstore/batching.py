"""
Document batching and identifier assignment.

Large imports are split into chunks of at most ``chunk_size`` documents;
each chunk becomes one embedding call and one write transaction. Ids are
assigned per chunk by assign_ids(), after batching and before writing:
an explicit id wins, then the document's own id, then a generated one.
"""

import uuid
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from pgdocstore.vectorstore.base import Document
from pgdocstore.vectorstore.errors import ValidationError

IdFactory = Callable[[], str]


def new_id() -> str:
    """Default id factory: random UUID4 string."""
    return str(uuid.uuid4())


@dataclass
class DocumentBatch:
    """
    One chunk of an import.

    Attributes:
        documents: Documents of this chunk, in input order
        ids: Explicit ids for these positions, or None when not supplied
        offset: Position of the first document in the full input
    """

    documents: list[Document]
    ids: list[str] | None
    offset: int

    def __len__(self) -> int:
        return len(self.documents)


def check_chunk_size(chunk_size: Any) -> int:
    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size < 1:
        raise ValidationError(f"chunk_size must be a positive integer, got {chunk_size!r}")
    return chunk_size


def normalize_ids(ids: Sequence[Any]) -> list[str]:
    """Coerce ids to strings; UUID objects are accepted, empty values are not."""
    normalized = []
    for value in ids:
        if isinstance(value, uuid.UUID):
            value = str(value)
        if not isinstance(value, str) or not value:
            raise ValidationError(f"Document ids must be non-empty strings, got {value!r}")
        normalized.append(value)
    return normalized


def batch_documents(
    documents: Sequence[Document],
    chunk_size: int,
    ids: Sequence[Any] | None = None,
) -> Iterator[DocumentBatch]:
    """
    Partition documents (and explicit ids, in lockstep) into chunks.

    Validation happens eagerly, before the first chunk is produced, so a
    bad call fails before anything is embedded or written.

    Args:
        documents: Documents in input order
        chunk_size: Maximum documents per chunk
        ids: Optional explicit ids, one per document

    Returns:
        Lazy iterator of DocumentBatch

    Raises:
        ValidationError: ids length differs from documents, or bad chunk_size
    """
    check_chunk_size(chunk_size)

    explicit_ids: list[str] | None = None
    if ids is not None:
        if len(ids) != len(documents):
            raise ValidationError(
                f"ids and documents must have same length: {len(ids)} != {len(documents)}"
            )
        explicit_ids = normalize_ids(ids)

    def _generate() -> Iterator[DocumentBatch]:
        for start in range(0, len(documents), chunk_size):
            end = start + chunk_size
            yield DocumentBatch(
                documents=list(documents[start:end]),
                ids=explicit_ids[start:end] if explicit_ids is not None else None,
                offset=start,
            )

    return _generate()


def assign_ids(
    batch: DocumentBatch,
    id_factory: IdFactory = new_id,
) -> list[str]:
    """
    Resolve the final id of every document in a batch.

    Explicit id, else the document's own id, else id_factory().
    """
    assigned = []
    for position, document in enumerate(batch.documents):
        if batch.ids is not None:
            assigned.append(batch.ids[position])
        elif document.id is not None:
            assigned.extend(normalize_ids([document.id]))
        else:
            assigned.append(id_factory())
    return assigned
