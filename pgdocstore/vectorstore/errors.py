"""
Error kinds raised by the vector store.

Callers branch on the class: ValidationError and FilterError mean the
request itself is wrong and retrying it is pointless; EmbeddingError and
StorageError come from infrastructure and may be transient.
"""


class VectorStoreError(Exception):
    """Base exception for all vector store failures."""


class ValidationError(VectorStoreError, ValueError):
    """Malformed input: id/document count mismatch, empty operands, missing arguments."""


class FilterError(VectorStoreError, ValueError):
    """Filter expression that cannot be compiled (unknown operator, bad operand type)."""

    def __init__(self, message: str, key: str | None = None, operator: str | None = None):
        super().__init__(message)
        self.key = key
        self.operator = operator


class EmbeddingError(VectorStoreError):
    """Embedding gateway failure: network, quota, or malformed response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(VectorStoreError):
    """Backing store failure: connectivity, constraint violation, timeout."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation
