"""
Configuration for vector store operations.

Uses Pydantic BaseSettings for environment variable support.
"""

import re
from enum import Enum
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DistanceStrategy(str, Enum):
    """Distance used to rank rows; every strategy is 'lower is closer'."""

    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    INNER_PRODUCT = "inner_product"

    @property
    def operator(self) -> str:
        """pgvector operator implementing this distance."""
        return {
            DistanceStrategy.COSINE: "<=>",
            DistanceStrategy.EUCLIDEAN: "<->",
            DistanceStrategy.INNER_PRODUCT: "<#>",
        }[self]


def quote_identifier(name: str) -> str:
    """Double-quote an already validated SQL identifier."""
    return f'"{name}"'


class VectorStoreConfig(BaseSettings):
    """
    Configuration for the vector store and its manager.

    All settings can be overridden via environment variables with
    VECTORSTORE_ prefix (e.g., VECTORSTORE_CHUNK_SIZE=200).
    """

    # Table layout
    table_name: str = Field(default="documents", description="Data table name")
    schema_name: str | None = Field(
        default=None,
        description="Schema qualifying both tables (search_path when unset)",
    )
    id_column: str = "id"
    vector_column: str = "embedding"
    content_column: str = "content"
    metadata_column: str = "metadata"

    # Collections: several logical stores sharing one data table
    collection_table_name: str | None = None
    collection_name: str | None = None
    collection_metadata: dict[str, Any] | None = None

    # Embeddings
    dimensions: int | None = Field(
        default=None,
        ge=1,
        le=16000,
        description="Required vector length; unchecked when unset",
    )
    distance_strategy: DistanceStrategy = DistanceStrategy.COSINE

    # Batch processing
    chunk_size: int = Field(
        default=500,
        ge=1,
        le=10_000,
        description="Documents per embedding call and per write transaction",
    )

    # Search defaults
    default_k: int = Field(
        default=4,
        ge=1,
        le=1000,
        description="Default number of results to return",
    )

    model_config = SettingsConfigDict(env_prefix="VECTORSTORE_", extra="ignore")

    @field_validator(
        "table_name",
        "schema_name",
        "id_column",
        "vector_column",
        "content_column",
        "metadata_column",
        "collection_table_name",
    )
    @classmethod
    def _check_identifier(cls, value: str | None) -> str | None:
        if value is not None and not _IDENTIFIER.match(value):
            raise ValueError(f"{value!r} is not a plain SQL identifier")
        return value

    @model_validator(mode="after")
    def _check_collection(self) -> "VectorStoreConfig":
        if (self.collection_table_name is None) != (self.collection_name is None):
            raise ValueError(
                "collection_table_name and collection_name must be set together"
            )
        return self

    @property
    def uses_collections(self) -> bool:
        return self.collection_name is not None

    def qualified(self, name: str) -> str:
        """Quoted, optionally schema-qualified table reference."""
        if self.schema_name:
            return f"{quote_identifier(self.schema_name)}.{quote_identifier(name)}"
        return quote_identifier(name)

    @property
    def table(self) -> str:
        return self.qualified(self.table_name)

    @property
    def collection_table(self) -> str | None:
        if self.collection_table_name is None:
            return None
        return self.qualified(self.collection_table_name)
