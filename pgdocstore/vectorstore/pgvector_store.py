"""
pgvector implementation of the VectorStore interface.

Rows live in one table (id text, content text, metadata jsonb, embedding
vector). Metadata predicates are rendered to parameterised SQL, ranking
uses the pgvector operator of the configured distance strategy, and each
upsert call is written with executemany inside a single transaction.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import numpy as np
import structlog

from pgdocstore.storage.database import Database
from pgdocstore.vectorstore.base import EmbeddedDocument, VectorSearchResult, VectorStore
from pgdocstore.vectorstore.config import VectorStoreConfig, quote_identifier
from pgdocstore.vectorstore.errors import StorageError, ValidationError
from pgdocstore.vectorstore.filters import Predicate, SqlParams

logger = structlog.get_logger(__name__)

_STORAGE_FAILURES = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    asyncio.TimeoutError,
    OSError,
)


class PgVectorStore(VectorStore):
    """
    pgvector-based vector store implementation.

    Features:
    - Upsert by id (last writer wins) in one transaction per call
    - Cosine, euclidean and inner-product ranking, ties broken by id
    - jsonb metadata filtering through compiled predicates
    - Optional collections: several named stores sharing one table
    - Optional schema qualification of every table

    The Database (and its pool) is supplied by the caller and may be shared
    with unrelated code; this class only issues statements on it.
    """

    def __init__(
        self,
        database: Database,
        config: VectorStoreConfig | None = None,
    ):
        """
        Initialize pgvector store.

        Args:
            database: Connected Database instance
            config: Optional configuration (table/column names, collections)
        """
        self._db = database
        self._config = config or VectorStoreConfig()
        self._collection_id: uuid.UUID | None = None

        self._id = quote_identifier(self._config.id_column)
        self._content = quote_identifier(self._config.content_column)
        self._metadata = quote_identifier(self._config.metadata_column)
        self._vector = quote_identifier(self._config.vector_column)
        self._operator = self._config.distance_strategy.operator

    @property
    def config(self) -> VectorStoreConfig:
        return self._config

    @asynccontextmanager
    async def _storage_errors(self, operation: str) -> AsyncIterator[None]:
        """Translate driver and network failures into StorageError."""
        try:
            yield
        except _STORAGE_FAILURES as e:
            logger.error(
                "Vector store operation failed",
                operation=operation,
                table=self._config.table_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError(f"{operation} failed: {e}", operation=operation) from e

    # ── Provisioning ──────────────────────────────────────────

    async def ensure_table(self) -> None:
        """
        Create the pgvector extension and the data table if missing.

        When collections are configured, the collection table is created
        first and the data table references it with ON DELETE CASCADE.
        """
        if self._config.uses_collections:
            await self.ensure_collection_table()

        vector_type = (
            f"vector({self._config.dimensions})" if self._config.dimensions else "vector"
        )
        collection_column = ""
        if self._config.uses_collections:
            collection_column = (
                f',\n            "collection_id" uuid REFERENCES '
                f"{self._config.collection_table} (uuid) ON DELETE CASCADE"
            )

        sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;
        {self._create_schema_sql()}
        CREATE TABLE IF NOT EXISTS {self._config.table} (
            {self._id} text PRIMARY KEY,
            {self._content} text,
            {self._metadata} jsonb,
            {self._vector} {vector_type}{collection_column}
        );
        """
        async with self._storage_errors("ensure_table"):
            await self._db.execute(sql)

        logger.info("Vector table ready", table=self._config.table_name)

    async def ensure_collection_table(self) -> None:
        """Create the collection table if collections are configured."""
        if not self._config.uses_collections:
            return

        sql = f"""
        {self._create_schema_sql()}
        CREATE TABLE IF NOT EXISTS {self._config.collection_table} (
            uuid uuid PRIMARY KEY,
            name text UNIQUE NOT NULL,
            cmetadata jsonb
        );
        """
        async with self._storage_errors("ensure_collection_table"):
            await self._db.execute(sql)

    def _create_schema_sql(self) -> str:
        if not self._config.schema_name:
            return ""
        return f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(self._config.schema_name)};"

    async def drop_tables(self) -> None:
        """Drop the data table (and collection table). Used for test teardown."""
        statements = [f"DROP TABLE IF EXISTS {self._config.table}"]
        if self._config.uses_collections:
            statements.append(f"DROP TABLE IF EXISTS {self._config.collection_table}")

        async with self._storage_errors("drop_tables"):
            for sql in statements:
                await self._db.execute(sql)
        self._collection_id = None

    async def get_or_create_collection(self) -> uuid.UUID | None:
        """
        Resolve the configured collection's uuid, creating the row if needed.

        Returns:
            Collection uuid, or None when collections are not configured
        """
        if not self._config.uses_collections:
            return None
        if self._collection_id is not None:
            return self._collection_id

        sql = f"""
            INSERT INTO {self._config.collection_table} (uuid, name, cmetadata)
            VALUES ($1, $2, $3::jsonb)
            ON CONFLICT (name) DO UPDATE SET cmetadata = EXCLUDED.cmetadata
            RETURNING uuid
        """
        cmetadata = self._config.collection_metadata
        async with self._storage_errors("get_or_create_collection"):
            collection_id = await self._db.fetchval(
                sql,
                uuid.uuid4(),
                self._config.collection_name,
                json.dumps(cmetadata) if cmetadata is not None else None,
            )

        self._collection_id = _as_uuid(collection_id)
        logger.debug(
            "Resolved collection",
            collection=self._config.collection_name,
            collection_id=str(self._collection_id),
        )
        return self._collection_id

    async def _where(self, predicate: Predicate | None, params: SqlParams) -> str:
        """Collection scope AND compiled predicate."""
        conditions = []
        collection_id = await self.get_or_create_collection()
        if collection_id is not None:
            conditions.append(f'"collection_id" = {params.add(collection_id)}')
        if predicate is not None and not predicate.is_match_all:
            conditions.append(predicate.to_sql(self._metadata, params))
        return " AND ".join(conditions) if conditions else "TRUE"

    # ── VectorStore interface ─────────────────────────────────

    async def upsert(self, rows: list[EmbeddedDocument]) -> int:
        """
        Insert rows, overwriting existing ids in place.

        All rows are written in one transaction; on failure none of them
        are persisted.

        Args:
            rows: Rows with final ids and embeddings

        Returns:
            Number of rows written
        """
        if not rows:
            return 0

        columns = [self._id, self._content, self._metadata, self._vector]
        values = ["$1", "$2", "$3::jsonb", "$4::vector"]
        updates = [
            f"{self._content} = EXCLUDED.{self._content}",
            f"{self._metadata} = EXCLUDED.{self._metadata}",
            f"{self._vector} = EXCLUDED.{self._vector}",
        ]

        async with self._storage_errors("upsert"):
            collection_id = await self.get_or_create_collection()

        if collection_id is not None:
            columns.append('"collection_id"')
            values.append("$5")
            updates.append('"collection_id" = EXCLUDED."collection_id"')

        sql = f"""
            INSERT INTO {self._config.table} ({", ".join(columns)})
            VALUES ({", ".join(values)})
            ON CONFLICT ({self._id}) DO UPDATE SET
                {", ".join(updates)}
        """

        records = []
        for row in rows:
            record: tuple[Any, ...] = (
                row.id,
                row.content,
                _metadata_to_json(row.metadata),
                _vector_to_pgvector(row.embedding),
            )
            if collection_id is not None:
                record += (collection_id,)
            records.append(record)

        async with self._storage_errors("upsert"):
            await self._db.executemany(sql, records)

        logger.debug("Upserted rows", count=len(records), table=self._config.table_name)
        return len(records)

    async def query(
        self,
        embedding: list[float],
        k: int,
        predicate: Predicate,
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        """
        Rank rows satisfying predicate by distance to embedding.

        Ordering is ascending distance, then ascending id, so equal-distance
        rows come back in a stable order.
        """
        params = SqlParams(start=2)
        async with self._storage_errors("query"):
            where_clause = await self._where(predicate, params)
        limit_param = params.add(k)

        embedding_col = f", {self._vector} AS embedding" if include_embeddings else ""
        sql = f"""
            SELECT
                {self._id} AS id,
                {self._content} AS content,
                {self._metadata} AS metadata,
                {self._vector} {self._operator} $1::vector AS distance
                {embedding_col}
            FROM {self._config.table}
            WHERE {where_clause}
            ORDER BY distance, {self._id} COLLATE "C"
            LIMIT {limit_param}
        """

        async with self._storage_errors("query"):
            rows = await self._db.fetch(sql, _vector_to_pgvector(embedding), *params.values)

        return [self._row_to_result(row, include_embedding=include_embeddings) for row in rows]

    async def delete_by_ids(self, ids: list[str]) -> int:
        """
        Delete rows by id. Ids that do not exist are ignored.

        Returns:
            Number of rows deleted
        """
        if not ids:
            return 0

        params = SqlParams(start=1)
        id_param = params.add(list(ids))
        async with self._storage_errors("delete_by_ids"):
            scope = await self._where(None, params)
            status = await self._db.execute(
                f"""
                DELETE FROM {self._config.table}
                WHERE {self._id} = ANY({id_param}::text[]) AND {scope}
                """,
                *params.values,
            )

        deleted = _affected_rows(status)
        logger.info("Deleted rows by id", deleted=deleted, requested=len(ids))
        return deleted

    async def delete_by_filter(self, predicate: Predicate) -> int:
        """
        Delete every row whose metadata satisfies predicate.

        Returns:
            Number of rows deleted
        """
        params = SqlParams(start=1)
        async with self._storage_errors("delete_by_filter"):
            where_clause = await self._where(predicate, params)
            status = await self._db.execute(
                f"DELETE FROM {self._config.table} WHERE {where_clause}",
                *params.values,
            )

        deleted = _affected_rows(status)
        logger.info("Deleted rows by filter", deleted=deleted)
        return deleted

    async def count(self, predicate: Predicate | None = None) -> int:
        """Count rows in scope, optionally restricted by predicate."""
        params = SqlParams(start=1)
        async with self._storage_errors("count"):
            where_clause = await self._where(predicate, params)
            result = await self._db.fetchval(
                f"SELECT COUNT(*) FROM {self._config.table} WHERE {where_clause}",
                *params.values,
            )
        return int(result or 0)

    async def get_by_ids(
        self,
        ids: list[str],
        include_embeddings: bool = False,
    ) -> list[VectorSearchResult]:
        """
        Retrieve rows by id, ordered by id.

        Returns:
            Found rows with distance 0.0
        """
        if not ids:
            return []

        params = SqlParams(start=1)
        id_param = params.add(list(ids))
        embedding_col = f", {self._vector} AS embedding" if include_embeddings else ""

        async with self._storage_errors("get_by_ids"):
            scope = await self._where(None, params)
            rows = await self._db.fetch(
                f"""
                SELECT
                    {self._id} AS id,
                    {self._content} AS content,
                    {self._metadata} AS metadata
                    {embedding_col}
                FROM {self._config.table}
                WHERE {self._id} = ANY({id_param}::text[]) AND {scope}
                ORDER BY {self._id} COLLATE "C"
                """,
                *params.values,
            )

        return [
            self._row_to_result(row, distance=0.0, include_embedding=include_embeddings)
            for row in rows
        ]

    def _row_to_result(
        self,
        row: Any,
        distance: float | None = None,
        include_embedding: bool = False,
    ) -> VectorSearchResult:
        """Convert database row to VectorSearchResult."""
        result_distance = distance if distance is not None else float(row["distance"])

        embedding = None
        if include_embedding and row.get("embedding") is not None:
            embedding = _parse_vector(row["embedding"]).tolist()

        return VectorSearchResult(
            document_id=row["id"],
            distance=result_distance,
            content=row.get("content") or "",
            metadata=_parse_metadata(row.get("metadata")),
            embedding=embedding,
        )


# ── Helpers (module-level for testability) ──────────────────


def _vector_to_pgvector(vector: list[float]) -> str:
    """Convert a list of floats to pgvector text format "[0.1,0.2,...]"."""
    return f"[{','.join(str(float(x)) for x in vector)}]"


def _parse_vector(value: Any) -> np.ndarray:
    """Parse a pgvector string, list, or ndarray into a float32 array."""
    if isinstance(value, np.ndarray):
        return value.astype(np.float32)
    if isinstance(value, (list, tuple)):
        return np.array(value, dtype=np.float32)
    if isinstance(value, str):
        return np.array(
            [float(x) for x in value.strip("[]").split(",") if x],
            dtype=np.float32,
        )
    raise ValueError(f"Cannot parse vector from {type(value).__name__}")


def _parse_metadata(value: Any) -> dict[str, Any]:
    """jsonb comes back as a string unless a codec is registered."""
    if value is None:
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    return dict(value)


def _metadata_to_json(metadata: dict[str, Any]) -> str:
    try:
        return json.dumps(metadata, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Metadata is not JSON-serializable: {e}") from e


def _affected_rows(status: str) -> int:
    """Parse the row count out of a status string such as "DELETE 3"."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _as_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
