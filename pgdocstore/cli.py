"""
Command-line interface for pgdocstore.

Provides commands to provision the tables, load documents, search and
delete them, and run diagnostic checks.

Usage:
    pgdocstore init-db                     # Create extension and tables
    pgdocstore health                      # Check database connectivity
    pgdocstore ingest docs.jsonl           # Embed and upsert JSON Lines
    pgdocstore search "query" -k 5         # Similarity search
    pgdocstore delete --id a --id b        # Delete by id
    pgdocstore delete --filter '{"a": 1}'  # Delete by metadata filter
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import click

from pgdocstore.embedding import EmbeddingConfig, Embeddings, FakeEmbeddings, HTTPEmbeddings
from pgdocstore.observability.logging import bind_context, get_logger, setup_logging
from pgdocstore.observability.metrics import get_metrics
from pgdocstore.storage.database import Database
from pgdocstore.vectorstore import (
    Document,
    PgVectorStore,
    VectorStoreConfig,
    VectorStoreError,
    VectorStoreManager,
)

FAKE_DIMENSIONS = 384

_CONNECT_FAILURES = (OSError, asyncio.TimeoutError, asyncpg.PostgresError)


def _build_embeddings(fake: bool, config: VectorStoreConfig) -> Embeddings:
    if fake:
        return FakeEmbeddings(dimensions=config.dimensions or FAKE_DIMENSIONS)
    return HTTPEmbeddings(EmbeddingConfig())


@asynccontextmanager
async def _open_manager(fake: bool = False) -> AsyncIterator[VectorStoreManager]:
    """Connect to PostgreSQL and yield a manager; everything is closed on exit."""
    config = VectorStoreConfig()
    db = Database()
    await db.connect()
    try:
        store = PgVectorStore(db, config)
        manager = VectorStoreManager(store, _build_embeddings(fake, config), config=config)
        try:
            yield manager
        finally:
            await manager.close()
    finally:
        await db.close()


def _parse_filter(value: str | None) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--filter") from e
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--filter")
    return parsed


def _read_jsonl(path: str) -> list[Document]:
    documents = []
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                documents.append(
                    Document(
                        content=record["content"],
                        metadata=record.get("metadata") or {},
                        id=record.get("id"),
                    )
                )
            except (json.JSONDecodeError, KeyError, TypeError, VectorStoreError) as e:
                raise click.ClickException(f"{path}:{line_no}: invalid document ({e})") from e
    return documents


def _run(coro: Any) -> Any:
    """Run a coroutine, turning vector store and connection errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except VectorStoreError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e
    except _CONNECT_FAILURES as e:
        raise click.ClickException(f"Database unavailable: {e}") from e


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """pgdocstore - Document vector store on PostgreSQL + pgvector."""
    setup_logging("DEBUG" if debug else None)


@main.command("init-db")
def init_db() -> None:
    """Create the vector extension and the document tables."""

    async def run():
        async with Database() as db:
            store = PgVectorStore(db, VectorStoreConfig())
            await store.ensure_table()
            await store.get_or_create_collection()

    _run(run())
    click.echo("Database initialized successfully")


@main.command()
def health() -> None:
    """Check health of the database connection."""

    async def check() -> bool:
        db = Database()
        try:
            await db.connect()
            return await db.health_check()
        except _CONNECT_FAILURES as e:
            get_logger(__name__).error("Postgres health check failed", error=str(e))
            return False
        finally:
            await db.close()

    healthy = asyncio.run(check())
    icon = "✓" if healthy else "✗"
    click.echo(click.style(f"  {icon} postgres: {healthy}", fg="green" if healthy else "red"))
    if not healthy:
        raise SystemExit(1)


@main.command()
@click.option("--filter", "filter_json", default=None, help="Metadata filter as JSON")
def count(filter_json: str | None) -> None:
    """Count stored documents."""
    filter_ = _parse_filter(filter_json)

    # count and delete never call the embedding gateway
    async def run() -> int:
        async with _open_manager(fake=True) as manager:
            return await manager.count(filter_)

    click.echo(_run(run()))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--fake", is_flag=True, help="Use deterministic fake embeddings")
@click.option("--metrics/--no-metrics", default=False, help="Enable metrics server")
def ingest(path: str, fake: bool, metrics: bool) -> None:
    """Embed and upsert documents from a JSON Lines file."""
    documents = _read_jsonl(path)
    bind_context(source=path)

    async def run() -> list[str]:
        if metrics:
            get_metrics().start_server()
        async with _open_manager(fake=fake) as manager:
            return await manager.add_documents(documents)

    ids = _run(run())
    click.echo(f"Ingested {len(ids)} documents")


@main.command()
@click.argument("query")
@click.option("-k", "k", default=4, show_default=True, type=click.IntRange(min=1))
@click.option("--filter", "filter_json", default=None, help="Metadata filter as JSON")
@click.option("--fake", is_flag=True, help="Use deterministic fake embeddings")
def search(query: str, k: int, filter_json: str | None, fake: bool) -> None:
    """Similarity search by query text."""
    filter_ = _parse_filter(filter_json)

    async def run() -> list[tuple[Document, float]]:
        async with _open_manager(fake=fake) as manager:
            return await manager.similarity_search_with_score(
                query, k=k, filter=filter_, include_ids=True
            )

    results = _run(run())
    if not results:
        click.echo("No results")
        return
    for document, distance in results:
        click.echo(
            json.dumps(
                {
                    "id": document.id,
                    "distance": round(distance, 6),
                    "content": document.content,
                    "metadata": document.metadata,
                },
                ensure_ascii=False,
            )
        )


@main.command()
@click.option("--id", "ids", multiple=True, help="Id to delete (repeatable)")
@click.option("--filter", "filter_json", default=None, help="Metadata filter as JSON")
def delete(ids: tuple[str, ...], filter_json: str | None) -> None:
    """Delete documents by id or by metadata filter."""
    filter_ = _parse_filter(filter_json)

    async def run() -> int:
        async with _open_manager(fake=True) as manager:
            return await manager.delete(ids=list(ids) if ids else None, filter=filter_)

    deleted = _run(run())
    click.echo(f"Deleted {deleted} documents")


if __name__ == "__main__":
    main()
