"""Storage layer: asyncpg pool management."""

from pgdocstore.storage.database import Database

__all__ = ["Database"]
