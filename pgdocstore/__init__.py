"""pgdocstore - document vector store on PostgreSQL with pgvector."""

__version__ = "0.1.0"
