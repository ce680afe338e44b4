"""
Embedding gateway interface.

The vector store only needs two calls from an embedding provider: one
text to one vector, and many texts to many vectors in the same order.
"""

from abc import ABC, abstractmethod


class Embeddings(ABC):
    """
    Base interface for embedding providers.

    Implementations raise EmbeddingError on provider failures and must
    return vectors of the same length on every call.
    """

    @property
    def dimensions(self) -> int | None:
        """Vector length, or None when only known after the first call."""
        return None

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text (typically a search query).

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed several texts in one provider call.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in input order
        """
        ...

    async def close(self) -> None:
        """Release provider resources (HTTP clients, model handles)."""
        return None
