"""
Deterministic embeddings for tests and offline use.

Each text maps to a fixed unit vector derived from a hash of its content,
so identical texts always embed identically and distinct texts almost
never collide.
"""

import hashlib

import numpy as np

from pgdocstore.embedding.base import Embeddings


class FakeEmbeddings(Embeddings):
    """
    Hash-seeded random unit vectors.

    Calls are recorded in ``calls`` (one entry per embed_batch / embed call)
    so tests can assert on how the store chunked its requests.
    """

    def __init__(self, dimensions: int = 8):
        if dimensions < 1:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions
        self.calls: list[list[str]] = []

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector_for(self, text: str) -> list[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        vector = np.random.default_rng(seed).standard_normal(self._dimensions)
        vector /= np.linalg.norm(vector)
        return vector.tolist()

    async def embed(self, text: str) -> list[float]:
        self.calls.append([text])
        return self.vector_for(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector_for(text) for text in texts]
