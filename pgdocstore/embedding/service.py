"""
Embedding gateway backed by an OpenAI-compatible HTTP API.

Provides async embedding generation with:
- One POST per provider-sized slice of the input
- Response reordering by ``index`` so output order matches input order
- Consistent-dimension checks across calls
- Transport failures surfaced as EmbeddingError
"""

import json
from typing import Any

import structlog

from pgdocstore.embedding.base import Embeddings
from pgdocstore.embedding.config import EmbeddingConfig
from pgdocstore.embedding.http_client import HTTPClient, HTTPClientError, RetryConfig
from pgdocstore.vectorstore.errors import EmbeddingError

logger = structlog.get_logger(__name__)


class HTTPEmbeddings(Embeddings):
    """
    Embeddings from a remote ``/embeddings`` endpoint.

    Usage:
        embeddings = HTTPEmbeddings(EmbeddingConfig(api_key="sk-..."))
        vector = await embeddings.embed("What moved NVDA today?")
        vectors = await embeddings.embed_batch(["first text", "second text"])
        await embeddings.close()
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        client: HTTPClient | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Embedding configuration (uses defaults if None)
            client: HTTP client to reuse; one is created (and owned) if None
        """
        self._config = config or EmbeddingConfig()
        self._owns_client = client is None
        self._client = client or HTTPClient(
            retry_config=RetryConfig(
                max_retries=self._config.max_retries,
                max_backoff_seconds=self._config.max_backoff_seconds,
            ),
            timeout=self._config.request_timeout,
        )
        self._dimensions: int | None = self._config.dimensions

        logger.info(
            "HTTPEmbeddings created",
            url=self._config.embeddings_url,
            model=self._config.model_name,
        )

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key is not None:
            headers["Authorization"] = f"Bearer {self._config.api_key.get_secret_value()}"
        return headers

    def _request_body(self, texts: list[str]) -> dict[str, Any]:
        body: dict[str, Any] = {"model": self._config.model_name, "input": texts}
        if self._config.dimensions is not None:
            body["dimensions"] = self._config.dimensions
        return body

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts, splitting into requests of at most max_batch_size inputs.

        Raises:
            EmbeddingError: HTTP failure, malformed response, or wrong vector count
        """
        if not texts:
            return []

        step = self._config.max_batch_size
        vectors: list[list[float]] = []
        for start in range(0, len(texts), step):
            vectors.extend(await self._request(texts[start:start + step]))
        return vectors

    async def _request(self, texts: list[str]) -> list[list[float]]:
        try:
            response = await self._client.post_json(
                self._config.embeddings_url,
                self._request_body(texts),
                headers=self._headers(),
            )
        except HTTPClientError as e:
            logger.error(
                "Embedding request failed",
                status_code=e.status_code,
                error=str(e),
            )
            raise EmbeddingError(
                f"Embedding request failed: {e}", status_code=e.status_code
            ) from e

        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise EmbeddingError("Embedding response is not valid JSON") from e

        vectors = self._parse_vectors(payload, expected=len(texts))
        self._check_dimensions(vectors)
        return vectors

    @staticmethod
    def _parse_vectors(payload: Any, expected: int) -> list[list[float]]:
        """Pull vectors out of ``{"data": [{"index": i, "embedding": [...]}]}``."""
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise EmbeddingError("Embedding response has no 'data' list")
        if len(data) != expected:
            raise EmbeddingError(
                f"Embedding response has {len(data)} vectors for {expected} inputs"
            )

        try:
            ordered = sorted(data, key=lambda item: item["index"])
            vectors = [[float(x) for x in item["embedding"]] for item in ordered]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

        if [item["index"] for item in ordered] != list(range(expected)):
            raise EmbeddingError("Embedding response indices do not cover the input")
        return vectors

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        for vector in vectors:
            if self._dimensions is None:
                self._dimensions = len(vector)
            elif len(vector) != self._dimensions:
                raise EmbeddingError(
                    f"Embedding has {len(vector)} dimensions, expected {self._dimensions}"
                )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.close()
