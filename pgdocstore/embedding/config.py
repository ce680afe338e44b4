"""
Embedding gateway configuration.

Settings for the HTTP embedding provider (OpenAI-compatible
``/embeddings`` endpoint): endpoint, credentials, model and retry policy.
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseSettings):
    """
    Configuration for the embedding gateway.

    Settings can be overridden via environment variables prefixed with EMBEDDING_.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    api_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of an OpenAI-compatible embeddings API",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Bearer token sent with every request",
    )
    model_name: str = Field(
        default="text-embedding-3-small",
        description="Embedding model identifier",
    )
    dimensions: int | None = Field(
        default=None,
        ge=1,
        description="Requested output dimensions (models that support shortening)",
    )

    # Transport
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-request timeout in seconds",
    )
    max_retries: int = Field(default=3, ge=0, le=10)
    max_backoff_seconds: float = Field(default=60.0, ge=1.0, le=300.0)
    max_batch_size: int = Field(
        default=2048,
        ge=1,
        description="Largest number of inputs the provider accepts per request",
    )

    @property
    def embeddings_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/embeddings"
