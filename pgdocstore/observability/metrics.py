"""
Prometheus metrics for vector store operations.

Tracks documents written, rows deleted, searches served, per-operation
latency and errors by kind. Metrics are exposed via an HTTP endpoint
for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    start_http_server,
)

from pgdocstore.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for pgdocstore.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.documents_written.inc(500)
        metrics.operation_latency.labels(operation="search").observe(0.05)

    Pass a private CollectorRegistry to keep collectors isolated (tests,
    several stores in one process with separate scrape targets).
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self._registry = registry if registry is not None else REGISTRY

        self.documents_written = Counter(
            "pgdocstore_documents_written_total",
            "Total number of documents upserted into the vector store",
            registry=self._registry,
        )

        self.rows_deleted = Counter(
            "pgdocstore_rows_deleted_total",
            "Total number of rows removed from the vector store",
            ["mode"],  # ids, filter
            registry=self._registry,
        )

        self.searches = Counter(
            "pgdocstore_searches_total",
            "Total number of similarity searches executed",
            registry=self._registry,
        )

        self.operation_latency = Histogram(
            "pgdocstore_operation_latency_seconds",
            "Wall-clock time of public vector store operations",
            ["operation"],  # add_documents, add_vectors, search, delete, count
            buckets=LATENCY_BUCKETS,
            registry=self._registry,
        )

        self.operation_errors = Counter(
            "pgdocstore_operation_errors_total",
            "Failed vector store operations by error kind",
            ["operation", "error_type"],
            registry=self._registry,
        )

        self.embedding_batch_size = Histogram(
            "pgdocstore_embedding_batch_size",
            "Number of texts sent per embedding gateway call",
            buckets=(1, 10, 50, 100, 250, 500, 1000),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def start_server(self, port: int | None = None) -> None:
        """
        Start the Prometheus HTTP endpoint.

        Args:
            port: Port to listen on (defaults to Settings.metrics_port)
        """
        port = port or get_settings().metrics_port
        start_http_server(port, registry=self._registry)
        logger.info(f"Metrics server started on port {port}")


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
