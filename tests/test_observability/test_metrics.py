"""Tests for Prometheus metrics and logging setup."""

from unittest.mock import patch

import structlog
from prometheus_client import CollectorRegistry

from pgdocstore.observability.logging import bind_context, clear_context, get_logger, setup_logging
from pgdocstore.observability.metrics import MetricsCollector, get_metrics


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_private_registry_isolated(self):
        """Two collectors on separate registries do not clash."""
        first = MetricsCollector(registry=CollectorRegistry())
        second = MetricsCollector(registry=CollectorRegistry())

        first.documents_written.inc(5)

        assert first.registry.get_sample_value("pgdocstore_documents_written_total") == 5.0
        assert second.registry.get_sample_value("pgdocstore_documents_written_total") == 0.0

    def test_labelled_metrics(self, metrics):
        metrics.operation_errors.labels(operation="search", error_type="FilterError").inc()
        metrics.operation_latency.labels(operation="search").observe(0.2)
        metrics.embedding_batch_size.observe(500)

        sample = metrics.registry.get_sample_value
        assert sample(
            "pgdocstore_operation_errors_total",
            {"operation": "search", "error_type": "FilterError"},
        ) == 1.0
        assert sample("pgdocstore_operation_latency_seconds_count", {"operation": "search"}) == 1.0
        assert sample("pgdocstore_embedding_batch_size_sum") == 500.0

    def test_get_metrics_singleton(self):
        assert get_metrics() is get_metrics()

    def test_start_server_uses_settings_port(self, metrics):
        with patch("pgdocstore.observability.metrics.start_http_server") as mock_start:
            metrics.start_server()
            metrics.start_server(port=9123)

        assert mock_start.call_args_list[0].args == (8000,)
        assert mock_start.call_args_list[1].args == (9123,)
        assert mock_start.call_args_list[1].kwargs == {"registry": metrics.registry}


class TestLogging:
    """Tests for structlog configuration."""

    def test_setup_logging_configures_structlog(self):
        setup_logging("DEBUG")

        assert structlog.is_configured()

    def test_context_binding(self):
        clear_context()
        bind_context(import_id="run-1")
        assert structlog.contextvars.get_contextvars() == {"import_id": "run-1"}

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_get_logger(self):
        logger = get_logger("pgdocstore.test")
        assert hasattr(logger, "info")
