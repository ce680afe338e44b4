"""Observability layer - logging and metrics."""

from pgdocstore.observability.logging import setup_logging
from pgdocstore.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
