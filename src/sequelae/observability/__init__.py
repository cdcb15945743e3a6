"""Observability module for sequelae.

This module provides:
- Prometheus metrics collection
- Structured JSON / text logging with secret redaction

Example:
    >>> from sequelae.observability import metrics, configure_logging
    >>>
    >>> configure_logging(level="INFO", log_format="json")
    >>> metrics.start_metrics_server(9090)
"""

from sequelae.observability.logging import (
    JSONFormatter,
    SensitiveDataFilter,
    TextFormatter,
    configure_logging,
    get_logger,
)
from sequelae.observability.metrics import MetricsCollector, metrics

__all__ = [
    # Metrics
    "MetricsCollector",
    "metrics",
    # Logging
    "configure_logging",
    "get_logger",
    "JSONFormatter",
    "TextFormatter",
    "SensitiveDataFilter",
]
