"""Prometheus metrics collector for sequelae.

This module implements metrics collection using prometheus_client, tracking
tool requests, query and backup durations, connection checkout failures and
connection pool occupancy.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from sequelae.db.pool import PoolStats


class MetricsCollector:
    """Centralized metrics collector using Prometheus client.

    This class provides singleton access to all application metrics, so that
    metrics are registered with the default registry exactly once.

    Example:
        >>> metrics = MetricsCollector()
        >>> metrics.increment_tool_request(tool="sql_exec", status="success")
    """

    _instance: "MetricsCollector | None" = None

    def __new__(cls) -> "MetricsCollector":
        """Ensure singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize_metrics()
        return cls._instance

    def _initialize_metrics(self) -> None:
        # Tool metrics
        self.tool_requests: Counter = Counter(
            "sequelae_tool_requests_total",
            "Total number of tool requests processed",
            labelnames=["tool", "status"],
        )

        # Query metrics
        self.query_duration: Histogram = Histogram(
            "sequelae_query_duration_seconds",
            "SQL execution duration in seconds, including connection checkout",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 120.0),
        )

        # Backup metrics
        self.backups: Counter = Counter(
            "sequelae_backups_total",
            "Total number of pg_dump runs",
            labelnames=["status"],
        )

        self.backup_duration: Histogram = Histogram(
            "sequelae_backup_duration_seconds",
            "pg_dump run duration in seconds",
            buckets=(1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0),
        )

        # Pool metrics
        self.checkout_failures: Counter = Counter(
            "sequelae_checkout_failures_total",
            "Connection checkouts that failed after all retries",
        )

        self.pool_connections: Gauge = Gauge(
            "sequelae_pool_connections",
            "Connection pool occupancy",
            labelnames=["state"],
        )

    def start_metrics_server(self, port: int) -> None:
        """Start the Prometheus metrics HTTP server.

        Args:
            port: Port number to listen on for metrics scraping.
        """
        start_http_server(port)

    def increment_tool_request(self, tool: str, status: str) -> None:
        """Increment tool request counter.

        Args:
            tool: Tool name (sql_exec, sql_schema, ...).
            status: "success" or an error code.
        """
        self.tool_requests.labels(tool=tool, status=status).inc()

    def observe_query_duration(self, duration: float) -> None:
        """Record query duration in seconds."""
        self.query_duration.observe(duration)

    def record_backup(self, success: bool, duration: float) -> None:
        """Record one backup run.

        Args:
            success: Whether pg_dump succeeded.
            duration: Duration in seconds.
        """
        self.backups.labels(status="success" if success else "failure").inc()
        self.backup_duration.observe(duration)

    def increment_checkout_failure(self) -> None:
        self.checkout_failures.inc()

    def set_pool_stats(self, stats: PoolStats) -> None:
        """Publish pool occupancy gauges."""
        self.pool_connections.labels(state="total").set(stats.total)
        self.pool_connections.labels(state="idle").set(stats.idle)
        self.pool_connections.labels(state="waiting").set(stats.waiting)


# Singleton instance
metrics = MetricsCollector()
