# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Logging and metrics configuration"""

    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "Subscription Sync")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class SyncApiMonitoring:
    """Prometheus metric helpers for the sync HTTP endpoints."""

    REQUEST_COUNTER = Counter(
        "subsync_api_requests_total",
        "Total sync API requests by endpoint and status.",
        labelnames=("endpoint", "status"),
    )
    REQUEST_LATENCY = Histogram(
        "subsync_api_request_seconds",
        "Latency histogram for sync API requests.",
        labelnames=("endpoint", "status"),
        buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
    )
    UPLOAD_SIZE = Histogram(
        "subsync_api_upload_bytes",
        "Size of CSV payloads received by the sync API.",
        labelnames=("endpoint",),
        buckets=(1024, 10240, 102400, 1048576, 10485760, 52428800),
    )

    @classmethod
    def record_request(cls, *, endpoint: str, duration_seconds: float, status: str):
        cls.REQUEST_COUNTER.labels(endpoint=endpoint, status=status).inc()
        cls.REQUEST_LATENCY.labels(endpoint=endpoint, status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_payload_size(cls, *, endpoint: str, size_bytes: int):
        cls.UPLOAD_SIZE.labels(endpoint=endpoint).observe(float(max(size_bytes, 0)))
