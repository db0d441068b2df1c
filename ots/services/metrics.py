"""Prometheus metrics for the one-time secret service."""

import logging
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from ots import __version__
from ots.exceptions import StorageError
from ots.services.secret_store import SecretStore

logger = logging.getLogger(__name__)


class SecretMetrics:
    """Metric collectors bound to their own registry.

    One instance is created per application so tests never share counters.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        app_info = Info("ots_app", "One-time secret service information", registry=self.registry)
        app_info.info({"version": __version__, "name": "ots"})

        # Secret lifecycle
        self.secrets_created = Counter(
            "ots_secrets_created_total", "Secrets created", registry=self.registry
        )
        self.secrets_retrieved = Counter(
            "ots_secrets_retrieved_total", "Secrets consumed by a reader", registry=self.registry
        )
        self.secrets_burned = Counter(
            "ots_secrets_burned_total", "Secrets destroyed manually", registry=self.registry
        )
        self.secrets_expired_swept = Counter(
            "ots_secrets_expired_swept_total",
            "Expired secrets removed by the sweeper",
            registry=self.registry,
        )
        self.active_secrets = Gauge(
            "ots_active_secrets", "Rows currently stored", registry=self.registry
        )

        # Requests
        self.requests_total = Counter(
            "ots_requests_total",
            "HTTP requests handled",
            ["method", "status"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "ots_request_duration_seconds", "HTTP request duration", registry=self.registry
        )
        self.rate_limit_rejections = Counter(
            "ots_rate_limit_rejections_total",
            "Requests rejected by the rate limiter",
            registry=self.registry,
        )

    def observe_request(self, method: str, status: int, duration: float) -> None:
        self.requests_total.labels(method=method, status=str(status)).inc()
        self.request_duration.observe(duration)

    async def collect(self, store: SecretStore) -> None:
        """Refresh gauges from the database. Best-effort."""
        try:
            self.active_secrets.set(await store.count())
        except StorageError as e:
            logger.error(f"Failed to refresh active secret count: {e}")

    def render(self) -> bytes:
        return generate_latest(self.registry)

    @staticmethod
    def content_type() -> str:
        return CONTENT_TYPE_LATEST
