"""
Metrics publisher for the Prometheus HTTP exporter.

Starts the HTTP server exposing /metrics and publishes application
metadata and uptime.
"""

import logging
import time
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Gauge, Info, start_http_server

from .pipeline import get_or_create_metric

logger = logging.getLogger(__name__)


class MetricsPublisher:
    """
    Exposes a registry on an HTTP /metrics endpoint
    """

    def __init__(
        self,
        port: int = 9091,
        registry: Optional[CollectorRegistry] = None,
    ):
        """
        Initialize metrics publisher

        Args:
            port: Port to expose metrics on (default: 9091)
            registry: Custom Prometheus registry (default: global REGISTRY)
        """
        self.port = port
        self.registry = registry or REGISTRY
        self._server_started = False

    def start(self) -> None:
        """Start the metrics HTTP server (idempotent)"""
        if self.is_started():
            logger.warning(f"Metrics server already running on port {self.port}")
            return

        try:
            start_http_server(self.port, registry=self.registry)
        except OSError as e:
            logger.error(f"Metrics server cannot bind port {self.port}: {e}")
            raise RuntimeError(
                f"Metrics server port {self.port} is unavailable. "
                f"Stop the conflicting process or choose another --metrics-port."
            ) from e

        self._server_started = True
        logger.info(f"Metrics server started on port {self.port}")

    def is_started(self) -> bool:
        return self._server_started


class ApplicationInfo:
    """
    Application metadata and uptime
    """

    def __init__(
        self,
        app_name: str = "mongo-anon-sync",
        version: str = "1.0.0",
        registry: Optional[CollectorRegistry] = None,
    ):
        self.registry = registry or REGISTRY
        reg = self.registry

        self.info = get_or_create_metric(
            lambda: Info("application", "Application metadata", registry=reg),
            "application_info",
            reg,
        )
        self.info.info({"name": app_name, "version": version})

        self._start_time = time.time()

        self.uptime_seconds = get_or_create_metric(
            lambda: Gauge(
                "application_uptime_seconds",
                "Application uptime in seconds",
                registry=reg,
            ),
            "application_uptime_seconds",
            reg,
        )
        # Evaluated on every scrape
        self.uptime_seconds.set_function(self.get_uptime)

    def get_uptime(self) -> float:
        return time.time() - self._start_time
