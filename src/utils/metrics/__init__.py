"""
Prometheus metrics for the sync service

Usage:
    from utils.metrics import initialize_metrics

    metrics = initialize_metrics(port=9091)
    metrics["sync"].record_sink_batch("customers_anonymised", size=1000, success=True, duration=0.2)
"""

import logging
from typing import Any

from prometheus_client import CollectorRegistry

from .pipeline import PIPELINE_STATES, SyncMetrics, get_or_create_metric
from .publisher import ApplicationInfo, MetricsPublisher

logger = logging.getLogger(__name__)


def initialize_metrics(
    port: int = 9091,
    registry: CollectorRegistry | None = None,
    version: str = "1.0.0",
) -> dict[str, Any]:
    """
    Initialize all metrics and start the metrics server

    Args:
        port: Port to expose metrics on (default: 9091)
        registry: Custom Prometheus registry (default: global REGISTRY)
        version: Application version reported by the info metric

    Returns:
        Dictionary containing all metrics objects:
        - publisher: MetricsPublisher
        - sync: SyncMetrics
        - app_info: ApplicationInfo
    """
    logger.info(f"Initializing metrics on port {port}")

    publisher = MetricsPublisher(port=port, registry=registry)
    publisher.start()

    return {
        "publisher": publisher,
        "sync": SyncMetrics(registry=registry),
        "app_info": ApplicationInfo(version=version, registry=registry),
    }


__all__ = [
    "MetricsPublisher",
    "SyncMetrics",
    "ApplicationInfo",
    "PIPELINE_STATES",
    "initialize_metrics",
    "get_or_create_metric",
]
