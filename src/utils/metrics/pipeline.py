"""
Metrics for the synchronization pipeline.

Tracks the buffer, sink, backfill scanner and change feed so that lag,
throughput and failures of the anonymized mirror can be alerted on.
"""

import logging
from typing import Callable, Optional, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

T = TypeVar("T")

PIPELINE_STATES = {
    "CREATED": 0,
    "STARTING": 1,
    "RUNNING": 2,
    "DRAINING": 3,
    "STOPPED": 4,
    "FAILED": 5,
}


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the one already registered under that name.

    Lets several pipeline instances (and test cases) share one registry
    without tripping prometheus_client's duplicate registration check.

    Args:
        metric_factory: Callable that creates the metric (e.g., lambda: Counter(...))
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry to use (default: global REGISTRY)

    Returns:
        The metric instance (either newly created or existing)
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


class SyncMetrics:
    """
    Metrics for one source -> target synchronization

    Every metric is labelled by target collection so several pipelines
    can publish through the same exporter.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize sync metrics

        Args:
            registry: Custom Prometheus registry (default: global REGISTRY)
        """
        self.registry = registry or REGISTRY
        reg = self.registry

        self.records_pushed_total = get_or_create_metric(
            lambda: Counter(
                "sync_records_pushed_total",
                "Records pushed into the batch buffer",
                ["target", "origin"],
                registry=reg,
            ),
            "sync_records_pushed_total",
            reg,
        )

        self.buffer_records = get_or_create_metric(
            lambda: Gauge(
                "sync_buffer_records",
                "Records buffered but not yet flushed",
                ["target"],
                registry=reg,
            ),
            "sync_buffer_records",
            reg,
        )

        self.flushes_total = get_or_create_metric(
            lambda: Counter(
                "sync_flushes_total",
                "Buffer flushes by trigger (size, timer, drain)",
                ["target", "trigger"],
                registry=reg,
            ),
            "sync_flushes_total",
            reg,
        )

        self.sink_batches_total = get_or_create_metric(
            lambda: Counter(
                "sync_sink_batches_total",
                "Batches handed to the sink",
                ["target", "status"],
                registry=reg,
            ),
            "sync_sink_batches_total",
            reg,
        )

        self.sink_records_total = get_or_create_metric(
            lambda: Counter(
                "sync_sink_records_total",
                "Records upserted into the target collection",
                ["target"],
                registry=reg,
            ),
            "sync_sink_records_total",
            reg,
        )

        self.sink_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "sync_sink_duration_seconds",
                "Duration of one transactional bulk upsert",
                ["target"],
                buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
                registry=reg,
            ),
            "sync_sink_duration_seconds",
            reg,
        )

        self.backfill_pages_total = get_or_create_metric(
            lambda: Counter(
                "sync_backfill_pages_total",
                "Pages read from the source during backfill",
                ["source"],
                registry=reg,
            ),
            "sync_backfill_pages_total",
            reg,
        )

        self.backfill_records_total = get_or_create_metric(
            lambda: Counter(
                "sync_backfill_records_total",
                "Source records read during backfill",
                ["source"],
                registry=reg,
            ),
            "sync_backfill_records_total",
            reg,
        )

        self.feed_events_total = get_or_create_metric(
            lambda: Counter(
                "sync_feed_events_total",
                "Change stream events received, by operation type and outcome",
                ["source", "operation_type", "action"],
                registry=reg,
            ),
            "sync_feed_events_total",
            reg,
        )

        self.feed_resubscriptions_total = get_or_create_metric(
            lambda: Counter(
                "sync_feed_resubscriptions_total",
                "Change stream resubscriptions after a transient failure",
                ["source"],
                registry=reg,
            ),
            "sync_feed_resubscriptions_total",
            reg,
        )

        self.pipeline_state = get_or_create_metric(
            lambda: Gauge(
                "sync_pipeline_state",
                "Pipeline state (0=created, 1=starting, 2=running, 3=draining, 4=stopped, 5=failed)",
                ["target"],
                registry=reg,
            ),
            "sync_pipeline_state",
            reg,
        )

    def record_push(self, target: str, origin: str, count: int) -> None:
        if count:
            self.records_pushed_total.labels(target=target, origin=origin).inc(count)

    def set_buffer_size(self, target: str, size: int) -> None:
        self.buffer_records.labels(target=target).set(size)

    def record_flush(self, target: str, trigger: str) -> None:
        self.flushes_total.labels(target=target, trigger=trigger).inc()

    def record_sink_batch(self, target: str, size: int, success: bool, duration: float) -> None:
        """
        Record one sink call

        Args:
            target: Target collection name
            size: Number of records in the batch
            success: Whether the transaction committed
            duration: Duration in seconds
        """
        status = "success" if success else "failed"
        self.sink_batches_total.labels(target=target, status=status).inc()
        self.sink_duration_seconds.labels(target=target).observe(duration)
        if success:
            self.sink_records_total.labels(target=target).inc(size)

    def record_backfill_page(self, source: str, size: int) -> None:
        self.backfill_pages_total.labels(source=source).inc()
        self.backfill_records_total.labels(source=source).inc(size)

    def record_feed_event(self, source: str, operation_type: str, accepted: bool) -> None:
        self.feed_events_total.labels(
            source=source,
            operation_type=operation_type,
            action="accepted" if accepted else "ignored",
        ).inc()

    def record_resubscription(self, source: str) -> None:
        self.feed_resubscriptions_total.labels(source=source).inc()

    def set_pipeline_state(self, target: str, state: str) -> None:
        """
        Update the pipeline state gauge

        Args:
            target: Target collection name
            state: Pipeline state name (CREATED, STARTING, RUNNING, ...)
        """
        value = PIPELINE_STATES.get(state.upper(), -1)
        self.pipeline_state.labels(target=target).set(value)
        logger.debug(f"Pipeline state for {target}: {state}")
