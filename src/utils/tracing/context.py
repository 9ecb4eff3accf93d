"""
Span helpers shared by the sync pipeline.

The active span lives in a contextvar, so ``trace_operation`` may wrap
an ``await``: each asyncio task sees its own current span.
"""

from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.util.types import AttributeValue

from .tracer import get_tracer


def _attribute(value: Any) -> AttributeValue:
    # OpenTelemetry accepts primitives natively; anything else (ObjectId, dicts) is stringified
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


@contextmanager
def trace_operation(
    operation_name: str,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    **attributes: Any,
) -> Iterator[trace.Span]:
    """
    Run a block inside a span named ``operation_name``.

    Exceptions raised by the block are recorded on the span, which is
    marked as failed, and then propagate unchanged.

    Example:
        >>> with trace_operation("transform_records", pipeline="customer") as span:
        ...     documents = anonymizer.transform_many(page)
        ...     span.set_attribute("record_count", len(documents))
    """
    with get_tracer().start_as_current_span(
        operation_name,
        kind=kind,
        attributes={key: _attribute(value) for key, value in attributes.items()},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("error.type", type(e).__name__)
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, f"{type(e).__name__}: {e}"))
            raise


def add_span_attributes(**attributes: Any) -> None:
    """Set attributes on the current span, if one is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attributes({key: _attribute(value) for key, value in attributes.items()})

