"""
Client spans for MongoDB collection operations.

Attribute names follow the OpenTelemetry database semantic conventions
so sink and backfill spans line up with driver spans from the optional
pymongo instrumentation.
"""

from typing import Any

from opentelemetry import trace

from .context import trace_operation


def trace_collection_operation(
    operation: str,
    collection: str,
    database: str | None = None,
    **extra_attrs: Any,
):
    """
    Context manager for tracing one logical operation on a collection.

    Args:
        operation: Operation name (find, bulk_write, watch, ...)
        collection: Collection name
        database: Database name, when known
        **extra_attrs: Additional attributes (batch size, page number, ...)

    Example:
        >>> with trace_collection_operation("bulk_write", "customers_anonymised", "shop", batch_size=1000):
        ...     await session.with_transaction(write)
    """
    attributes = {
        "db.system": "mongodb",
        "db.operation": operation,
        "db.mongodb.collection": collection,
        **extra_attrs,
    }
    if database:
        attributes["db.name"] = database

    return trace_operation(
        f"mongodb.{operation} {collection}",
        kind=trace.SpanKind.CLIENT,
        **attributes,
    )
