"""
Distributed tracing using OpenTelemetry.

Instruments:
- Transactional bulk upserts into the target collection
- Backfill pages read from the source collection
- Record anonymization
- MongoDB driver commands (optional pymongo instrumentation)
"""

from .context import add_span_attributes, trace_operation
from .mongo import trace_collection_operation
from .tracer import (
    get_tracer,
    initialize_tracing,
    instrument_pymongo,
    shutdown_tracing,
)

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "instrument_pymongo",
    "trace_operation",
    "trace_collection_operation",
    "add_span_attributes",
]
