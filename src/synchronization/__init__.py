"""
Anonymized MongoDB synchronization.

Mirrors a source collection into an anonymized target collection using a
one-shot backfill scan and the source's change stream, batched through a
size/timer-triggered buffer into a transactional, idempotent sink.
"""

__version__ = "1.0.0"

from synchronization.buffer import BatchBuffer
from synchronization.config import SyncConfig
from synchronization.exceptions import (
    BufferClosedError,
    ConfigurationError,
    NotConnectedError,
    SinkError,
    SyncError,
)
from synchronization.listener import ChangeFeedListener
from synchronization.orchestrator import PipelineState, SyncMode, SyncOrchestrator
from synchronization.scanner import BackfillScanner
from synchronization.sink import MongoSink
from synchronization.store import MongoStore, database_name_from_uri

__all__ = [
    "BatchBuffer",
    "BackfillScanner",
    "ChangeFeedListener",
    "MongoSink",
    "MongoStore",
    "SyncConfig",
    "SyncMode",
    "SyncOrchestrator",
    "PipelineState",
    "database_name_from_uri",
    "SyncError",
    "ConfigurationError",
    "NotConnectedError",
    "BufferClosedError",
    "SinkError",
]
