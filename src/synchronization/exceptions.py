"""
Exception hierarchy for the synchronization pipeline.

Driver errors (pymongo) are not wrapped: they propagate unchanged so
callers can classify them with ``utils.retry.is_retryable_mongo_exception``.
"""


class SyncError(Exception):
    """Base class for synchronization errors."""

    pass


class ConfigurationError(SyncError, ValueError):
    """Invalid or missing configuration; raised at construction time."""

    pass


class NotConnectedError(SyncError):
    """A store handle was requested before connect() or after close()."""

    pass


class BufferClosedError(SyncError):
    """Records were pushed into a buffer that has been stopped."""

    pass


class SinkError(SyncError):
    """A batch cannot be written, e.g. a record has no identity."""

    pass
