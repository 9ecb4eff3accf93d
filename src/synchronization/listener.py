"""
Change feed listener.

Subscribes to the source collection's change stream and forwards the full
document of every insert, update and replace event.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from pymongo.errors import PyMongoError

from utils.metrics import SyncMetrics
from utils.retry import is_retryable_mongo_exception
from utils.tracing import trace_operation

from .store import MongoStore

logger = logging.getLogger(__name__)

ACTIONABLE_OPERATIONS = ("insert", "update", "replace")

# Filter server-side; handle_event still checks every event
FEED_PIPELINE = [{"$match": {"operationType": {"$in": list(ACTIONABLE_OPERATIONS)}}}]

MAX_RESUBSCRIBE_DELAY = 30.0


class _DeliveryFailed(Exception):
    """Carries a callback error past the feed error handling in listen()."""

    def __init__(self, error: BaseException):
        super().__init__(str(error))
        self.error = error


class ChangeFeedListener:
    """
    Forwards change stream documents to a callback.

    Events are delivered in feed order, one at a time: the next event is
    not read until the callback for the previous one has returned.

    By default a feed failure ends listen() with the error and changes made
    until the pipeline is restarted are only picked up by the next backfill.
    With ``resubscribe_attempts > 0``, transient failures re-open the stream
    right after the last event received.
    """

    def __init__(
        self,
        store: MongoStore,
        on_records: Callable[[list[dict[str, Any]]], Awaitable[None]],
        resubscribe_attempts: int = 0,
        metrics: Optional[SyncMetrics] = None,
        retry_base_delay: float = 1.0,
    ):
        self.store = store
        self.on_records = on_records
        self.resubscribe_attempts = resubscribe_attempts
        self.metrics = metrics
        self.retry_base_delay = retry_base_delay

        self.resume_token: Optional[Mapping[str, Any]] = None
        self._stream = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def listen(self) -> None:
        """
        Consume the change stream until it ends or close() is called.

        Raises:
            PyMongoError: If the feed fails and cannot be resubscribed
            Exception: Whatever the callback raised, never retried here
        """
        source_name = self.store.source_name
        attempt = 0

        while not self._closed:
            token_before = self.resume_token
            try:
                await self._consume()
                logger.info(f"Change feed on '{source_name}' ended")
                return
            except _DeliveryFailed as e:
                raise e.error from None
            except PyMongoError as e:
                if self._closed:
                    return
                if self.resume_token is not token_before:
                    attempt = 0
                if attempt >= self.resubscribe_attempts or not is_retryable_mongo_exception(e):
                    logger.error(f"Change feed on '{source_name}' failed: {type(e).__name__}: {e}")
                    raise

                attempt += 1
                delay = min(self.retry_base_delay * (2 ** (attempt - 1)), MAX_RESUBSCRIBE_DELAY)
                logger.warning(
                    f"Change feed on '{source_name}' interrupted ({type(e).__name__}: {e}). "
                    f"Resubscribing in {delay:.1f}s (attempt {attempt}/{self.resubscribe_attempts})"
                )
                if self.metrics:
                    self.metrics.record_resubscription(source_name)
                await asyncio.sleep(delay)

    async def _consume(self) -> None:
        options: dict[str, Any] = {"full_document": "updateLookup"}
        if self.resume_token is not None:
            options["resume_after"] = self.resume_token

        async with self.store.source_collection().watch(FEED_PIPELINE, **options) as stream:
            self._stream = stream
            logger.info(f"Listening to change feed on '{self.store.source_name}'")
            try:
                async for event in stream:
                    try:
                        await self.handle_event(event)
                    except PyMongoError as e:
                        # Sink-side driver errors must not trigger a resubscribe
                        raise _DeliveryFailed(e) from e
                    self.resume_token = event.get("_id", self.resume_token)
            finally:
                self._stream = None

    async def handle_event(self, event: Mapping[str, Any]) -> bool:
        """
        Forward the full document of an actionable event.

        Args:
            event: Change stream event

        Returns:
            True if the document was forwarded, False if the event was ignored
        """
        operation_type = event.get("operationType") or "unknown"
        document = event.get("fullDocument")
        accepted = operation_type in ACTIONABLE_OPERATIONS and document is not None

        if self.metrics:
            self.metrics.record_feed_event(self.store.source_name, operation_type, accepted)

        if not accepted:
            logger.debug(f"Ignoring change event '{operation_type}'")
            return False

        with trace_operation("feed_event", operation_type=operation_type, collection=self.store.source_name):
            await self.on_records([document])
        return True

    async def close(self) -> None:
        """Release the subscription; safe to call more than once."""
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.close()
            logger.info(f"Change feed on '{self.store.source_name}' closed")
