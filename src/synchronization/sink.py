"""
Transactional, idempotent sink for the anonymized target collection.
"""

import logging
import time
from typing import Any, Optional

from pymongo import UpdateOne

from utils.metrics import SyncMetrics
from utils.tracing import trace_collection_operation

from .exceptions import SinkError
from .store import MongoStore

logger = logging.getLogger(__name__)

IDENTITY_FIELD = "_id"


def build_upserts(batch: list[dict[str, Any]]) -> list[UpdateOne]:
    """
    Build one upsert per record, keyed by identity.

    Raises:
        SinkError: If a record has no identity
    """
    operations = []
    for position, record in enumerate(batch):
        if IDENTITY_FIELD not in record:
            raise SinkError(f"Record at position {position} has no '{IDENTITY_FIELD}'")

        fields = {key: value for key, value in record.items() if key != IDENTITY_FIELD}
        operations.append(
            UpdateOne({IDENTITY_FIELD: record[IDENTITY_FIELD]}, {"$set": fields}, upsert=True)
        )
    return operations


class MongoSink:
    """
    Writes batches to the target collection, all-or-nothing.

    Each batch is one unordered bulk of upserts executed inside a
    transaction. Writing the same batch twice leaves the target unchanged,
    so a failed batch can simply be retried by the caller.
    """

    def __init__(self, store: MongoStore, metrics: Optional[SyncMetrics] = None):
        self.store = store
        self.metrics = metrics

    async def upsert(self, batch: list[dict[str, Any]]) -> None:
        """
        Upsert every record of the batch in one transaction.

        Raises:
            SinkError: If a record has no identity (nothing is written)
            PyMongoError: If the transaction fails (nothing is committed)
        """
        if not batch:
            return

        operations = build_upserts(batch)
        target = self.store.target_name
        collection = self.store.target_collection()
        start_time = time.monotonic()

        async def write(session):
            await collection.bulk_write(operations, ordered=False, session=session)

        try:
            with trace_collection_operation(
                "bulk_write",
                target,
                self.store.database_name,
                batch_size=len(batch),
            ):
                async with await self.store.start_session() as session:
                    await session.with_transaction(write)
        except Exception as e:
            duration = time.monotonic() - start_time
            if self.metrics:
                self.metrics.record_sink_batch(target, len(batch), success=False, duration=duration)
            logger.error(
                f"Failed to upsert batch of {len(batch)} record(s) into '{target}': "
                f"{type(e).__name__}: {e}"
            )
            raise

        duration = time.monotonic() - start_time
        if self.metrics:
            self.metrics.record_sink_batch(target, len(batch), success=True, duration=duration)
        logger.debug(f"Upserted {len(batch)} record(s) into '{target}' in {duration:.3f}s")

    async def __call__(self, batch: list[dict[str, Any]]) -> None:
        await self.upsert(batch)
