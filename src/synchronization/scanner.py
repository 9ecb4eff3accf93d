"""
Backfill scanner.

Reads the source collection page by page, skipping records whose identity
is already present in the target unless a full reindex is requested.
"""

import logging
from typing import Any, AsyncIterator, Optional

from pymongo import ASCENDING

from utils.metrics import SyncMetrics
from utils.tracing import add_span_attributes, trace_collection_operation

from .exceptions import ConfigurationError
from .store import MongoStore

logger = logging.getLogger(__name__)

PAGINATION_MODES = ("skip", "keyset")


class BackfillScanner:
    """
    Lazy, finite scan of the source collection in ``_id`` order.

    Skip pagination follows the source as it was read page by page; records
    inserted or deleted during the scan can shift page boundaries, so some
    may be read twice or missed (the change feed covers the latter in
    continuous mode). Keyset pagination (``_id > last``) has no such drift.
    """

    def __init__(
        self,
        store: MongoStore,
        page_size: int = 10000,
        pagination: str = "skip",
        metrics: Optional[SyncMetrics] = None,
    ):
        """
        Initialize backfill scanner

        Args:
            store: Connected store accessor
            page_size: Records per page
            pagination: "skip" or "keyset"
            metrics: Optional SyncMetrics

        Raises:
            ConfigurationError: If page_size is not positive or pagination is unknown
        """
        if page_size <= 0:
            raise ConfigurationError(f"page_size must be positive, got {page_size}")
        if pagination not in PAGINATION_MODES:
            raise ConfigurationError(f"Unknown pagination mode '{pagination}'")

        self.store = store
        self.page_size = page_size
        self.pagination = pagination
        self.metrics = metrics

    async def build_query(self, force_reindex: bool) -> dict[str, Any]:
        """
        Build the source filter.

        Unless ``force_reindex``, identities already present in the target
        are excluded.
        """
        if force_reindex:
            return {}

        existing = await self.store.target_collection().distinct("_id")
        if not existing:
            return {}

        logger.info(f"Excluding {len(existing)} record(s) already present in '{self.store.target_name}'")
        return {"_id": {"$nin": existing}}

    async def scan(self, force_reindex: bool = False) -> AsyncIterator[list[dict[str, Any]]]:
        """
        Yield pages of source records.

        Stops after the first page shorter than ``page_size``; an empty page
        is never yielded.

        Args:
            force_reindex: Scan every source record, ignoring the target
        """
        source_name = self.store.source_name
        query = await self.build_query(force_reindex)

        logger.info(
            f"Backfill of '{source_name}' started "
            f"(force_reindex={force_reindex}, page_size={self.page_size}, pagination={self.pagination})"
        )

        pages = 0
        total = 0
        offset = 0
        last_id = None

        while True:
            page = await self._fetch_page(query, offset, last_id, page_number=pages + 1)
            if not page:
                break

            pages += 1
            total += len(page)
            offset += len(page)
            last_id = page[-1]["_id"]

            if self.metrics:
                self.metrics.record_backfill_page(source_name, len(page))
            logger.debug(f"Backfill page {pages}: {len(page)} record(s)")

            yield page

            if len(page) < self.page_size:
                break

        logger.info(f"Backfill of '{source_name}' finished: {total} record(s) in {pages} page(s)")

    async def _fetch_page(
        self,
        query: dict[str, Any],
        offset: int,
        last_id: Any,
        page_number: int,
    ) -> list[dict[str, Any]]:
        collection = self.store.source_collection()

        with trace_collection_operation(
            "find",
            self.store.source_name,
            self.store.database_name,
            page=page_number,
            pagination=self.pagination,
        ):
            if self.pagination == "keyset":
                cursor = collection.find(self._after(query, last_id)).sort("_id", ASCENDING)
            else:
                cursor = collection.find(query).sort("_id", ASCENDING).skip(offset)

            page = await cursor.limit(self.page_size).to_list(length=self.page_size)
            add_span_attributes(page_size=len(page))
            return page

    @staticmethod
    def _after(query: dict[str, Any], last_id: Any) -> dict[str, Any]:
        if last_id is None:
            return query

        id_filter = dict(query.get("_id", {}))
        id_filter["$gt"] = last_id
        return {**query, "_id": id_filter}
