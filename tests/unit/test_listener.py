"""
Unit tests for synchronization/listener.py
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import AutoReconnect, OperationFailure

from fakes import FakeChangeStream, make_customer
from synchronization.listener import FEED_PIPELINE, ChangeFeedListener


def event(operation_type: str, document=None, token: int = 0) -> dict:
    change = {"_id": {"_data": f"token-{token}"}, "operationType": operation_type}
    if document is not None:
        change["fullDocument"] = document
    return change


class TestHandleEvent:
    """Test event filtering"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation_type", ["insert", "update", "replace"])
    async def test_actionable_events_forwarded(self, store, operation_type):
        on_records = AsyncMock()
        listener = ChangeFeedListener(store, on_records)
        document = make_customer(1)

        accepted = await listener.handle_event(event(operation_type, document))

        assert accepted is True
        on_records.assert_awaited_once_with([document])

    @pytest.mark.asyncio
    async def test_delete_ignored(self, store):
        on_records = AsyncMock()
        listener = ChangeFeedListener(store, on_records)

        accepted = await listener.handle_event(event("delete"))

        assert accepted is False
        on_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_without_full_document_ignored(self, store):
        """Test an update whose document was deleted before lookup is dropped"""
        on_records = AsyncMock()
        listener = ChangeFeedListener(store, on_records)

        change = event("update")
        change["fullDocument"] = None

        assert await listener.handle_event(change) is False
        on_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_event_ignored(self, store):
        on_records = AsyncMock()
        listener = ChangeFeedListener(store, on_records)

        assert await listener.handle_event({}) is False
        on_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_event_metrics(self, store, metrics, registry):
        listener = ChangeFeedListener(store, AsyncMock(), metrics=metrics)

        await listener.handle_event(event("insert", make_customer(1)))
        await listener.handle_event(event("delete"))

        assert registry.get_sample_value(
            "sync_feed_events_total",
            {"source": "customers", "operation_type": "insert", "action": "accepted"},
        ) == 1
        assert registry.get_sample_value(
            "sync_feed_events_total",
            {"source": "customers", "operation_type": "delete", "action": "ignored"},
        ) == 1


class TestListen:
    """Test change stream consumption"""

    @pytest.mark.asyncio
    async def test_listen_forwards_in_feed_order(self, store, source):
        await store.connect()
        source.streams.append(FakeChangeStream([
            event("insert", make_customer(1), token=1),
            event("delete", token=2),
            event("update", make_customer(2), token=3),
        ]))
        received = []

        async def on_records(records):
            received.extend(r["_id"] for r in records)

        listener = ChangeFeedListener(store, on_records)
        await listener.listen()

        assert received == [1, 2]
        assert source.watch_calls == [{"pipeline": FEED_PIPELINE, "full_document": "updateLookup"}]
        assert listener.resume_token == {"_data": "token-3"}

    @pytest.mark.asyncio
    async def test_close_ends_open_stream(self, store, source):
        await store.connect()
        stream = FakeChangeStream([event("insert", make_customer(1))], hold_open=True)
        source.streams.append(stream)
        on_records = AsyncMock()
        listener = ChangeFeedListener(store, on_records)

        task = asyncio.create_task(listener.listen())
        await asyncio.sleep(0.05)
        assert not task.done()

        await listener.close()
        await asyncio.wait_for(task, timeout=1)

        assert stream.closed is True
        assert listener.closed is True
        on_records.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, store):
        listener = ChangeFeedListener(store, AsyncMock())

        await listener.close()
        await listener.close()

        assert listener.closed is True

    @pytest.mark.asyncio
    async def test_feed_error_propagates_without_resubscribe(self, store, source):
        await store.connect()
        source.streams.append(FakeChangeStream([
            event("insert", make_customer(1)),
            AutoReconnect("connection reset"),
        ]))
        listener = ChangeFeedListener(store, AsyncMock())

        with pytest.raises(AutoReconnect):
            await listener.listen()

        assert len(source.watch_calls) == 1

    @pytest.mark.asyncio
    async def test_resubscribes_after_last_token(self, store, source, metrics, registry):
        """Test a transient failure re-opens the stream after the last event"""
        await store.connect()
        source.streams.extend([
            FakeChangeStream([event("insert", make_customer(1), token=1), AutoReconnect("reset")]),
            FakeChangeStream([event("insert", make_customer(2), token=2)]),
        ])
        received = []

        async def on_records(records):
            received.extend(r["_id"] for r in records)

        listener = ChangeFeedListener(
            store, on_records, resubscribe_attempts=2, metrics=metrics, retry_base_delay=0
        )
        await listener.listen()

        assert received == [1, 2]
        assert source.watch_calls[1]["resume_after"] == {"_data": "token-1"}
        assert registry.get_sample_value("sync_feed_resubscriptions_total", {"source": "customers"}) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_not_resubscribed(self, store, source):
        await store.connect()
        source.streams.append(FakeChangeStream([OperationFailure("not authorized", code=13)]))
        listener = ChangeFeedListener(store, AsyncMock(), resubscribe_attempts=3, retry_base_delay=0)

        with pytest.raises(OperationFailure):
            await listener.listen()

        assert len(source.watch_calls) == 1

    @pytest.mark.asyncio
    async def test_callback_driver_error_not_resubscribed(self, store, source):
        """Test a sink failure is raised as-is instead of re-opening the feed"""
        await store.connect()
        source.streams.extend([
            FakeChangeStream([event("insert", make_customer(1), token=1)], hold_open=True),
            FakeChangeStream([event("insert", make_customer(2), token=2)]),
        ])
        on_records = AsyncMock(side_effect=AutoReconnect("sink down"))
        listener = ChangeFeedListener(store, on_records, resubscribe_attempts=3, retry_base_delay=0)

        with pytest.raises(AutoReconnect, match="sink down"):
            await listener.listen()

        assert len(source.watch_calls) == 1
        on_records.assert_awaited_once_with([make_customer(1)])
        assert listener.resume_token is None

    @pytest.mark.asyncio
    async def test_resubscribe_attempts_exhausted(self, store, source):
        await store.connect()
        source.streams.extend(FakeChangeStream([AutoReconnect("down")]) for _ in range(3))
        listener = ChangeFeedListener(store, AsyncMock(), resubscribe_attempts=2, retry_base_delay=0)

        with pytest.raises(AutoReconnect):
            await listener.listen()

        assert len(source.watch_calls) == 3
