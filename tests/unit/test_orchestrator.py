"""
Unit tests for synchronization/orchestrator.py

Tests verify:
- Backfill mode scans, writes and stops by itself
- Continuous mode backfills and follows the change feed
- Failures halt the pipeline and still drain and disconnect
- Stop ordering and idempotence
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import AutoReconnect, ConnectionFailure, OperationFailure

from fakes import FakeChangeStream, FakeMongoClient, make_customer
from synchronization.config import SyncConfig
from synchronization.exceptions import SyncError
from synchronization.orchestrator import PipelineState, SyncMode, SyncOrchestrator
from synchronization.store import MongoStore


def insert_event(identity: int) -> dict:
    return {
        "_id": {"_data": f"token-{identity}"},
        "operationType": "insert",
        "fullDocument": make_customer(identity),
    }


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestSyncMode:
    def test_mode_from_force_reindex(self, config, store):
        assert SyncOrchestrator(config, store=store).mode is SyncMode.CONTINUOUS
        assert SyncOrchestrator(config, force_reindex=True, store=store).mode is SyncMode.BACKFILL

    def test_initial_state(self, config, store):
        assert SyncOrchestrator(config, store=store).state is PipelineState.CREATED


class TestBackfillMode:
    """Test one-shot reindex runs"""

    @pytest.mark.asyncio
    async def test_run_copies_anonymized_source_and_stops(self, config, store, source, target, fake_client):
        source.insert(*(make_customer(i) for i in range(10)))
        target.insert({"_id": 3, "firstName": "Stale"})
        orchestrator = SyncOrchestrator(config, force_reindex=True, store=store)

        await asyncio.wait_for(orchestrator.run(), timeout=2)

        assert sorted(target.documents) == list(range(10))
        for identity, document in target.documents.items():
            original = make_customer(identity)
            assert document["firstName"] != original["firstName"]
            assert document["email"].endswith("@example.com")
            assert document["address"]["city"] == "Springfield"
        assert orchestrator.state is PipelineState.STOPPED
        assert fake_client.closed is True
        assert source.watch_calls == []

    @pytest.mark.asyncio
    async def test_each_record_written_once(self, config, store, source, target):
        source.insert(*(make_customer(i) for i in range(10)))
        orchestrator = SyncOrchestrator(config, force_reindex=True, store=store)

        await orchestrator.run()

        written = sum(call["count"] for call in target.bulk_write_calls)
        assert written == 10
        assert all(call["count"] <= config.bunch_size for call in target.bulk_write_calls)

    @pytest.mark.asyncio
    async def test_sink_failure_fails_run_and_disconnects(self, config, store, source, target, fake_client):
        source.insert(*(make_customer(i) for i in range(5)))
        target.write_failures.extend([OperationFailure("write conflict", code=112)] * 10)
        orchestrator = SyncOrchestrator(config, force_reindex=True, store=store)

        with pytest.raises(OperationFailure):
            await orchestrator.run()

        assert orchestrator.state is PipelineState.FAILED
        assert fake_client.closed is True
        assert target.documents == {}

    @pytest.mark.asyncio
    async def test_connect_failure(self, config):
        client = FakeMongoClient(ping_failures=[ConnectionFailure("refused")])
        store = MongoStore(
            config.db_uri, config.source_collection, config.target_collection,
            client_factory=client, connect_retries=0,
        )
        orchestrator = SyncOrchestrator(config, force_reindex=True, store=store)

        with pytest.raises(ConnectionFailure):
            await orchestrator.run()

        assert orchestrator.state is PipelineState.FAILED
        assert store.is_connected is False


class TestContinuousMode:
    """Test backfill followed by change feed"""

    @pytest.mark.asyncio
    async def test_backfill_then_feed(self, config, store, source, target):
        source.insert(make_customer(1), make_customer(2))
        target.insert({"_id": 1, "firstName": "Already"})
        stream = FakeChangeStream([insert_event(10), insert_event(11)], hold_open=True)
        source.streams.append(stream)
        orchestrator = SyncOrchestrator(config, store=store)

        await orchestrator.start()
        assert orchestrator.state is PipelineState.RUNNING
        await wait_until(lambda: {2, 10, 11} <= set(target.documents))

        orchestrator.request_stop()
        await orchestrator.wait()
        await orchestrator.stop()

        assert target.documents[1]["firstName"] == "Already"
        assert target.documents[10]["firstName"] != "First10"
        assert stream.closed is True
        assert store.is_connected is False
        assert orchestrator.state is PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_drains_records_waiting_for_timer(self, store, source, target):
        config = SyncConfig(db_uri=store.uri, bunch_size=100, flush_interval_ms=60000)
        source.streams.append(FakeChangeStream([insert_event(5)], hold_open=True))
        orchestrator = SyncOrchestrator(config, store=store)

        await orchestrator.start()
        await wait_until(lambda: orchestrator.buffer.pending == 1)
        assert target.documents == {}

        await orchestrator.stop()

        assert 5 in target.documents
        assert orchestrator.buffer.pending == 0

    @pytest.mark.asyncio
    async def test_feed_failure_halts_pipeline(self, config, store, source, fake_client, caplog):
        source.streams.append(FakeChangeStream([AutoReconnect("connection reset")]))
        orchestrator = SyncOrchestrator(config, store=store)

        with caplog.at_level(logging.ERROR, logger="synchronization.orchestrator"):
            with pytest.raises(AutoReconnect):
                await asyncio.wait_for(orchestrator.run(), timeout=2)

        assert orchestrator.state is PipelineState.FAILED
        assert fake_client.closed is True

        failure, = [r for r in caplog.records if r.getMessage().startswith("Task 'listener' failed")]
        assert failure.task == "listener"
        assert failure.mode == "continuous"
        assert failure.target == config.target_collection

    @pytest.mark.asyncio
    async def test_feed_end_halts_pipeline(self, config, store, source):
        source.streams.append(FakeChangeStream([insert_event(1)]))
        orchestrator = SyncOrchestrator(config, store=store)

        await asyncio.wait_for(orchestrator.run(), timeout=2)

        assert orchestrator.state is PipelineState.STOPPED


class TestLifecycle:
    """Test start/stop rules"""

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, config, store, source):
        source.streams.append(FakeChangeStream([], hold_open=True))
        orchestrator = SyncOrchestrator(config, store=store)
        await orchestrator.start()

        with pytest.raises(SyncError):
            await orchestrator.start()

        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config, store, source):
        source.streams.append(FakeChangeStream([], hold_open=True))
        orchestrator = SyncOrchestrator(config, store=store)
        await orchestrator.start()

        await asyncio.gather(orchestrator.stop(), orchestrator.stop())
        await orchestrator.stop()

        assert orchestrator.state is PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_order(self, config, store):
        """Test the buffer drains before the listener is released and the store closed"""
        calls = []
        buffer = AsyncMock()
        buffer.stop.side_effect = lambda: calls.append("drain")
        buffer.on_flush_error = None
        buffer.pending = 0
        listener = AsyncMock()
        listener.close.side_effect = lambda: calls.append("unsubscribe")
        store.close = AsyncMock(side_effect=lambda: calls.append("disconnect"))

        orchestrator = SyncOrchestrator(config, store=store, buffer=buffer, listener=listener)
        await orchestrator.stop()

        assert calls == ["drain", "unsubscribe", "disconnect"]

    @pytest.mark.asyncio
    async def test_feed_closed_before_drain(self, config, store, source):
        """Test cancelling the listener task ends the subscription before the buffer drains"""
        stream = FakeChangeStream([], hold_open=True)
        source.streams.append(stream)
        orchestrator = SyncOrchestrator(config, store=store)
        await orchestrator.start()
        await wait_until(lambda: len(source.watch_calls) == 1)

        stream_closed_at_drain = []
        drain = orchestrator.buffer.stop

        async def stop_buffer():
            stream_closed_at_drain.append(stream.closed)
            await drain()

        orchestrator.buffer.stop = stop_buffer
        await orchestrator.stop()

        assert stream_closed_at_drain == [True]
        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_injected_buffer_gets_error_callback(self, config, store):
        buffer = AsyncMock()
        buffer.on_flush_error = None

        orchestrator = SyncOrchestrator(config, store=store, buffer=buffer)

        assert buffer.on_flush_error == orchestrator._fail

    @pytest.mark.asyncio
    async def test_state_metric(self, config, store, source, metrics, registry):
        source.insert(make_customer(1))
        orchestrator = SyncOrchestrator(config, force_reindex=True, store=store, metrics=metrics)

        await orchestrator.run()

        assert registry.get_sample_value("sync_pipeline_state", {"target": "customers_anonymised"}) == 4
