"""
Synchronization orchestrator.

Wires source producers (backfill scanner, change feed listener) through the
anonymizer into the batch buffer and sink, and owns the pipeline lifecycle:

    CREATED -> STARTING -> RUNNING -> DRAINING -> STOPPED | FAILED

Shutdown cancels the producers first, which also closes the change
stream, then drains the buffer and only then releases the store
connection, so records already handed to the buffer still reach the sink.
Changes arriving on the feed after the cancellation are left to the next
run.
"""

import asyncio
import functools
from enum import Enum
from typing import Any, Optional

from transformation.transformers import DocumentTransformer, create_anonymizer
from utils.logging import ContextLogger
from utils.metrics import SyncMetrics

from .buffer import BatchBuffer
from .config import SyncConfig
from .exceptions import SyncError
from .listener import ChangeFeedListener
from .scanner import BackfillScanner
from .sink import MongoSink
from .store import MongoStore


class SyncMode(str, Enum):
    """Backfill runs once and stops; continuous backfills then follows the feed."""

    BACKFILL = "backfill"
    CONTINUOUS = "continuous"


class PipelineState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


class SyncOrchestrator:
    """
    Coordinates one source -> target anonymized synchronization.

    Collaborators are built from the configuration unless injected.

    Example:
        >>> orchestrator = SyncOrchestrator(SyncConfig.from_env())
        >>> await orchestrator.run()
    """

    def __init__(
        self,
        config: SyncConfig,
        force_reindex: bool = False,
        metrics: Optional[SyncMetrics] = None,
        store: Optional[MongoStore] = None,
        transformer: Optional[DocumentTransformer] = None,
        sink: Optional[MongoSink] = None,
        buffer: Optional[BatchBuffer] = None,
        scanner: Optional[BackfillScanner] = None,
        listener: Optional[ChangeFeedListener] = None,
    ):
        """
        Initialize orchestrator

        Args:
            config: Validated configuration
            force_reindex: Rescan the whole source once and stop (backfill mode)
            metrics: Optional SyncMetrics shared by all components
            store, transformer, sink, buffer, scanner, listener: Optional
                pre-built collaborators
        """
        self.config = config
        self.mode = SyncMode.BACKFILL if force_reindex else SyncMode.CONTINUOUS
        self.metrics = metrics

        self.store = store or MongoStore(
            config.db_uri,
            config.source_collection,
            config.target_collection,
        )
        self.transformer = transformer or create_anonymizer(
            config.anonymizer,
            filler_size=config.filler_size,
            salt=config.hash_salt,
        )
        self.sink = sink or MongoSink(self.store, metrics=metrics)
        self.buffer = buffer or BatchBuffer(
            self.sink.upsert,
            bunch_size=config.bunch_size,
            flush_interval=config.flush_interval,
            metrics=metrics,
            name=config.target_collection,
        )
        if self.buffer.on_flush_error is None:
            self.buffer.on_flush_error = self._fail
        self.scanner = scanner or BackfillScanner(
            self.store,
            page_size=config.scan_page_size,
            pagination=config.scan_pagination,
            metrics=metrics,
        )
        self.listener = listener or ChangeFeedListener(
            self.store,
            functools.partial(self._push_records, origin="feed"),
            resubscribe_attempts=config.feed_resubscribe_attempts,
            metrics=metrics,
        )

        self.log = ContextLogger(
            __name__,
            source=config.source_collection,
            target=config.target_collection,
            mode=self.mode.value,
        )

        self.state = PipelineState.CREATED
        self.error: Optional[BaseException] = None
        self._halt = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._stop_task: Optional[asyncio.Task] = None
        self._set_state(PipelineState.CREATED)

    async def start(self) -> None:
        """
        Connect and launch the producers.

        Raises:
            SyncError: If the orchestrator was already started
            ConnectionFailure: If the store cannot be reached
        """
        if self.state is not PipelineState.CREATED:
            raise SyncError(f"Orchestrator cannot start from state '{self.state.value}'")

        self._set_state(PipelineState.STARTING)
        self.log.info("=" * 60)
        self.log.info(
            f"Starting {self.mode.value} sync: {self.config.source_collection} -> "
            f"{self.config.target_collection}"
        )
        self.log.info(f"Settings: {self.config.describe()}")
        self.log.info("=" * 60)

        await self.store.connect()
        self.buffer.start()

        self._launch("backfill", self._run_backfill())
        if self.mode is SyncMode.CONTINUOUS:
            self._launch("listener", self._run_listener())

        self._set_state(PipelineState.RUNNING)

    async def wait(self) -> None:
        """
        Wait until the pipeline halts.

        Raises:
            Exception: The error that halted the pipeline, if any
        """
        await self._halt.wait()
        if self.error is not None:
            raise self.error

    def request_stop(self) -> None:
        """Ask the pipeline to halt; safe to call from a signal handler."""
        if not self._halt.is_set():
            self.log.info("Stop requested")
        self._halt.set()

    async def stop(self) -> None:
        """
        Cancel producers (ending the feed subscription), drain the buffer,
        then close the store.

        Idempotent; concurrent callers wait for the same shutdown.

        Raises:
            Exception: Whatever the sink raised while draining
        """
        if self._stop_task is None:
            self._stop_task = asyncio.get_running_loop().create_task(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def run(self) -> None:
        """
        Start, wait for the halt and stop.

        On failure a best-effort stop is performed before the error is re-raised.
        """
        try:
            await self.start()
            await self.wait()
        except Exception as e:
            self.log.error(f"Sync failed: {type(e).__name__}: {e}")
            self._fail(e)
            await self._stop_quietly()
            raise
        except asyncio.CancelledError:
            await self._stop_quietly()
            raise

        await self.stop()

    async def _push_records(self, records: list[dict[str, Any]], origin: str) -> None:
        transformed = self.transformer.transform_many(records)
        await self.buffer.push(*transformed, origin=origin)

    async def _run_backfill(self) -> None:
        force_reindex = self.mode is SyncMode.BACKFILL
        async for page in self.scanner.scan(force_reindex=force_reindex):
            await self._push_records(page, origin="backfill")

        if self.mode is SyncMode.BACKFILL:
            self.log.info("Backfill complete, stopping")
            self._halt.set()

    async def _run_listener(self) -> None:
        await self.listener.listen()
        if not self.listener.closed:
            self.log.warning("Change feed ended, stopping")
        self._halt.set()

    def _launch(self, name: str, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"sync-{name}")
        task.add_done_callback(functools.partial(self._on_task_done, name))
        self._tasks.append(task)
        return task

    def _on_task_done(self, name: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.bind(task=name).error(f"Task '{name}' failed: {type(exc).__name__}: {exc}")
            self._fail(exc)

    def _fail(self, exc: BaseException) -> None:
        if self.error is None:
            self.error = exc
        self._halt.set()

    async def _shutdown(self) -> None:
        self._halt.set()
        self._set_state(PipelineState.DRAINING)
        self.log.info(f"Stopping sync ({self.buffer.pending} record(s) buffered)")

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            # Failures were already recorded by _on_task_done
            await asyncio.gather(*self._tasks, return_exceptions=True)

        drain_error = None
        try:
            await self.buffer.stop()
        except Exception as e:
            drain_error = e
            self._fail(e)

        try:
            await self.listener.close()
        finally:
            await self.store.close()
            self._set_state(PipelineState.FAILED if self.error else PipelineState.STOPPED)

        self.log.info(f"Sync {self.state.value}")
        if drain_error is not None:
            raise drain_error

    async def _stop_quietly(self) -> None:
        try:
            await self.stop()
        except Exception as e:
            self.log.error(f"Error during shutdown: {type(e).__name__}: {e}")

    def _set_state(self, state: PipelineState) -> None:
        self.state = state
        if self.metrics:
            self.metrics.set_pipeline_state(self.config.target_collection, state.name)
