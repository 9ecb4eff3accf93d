"""
Batch buffer with size and idle-timer flush triggers.

Records pushed by the backfill scanner and the change feed are collected
and handed to the sink in slices of at most ``bunch_size`` records:

- size trigger: a push that brings the buffer to ``bunch_size`` flushes
  full slices until fewer than ``bunch_size`` records remain
- timer trigger: when the flush interval elapses, at least one slice is
  flushed (if any records are pending), then full slices as above
- drain: stop() flushes until the buffer is empty

All flushes are serialized by one lock, and each runs in a task owned by
the buffer, so cancelling a producer never interrupts a sink call midway.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from utils.metrics import SyncMetrics

from .exceptions import BufferClosedError, ConfigurationError

logger = logging.getLogger(__name__)

Record = dict[str, Any]
Sink = Callable[[list[Record]], Awaitable[None]]


class BatchBuffer:
    """
    Accumulates records and flushes them to an async sink in bounded slices.

    Example:
        >>> buffer = BatchBuffer(sink.upsert, bunch_size=1000, flush_interval=1.0)
        >>> buffer.start()
        >>> await buffer.push({"_id": 1, "firstName": "QwErTyUi"})
        >>> await buffer.stop()
    """

    def __init__(
        self,
        sink: Sink,
        bunch_size: int = 1000,
        flush_interval: float = 1.0,
        on_flush_error: Optional[Callable[[BaseException], None]] = None,
        metrics: Optional[SyncMetrics] = None,
        name: str = "buffer",
    ):
        """
        Initialize batch buffer

        Args:
            sink: Coroutine function receiving one batch
            bunch_size: Maximum records per sink call
            flush_interval: Idle interval in seconds before a timer flush
            on_flush_error: Called with the exception of a failed timer flush
            metrics: Optional SyncMetrics
            name: Label used in logs and metrics (the target collection)

        Raises:
            ConfigurationError: If bunch_size or flush_interval is not positive
        """
        if bunch_size <= 0:
            raise ConfigurationError(f"bunch_size must be positive, got {bunch_size}")
        if flush_interval <= 0:
            raise ConfigurationError(f"flush_interval must be positive, got {flush_interval}")

        self.sink = sink
        self.bunch_size = bunch_size
        self.flush_interval = flush_interval
        self.on_flush_error = on_flush_error
        self.metrics = metrics
        self.name = name

        self._records: list[Record] = []
        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        # Bumped whenever the timer is cancelled or re-armed; stale timer flushes are skipped
        self._timer_generation = 0
        self._flush_tasks: set[asyncio.Task] = set()
        self._closing = False
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of records not yet handed to the sink."""
        return len(self._records)

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """
        Arm the idle timer. Must be called from a running event loop.

        Raises:
            BufferClosedError: If the buffer was stopped
        """
        if self._closing:
            raise BufferClosedError(f"Buffer '{self.name}' is closed")
        self._arm_timer()
        logger.debug(
            f"Buffer '{self.name}' started (bunch_size={self.bunch_size}, "
            f"flush_interval={self.flush_interval}s)"
        )

    async def push(self, *records: Record, origin: str = "unknown") -> None:
        """
        Append records and flush full slices.

        Args:
            *records: Records to buffer, already anonymized
            origin: Producer label for metrics (backfill, feed)

        Raises:
            BufferClosedError: If the buffer is stopping or stopped
            Exception: Whatever the sink raised for a size-triggered flush
        """
        if self._closing:
            raise BufferClosedError(f"Buffer '{self.name}' is closed")
        if not records:
            return

        self._records.extend(records)
        self._update_gauge()
        if self.metrics:
            self.metrics.record_push(self.name, origin, len(records))

        if len(self._records) >= self.bunch_size:
            # The idle interval restarts from the end of this flush
            self._cancel_timer()
            await self._run_flush("size")

    async def stop(self) -> None:
        """
        Cancel the timer, wait for in-flight flushes and drain the buffer.

        Raises:
            Exception: Whatever the sink raised while draining; the
                undelivered records stay counted in ``pending``
        """
        if self._closing:
            logger.debug(f"Buffer '{self.name}' already stopped")
            return

        self._closing = True
        self._cancel_timer()

        if self._flush_tasks:
            # Failures of these flushes were reported to their owners
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)

        try:
            await self._run_flush("drain")
        except Exception:
            logger.error(f"Buffer '{self.name}' failed to drain; {self.pending} record(s) not written")
            raise
        finally:
            self._closed = True

        logger.info(f"Buffer '{self.name}' drained and closed")

    def _arm_timer(self) -> None:
        self._cancel_timer()
        if self._closing:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.flush_interval, self._on_timer)

    def _cancel_timer(self) -> None:
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._closing:
            return
        self._schedule_flush("timer", self._timer_generation)

    def _schedule_flush(self, trigger: str, generation: Optional[int] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._flush(trigger, generation))
        self._flush_tasks.add(task)
        task.add_done_callback(functools.partial(self._on_flush_done, trigger))
        return task

    async def _run_flush(self, trigger: str) -> None:
        await asyncio.shield(self._schedule_flush(trigger))

    def _on_flush_done(self, trigger: str, task: asyncio.Task) -> None:
        self._flush_tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is None or trigger != "timer":
            return

        if self.on_flush_error is not None:
            self.on_flush_error(exc)
        else:
            logger.error(f"Timer flush of buffer '{self.name}' failed: {type(exc).__name__}: {exc}")

    def _should_flush(self, trigger: str, flushed: int) -> bool:
        if not self._records:
            return False
        if trigger == "drain":
            return True
        if trigger == "timer" and flushed == 0:
            return True
        return len(self._records) >= self.bunch_size

    async def _flush(self, trigger: str, generation: Optional[int] = None) -> None:
        async with self._lock:
            if trigger == "timer" and generation != self._timer_generation:
                logger.debug(f"Skipping stale timer flush of '{self.name}'")
                return

            flushed = 0
            while self._should_flush(trigger, flushed):
                batch = self._records[: self.bunch_size]
                del self._records[: len(batch)]

                try:
                    await self.sink(batch)
                except BaseException:
                    # Put the slice back at the head to keep ordering
                    self._records[0:0] = batch
                    self._update_gauge()
                    if trigger == "size":
                        self._arm_timer()
                    raise

                flushed += 1
                self._update_gauge()
                if self.metrics:
                    self.metrics.record_flush(self.name, trigger)
                logger.debug(f"Flushed {len(batch)} record(s) from '{self.name}' ({trigger})")

            # Idle interval is measured from the end of the last flush
            self._arm_timer()

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_buffer_size(self.name, len(self._records))
