"""
In-memory event buffer with size- and time-triggered batched persistence.

Events accumulate until either ``max_size`` is reached or ``flush_interval``
seconds pass since the first unflushed event arrived; then the whole buffer
is drained in one bulk write. Only one flush runs at a time. A failed write
puts the batch back at the front of the buffer and arms a one-shot retry.

The buffer is owned by the API process (created in the app lifespan) and
handed to request handlers as a dependency.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from db.store import SqlAlchemyStore

logger = structlog.get_logger()

EventWriter = Callable[[list[dict]], Awaitable[int]]


class EventBuffer:
    def __init__(
        self,
        writer: EventWriter,
        max_size: int = 100,
        flush_interval: float = 5.0,
        retry_delay: float = 5.0,
    ):
        self._writer = writer
        self.max_size = max_size
        self.flush_interval = flush_interval
        self.retry_delay = retry_delay

        self._items: list[dict] = []
        self._lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None
        self._retry_timer: asyncio.Task | None = None
        self._pending_flush: asyncio.Task | None = None

        self.flushed_events = 0
        self.failed_flushes = 0

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def is_flushing(self) -> bool:
        return self._lock.locked()

    # ── Intake ──────────────────────────────────────────────────────────

    def add(self, event: dict) -> None:
        self.add_batch([event])

    def add_batch(self, events: list[dict]) -> None:
        if not events:
            return
        self._items.extend(events)

        if len(self._items) >= self.max_size:
            self._schedule_flush()
        elif self._timer is None:
            self._timer = asyncio.create_task(self._flush_after(self.flush_interval, retry=False))

    def _schedule_flush(self) -> None:
        if self._pending_flush is not None and not self._pending_flush.done():
            return
        self._pending_flush = asyncio.create_task(self.flush())

    async def _flush_after(self, delay: float, retry: bool) -> None:
        await asyncio.sleep(delay)
        if retry:
            self._retry_timer = None
        else:
            self._timer = None
        await self.flush()

    def _cancel_timers(self) -> None:
        for task in (self._timer, self._retry_timer):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._timer = None
        self._retry_timer = None

    # ── Flush ───────────────────────────────────────────────────────────

    async def flush(self) -> int:
        """Drain the buffer into one bulk write. Returns events written.

        A call that arrives while another flush is in flight returns 0
        without waiting; the next size or timer trigger picks up whatever
        was added in the meantime.
        """
        if self._lock.locked() or not self._items:
            return 0

        async with self._lock:
            self._cancel_timers()
            batch = self._items
            self._items = []

            try:
                await self._writer(batch)
            except Exception as exc:
                self._items = batch + self._items
                self.failed_flushes += 1
                logger.error(
                    "buffer.flush_failed",
                    events=len(batch),
                    buffered=len(self._items),
                    retry_in=self.retry_delay,
                    error=str(exc),
                    exc_info=True,
                )
                self._retry_timer = asyncio.create_task(self._flush_after(self.retry_delay, retry=True))
                return 0

            self.flushed_events += len(batch)
            logger.info("buffer.flushed", events=len(batch), remaining=len(self._items))

        if self._items and self._timer is None and self._retry_timer is None:
            self._timer = asyncio.create_task(self._flush_after(self.flush_interval, retry=False))
        return len(batch)

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def close(self) -> None:
        """Cancel timers and make a final flush attempt."""
        if self._pending_flush is not None and not self._pending_flush.done():
            await self._pending_flush
        self._cancel_timers()
        await self.flush()
        self._cancel_timers()
        if self._items:
            logger.warning("buffer.closed_with_backlog", events=len(self._items))

    def clear(self) -> None:
        self._cancel_timers()
        self._items = []


def session_writer(session_factory) -> EventWriter:
    """Bulk-insert events through a fresh DB session per flush."""

    async def write(rows: list[dict]) -> int:
        async with session_factory() as session:
            store = SqlAlchemyStore(session)
            written = await store.insert_events(rows)
            await store.commit()
            return written

    return write
