"""
Core engine containing the URL query batching mechanism.
Independent callers enqueue single-URL queries; the queue is flushed as one bulk
executor call when it fills up or when the batch window elapses.
The batcher knows nothing about circuit state: callers decide whether to use it.
Flushes run in an empty context: a batch serves many requests, so it carries
neither the request scope nor the log bindings of the caller that triggered it.
"""

from __future__ import annotations

import asyncio
import contextvars
import typing as t
from dataclasses import dataclass

import structlog

from fetchbrain.models import KnowledgeResult

log = structlog.get_logger(__name__)

BatchExecutor = t.Callable[[list[str]], t.Awaitable[t.Mapping[str, KnowledgeResult]]]


@dataclass
class _PendingQuery:
    """A caller waiting for its URL to be part of a flushed batch."""

    url: str
    future: asyncio.Future[KnowledgeResult]


class Batcher:
    """
    Aggregate concurrent URL queries into bulk executor calls.

    A batch is flushed when either:
    - The queue reaches ``max_size`` (synchronously, from the enqueueing call), OR
    - ``max_wait_seconds`` elapse after the first unflushed query was enqueued

    Notes
    -----
    A flush takes at most ``max_size`` queries from the front of the queue.
    Queries enqueued while an executor call is outstanding wait for the next flush.
    Executor failures reject every caller of that batch and are not retried.
    """

    def __init__(
        self,
        executor: BatchExecutor,
        max_size: int = 50,
        max_wait_seconds: float = 0.05,
    ):
        """
        Initialize the batcher.

        Parameters
        ----------
        executor : BatchExecutor
            Coroutine function receiving the batch URLs in enqueue order and
            returning results keyed by URL.
        max_size : int
            Flush as soon as this many queries are queued.
        max_wait_seconds : float
            Flush this many seconds after the first unflushed query, even if the
            size threshold is not reached.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._executor = executor
        self._max_size = max_size
        self._max_wait_seconds = max_wait_seconds

        self._queue: list[_PendingQuery] = []
        self._flush_handle: asyncio.TimerHandle | None = None
        self._batch_tasks: set[asyncio.Task[None]] = set()

        log.debug(
            event="Initialized Batcher",
            max_size=max_size,
            max_wait_seconds=max_wait_seconds,
        )

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def max_wait_seconds(self) -> float:
        return self._max_wait_seconds

    def queue_size(self) -> int:
        """Number of queries waiting for a flush."""
        return len(self._queue)

    async def query(self, url: str) -> KnowledgeResult:
        """
        Queue a URL for the next batch and wait for its result.

        Parameters
        ----------
        url : str
            URL to look up.

        Returns
        -------
        KnowledgeResult
            Result for ``url``; ``known=False`` when the executor response omits it.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[KnowledgeResult] = loop.create_future()
        self._queue.append(_PendingQuery(url=url, future=future))
        log.debug(event="Queued URL for batch", url=url, pending_count=len(self._queue))

        if len(self._queue) >= self._max_size:
            log.debug(event="Batch size reached", max_size=self._max_size)
            self._flush()
        else:
            self._schedule_flush(loop=loop)

        return await future

    def _schedule_flush(self, *, loop: asyncio.AbstractEventLoop) -> None:
        # Queries arriving within the window share the already armed timer.
        if self._flush_handle is not None:
            return
        self._flush_handle = loop.call_later(
            self._max_wait_seconds, self._on_window_elapsed, context=contextvars.Context()
        )

    def _cancel_scheduled_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _on_window_elapsed(self) -> None:
        self._flush_handle = None
        log.debug(event="Batch window elapsed", pending_count=len(self._queue))
        self._flush()

    def _flush(self) -> None:
        """Splice the next batch off the queue and dispatch it to the executor."""
        self._cancel_scheduled_flush()
        if not self._queue:
            return

        batch = self._queue[: self._max_size]
        del self._queue[: self._max_size]

        task = asyncio.get_running_loop().create_task(
            self._run_batch(batch=batch),
            name=f"fetchbrain_batch_{len(batch)}",
            context=contextvars.Context(),
        )
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    async def _run_batch(self, *, batch: list[_PendingQuery]) -> None:
        urls = [pending.url for pending in batch]
        log.debug(event="Flushing batch", url_count=len(urls))
        try:
            results = await self._executor(urls)
        except Exception as error:
            log.debug(event="Batch executor failed", url_count=len(urls), error=str(object=error))
            for pending in batch:
                if not pending.future.done():
                    pending.future.set_exception(error)
        else:
            for pending in batch:
                if not pending.future.done():
                    pending.future.set_result(results.get(pending.url) or KnowledgeResult.unknown())

        if self._queue:
            self._schedule_flush(loop=asyncio.get_running_loop())

    def clear(self) -> None:
        """
        Drop the pending timer and resolve every queued caller with a fallback result.

        Batches already handed to the executor are left alone; their callers are
        resolved when the executor returns.
        """
        self._cancel_scheduled_flush()
        queue, self._queue = self._queue, []
        for pending in queue:
            if not pending.future.done():
                pending.future.set_result(KnowledgeResult.degraded())
        if queue:
            log.debug(event="Cleared batch queue", cleared_count=len(queue))

    async def close(self) -> None:
        """
        Clear the queue and wait for in-flight batches to settle.
        """
        self.clear()
        if self._batch_tasks:
            await asyncio.gather(*self._batch_tasks, return_exceptions=True)
        log.debug(event="Batcher closed")
