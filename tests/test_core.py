"""
Tests for the Batcher class in fetchbrain.core.
"""

import asyncio
import typing as t

import pytest
import structlog

from fetchbrain.context import RequestContext, RequestScope, get_current_scope
from fetchbrain.core import Batcher
from fetchbrain.models import KnowledgeResult


class RecordingExecutor:
    """Executor recording each batch and answering every URL as known."""

    def __init__(self, *, gate: asyncio.Event | None = None, error: Exception | None = None):
        self.batches: list[list[str]] = []
        self._gate = gate
        self._error = error

    async def __call__(self, urls: list[str]) -> dict[str, KnowledgeResult]:
        self.batches.append(list(urls))
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        return {url: KnowledgeResult(known=True, data={"url": url}, confidence=0.9) for url in urls}


async def _gather_queries(batcher: Batcher, urls: list[str]) -> list[KnowledgeResult]:
    return await asyncio.gather(*(batcher.query(url) for url in urls))


@pytest.mark.asyncio
async def test_queries_within_window_share_one_executor_call() -> None:
    """Test that fewer than max_size queries are flushed together in arrival order."""
    executor = RecordingExecutor()
    batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=0.01)
    urls = [f"https://example.com/{i}" for i in range(5)]

    results = await _gather_queries(batcher, urls)

    assert executor.batches == [urls]
    for url, result in zip(urls, results):
        assert result.known is True
        assert result.data == {"url": url}


@pytest.mark.asyncio
async def test_full_queue_flushes_in_max_size_chunks() -> None:
    """Test that enqueuing past max_size produces one executor call per chunk."""
    executor = RecordingExecutor()
    batcher = Batcher(executor=executor, max_size=3, max_wait_seconds=10.0)
    urls = [f"https://example.com/{i}" for i in range(6)]

    results = await asyncio.wait_for(_gather_queries(batcher, urls), timeout=1.0)

    assert executor.batches == [urls[:3], urls[3:]]
    assert all(result.known for result in results)


@pytest.mark.asyncio
async def test_overflow_is_flushed_after_the_window() -> None:
    """Test that a partial last chunk is flushed by the timer."""
    executor = RecordingExecutor()
    batcher = Batcher(executor=executor, max_size=3, max_wait_seconds=0.01)
    urls = [f"https://example.com/{i}" for i in range(7)]

    results = await _gather_queries(batcher, urls)

    assert [len(batch) for batch in executor.batches] == [3, 3, 1]
    assert [url for batch in executor.batches for url in batch] == urls
    assert len(results) == 7


@pytest.mark.asyncio
async def test_url_missing_from_response_resolves_unknown() -> None:
    """Test that URLs absent from the executor response are unknown, not errors."""

    async def executor(urls: list[str]) -> dict[str, KnowledgeResult]:
        return {urls[0]: KnowledgeResult(known=True, data={"a": 1})}

    batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=0.01)

    first, second = await _gather_queries(batcher, ["https://a.test", "https://b.test"])

    assert first.known is True
    assert second.known is False
    assert second.fallback is False


@pytest.mark.asyncio
async def test_executor_failure_rejects_every_caller_of_the_batch() -> None:
    """Test that a failing executor call rejects the whole batch with the same error."""
    error = RuntimeError("backend down")
    executor = RecordingExecutor(error=error)
    batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=0.01)

    results = await asyncio.gather(
        batcher.query("https://a.test"),
        batcher.query("https://b.test"),
        return_exceptions=True,
    )

    assert results == [error, error]
    assert len(executor.batches) == 1


@pytest.mark.asyncio
async def test_queue_size_tracks_pending_queries() -> None:
    """Test that queue_size reports queries waiting for a flush."""
    executor = RecordingExecutor()
    batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=0.05)

    tasks = [asyncio.create_task(batcher.query(f"https://example.com/{i}")) for i in range(4)]
    await asyncio.sleep(0)

    assert batcher.queue_size() == 4

    await asyncio.gather(*tasks)
    assert batcher.queue_size() == 0


@pytest.mark.asyncio
async def test_clear_resolves_queued_callers_with_fallback() -> None:
    """Test that clear never leaves queued callers hanging."""
    executor = RecordingExecutor()
    batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=10.0)

    tasks = [asyncio.create_task(batcher.query(f"https://example.com/{i}")) for i in range(3)]
    await asyncio.sleep(0)
    batcher.clear()
    results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1.0)

    assert all(result == KnowledgeResult(known=False, fallback=True) for result in results)
    assert executor.batches == []
    assert batcher.queue_size() == 0


@pytest.mark.asyncio
async def test_clear_during_outstanding_flush_only_affects_queued_callers() -> None:
    """Test that clear resolves still-queued callers without waiting for the executor."""
    gate = asyncio.Event()
    executor = RecordingExecutor(gate=gate)
    batcher = Batcher(executor=executor, max_size=2, max_wait_seconds=10.0)

    flushed = [asyncio.create_task(batcher.query(f"https://flushed.test/{i}")) for i in range(2)]
    await asyncio.sleep(0)
    queued = asyncio.create_task(batcher.query("https://queued.test"))
    await asyncio.sleep(0)

    assert executor.batches == [["https://flushed.test/0", "https://flushed.test/1"]]
    assert batcher.queue_size() == 1

    batcher.clear()
    queued_result = await asyncio.wait_for(queued, timeout=1.0)
    assert queued_result.fallback is True
    assert not any(task.done() for task in flushed)

    gate.set()
    flushed_results = await asyncio.gather(*flushed)
    assert all(result.known for result in flushed_results)


@pytest.mark.asyncio
async def test_queries_during_flush_join_the_next_batch() -> None:
    """Test that queries arriving while the executor runs are not added to that flush."""
    gate = asyncio.Event()
    executor = RecordingExecutor(gate=gate)
    batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=0.01)

    first = asyncio.create_task(batcher.query("https://first.test"))
    while not executor.batches:
        await asyncio.sleep(0.005)
    second = asyncio.create_task(batcher.query("https://second.test"))
    gate.set()

    await asyncio.gather(first, second)

    assert executor.batches == [["https://first.test"], ["https://second.test"]]


@pytest.mark.asyncio
async def test_close_waits_for_in_flight_batches() -> None:
    """Test that close clears the queue and lets dispatched batches settle."""
    calls: list[t.Any] = []

    async def executor(urls: list[str]) -> dict[str, KnowledgeResult]:
        await asyncio.sleep(0.01)
        calls.append(urls)
        return {}

    batcher = Batcher(executor=executor, max_size=1, max_wait_seconds=10.0)
    task = asyncio.create_task(batcher.query("https://example.com"))
    await asyncio.sleep(0)

    await batcher.close()

    assert calls == [["https://example.com"]]
    assert (await task).known is False


def test_rejects_non_positive_max_size() -> None:
    """Test that a batcher cannot be built with an empty batch size."""

    async def executor(urls: list[str]) -> dict[str, KnowledgeResult]:
        return {}

    with pytest.raises(ValueError):
        Batcher(executor=executor, max_size=0)


@pytest.mark.asyncio
async def test_flush_runs_outside_any_caller_context(client, reset_context) -> None:
    """Test that the shared batch sees neither a request scope nor per-request log bindings."""
    seen: list[tuple[t.Any, dict[str, t.Any]]] = []

    async def executor(urls: list[str]) -> dict[str, KnowledgeResult]:
        seen.append((get_current_scope(), structlog.contextvars.get_contextvars()))
        return {}

    async def query_as_request(batcher: Batcher, url: str) -> KnowledgeResult:
        scope = RequestScope(url=url, client=client, learning_enabled=True, already_known=False)
        with structlog.contextvars.bound_contextvars(url=url):
            async with RequestContext(scope=scope):
                return await batcher.query(url)

    window_batcher = Batcher(executor=executor, max_size=10, max_wait_seconds=0.01)
    await asyncio.gather(
        query_as_request(window_batcher, "https://a.test"),
        query_as_request(window_batcher, "https://b.test"),
    )
    size_batcher = Batcher(executor=executor, max_size=2, max_wait_seconds=10.0)
    await asyncio.gather(
        query_as_request(size_batcher, "https://a.test"),
        query_as_request(size_batcher, "https://b.test"),
    )

    assert seen == [(None, {}), (None, {})]
