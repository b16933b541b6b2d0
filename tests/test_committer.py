from __future__ import annotations

import math

import pytest

from facility_ingest.core.committer import BatchCommitter, CommitState
from facility_ingest.core.exceptions import (
    CommitAlreadyStartedError,
    CommitFailedError,
    StorePermanentError,
    StoreThrottledError,
)
from facility_ingest.core.metrics import InMemoryIngestMetricsCollector
from facility_ingest.core.models import Address, Facility, PendingWrite
from facility_ingest.core.retry import RetryPolicy
from facility_ingest.core.store import FacilityStore
from facility_ingest.core.write_queue import WriteQueue


def build_facility(facility_id: int) -> Facility:
    return Facility(
        id=facility_id,
        region_code=355030,
        category="HOSPITAL GERAL",
        schedule="N/A",
        name=f"HOSPITAL {facility_id}",
        legal_name="N/A",
        phone="N/A",
        services=("N/A",),
        address=Address(),
    )


def build_queue(size: int) -> WriteQueue:
    queue = WriteQueue()
    for facility_id in range(1, size + 1):
        queue.enqueue(build_facility(facility_id))
    return queue


class RecordingStore(FacilityStore):
    def __init__(self) -> None:
        self.batches: list[list[int]] = []
        self.flushes = 0

    async def ensure_table(self) -> None:
        return None

    async def batch_write(self, writes: list[PendingWrite]) -> int:
        self.batches.append([write.key for write in writes])
        return len(writes)

    async def flush(self) -> None:
        self.flushes += 1


class ThrottlingStore(RecordingStore):
    """Throttles the first ``failures`` calls, leaving ``leftover`` writes unprocessed."""

    def __init__(self, failures: int, leftover: int | None = None) -> None:
        super().__init__()
        self._failures = failures
        self._leftover = leftover

    async def batch_write(self, writes: list[PendingWrite]) -> int:
        self.batches.append([write.key for write in writes])
        if self._failures > 0:
            self._failures -= 1
            unprocessed = writes[-self._leftover :] if self._leftover else list(writes)
            raise StoreThrottledError("throttled", unprocessed=unprocessed)
        return len(writes)


class BrokenStore(RecordingStore):
    async def batch_write(self, writes: list[PendingWrite]) -> int:
        raise StorePermanentError("access denied")


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.mark.asyncio
@pytest.mark.parametrize("size,batch_size", [(0, 25), (1, 25), (25, 25), (26, 25), (61, 25), (7, 3)])
async def test_committer_issues_ceil_batches_and_empties_queue(size: int, batch_size: int) -> None:
    queue = build_queue(size)
    store = RecordingStore()
    committer = BatchCommitter(queue=queue, store=store, batch_size=batch_size, sleep=SleepRecorder())

    result = await committer.commit()

    assert len(store.batches) == math.ceil(size / batch_size)
    assert all(len(batch) <= batch_size for batch in store.batches)
    assert result.submitted == size
    assert result.batches == len(store.batches)
    assert queue.size() == 0
    assert committer.state is CommitState.DONE
    assert store.flushes == 1


@pytest.mark.asyncio
async def test_committer_preserves_queue_order_across_batches() -> None:
    store = RecordingStore()
    committer = BatchCommitter(queue=build_queue(5), store=store, batch_size=2, sleep=SleepRecorder())

    await committer.commit()

    assert store.batches == [[1, 2], [3, 4], [5]]


@pytest.mark.asyncio
async def test_committer_pauses_between_batches_only() -> None:
    sleep = SleepRecorder()
    committer = BatchCommitter(
        queue=build_queue(5),
        store=RecordingStore(),
        batch_size=2,
        inter_batch_delay_seconds=0.15,
        sleep=sleep,
    )

    await committer.commit()

    assert sleep.calls == [0.15, 0.15]


@pytest.mark.asyncio
async def test_committer_retries_throttled_batch_with_increasing_delay() -> None:
    sleep = SleepRecorder()
    store = ThrottlingStore(failures=3)
    metrics = InMemoryIngestMetricsCollector()
    committer = BatchCommitter(
        queue=build_queue(2),
        store=store,
        inter_batch_delay_seconds=0,
        retry_policy=RetryPolicy(max_retries=3, base_delay_seconds=0.1, max_delay_seconds=10.0),
        metrics=metrics,
        sleep=sleep,
    )

    result = await committer.commit()

    assert sleep.calls == [0.1, 0.2, 0.4]
    assert all(later > earlier for earlier, later in zip(sleep.calls, sleep.calls[1:]))
    assert store.batches == [[1, 2]] * 4
    assert result.submitted == 2
    assert result.retries == 3
    assert metrics.throttle_retries == 3
    assert committer.state is CommitState.DONE


@pytest.mark.asyncio
async def test_committer_resubmits_only_unprocessed_writes() -> None:
    store = ThrottlingStore(failures=1, leftover=1)
    committer = BatchCommitter(
        queue=build_queue(3),
        store=store,
        retry_policy=RetryPolicy(max_retries=2, base_delay_seconds=0.01),
        sleep=SleepRecorder(),
    )

    result = await committer.commit()

    assert store.batches == [[1, 2, 3], [3]]
    assert result.submitted == 3


@pytest.mark.asyncio
async def test_committer_fails_after_exhausting_retries_without_dropping_batch() -> None:
    queue = build_queue(30)
    store = ThrottlingStore(failures=100)
    committer = BatchCommitter(
        queue=queue,
        store=store,
        retry_policy=RetryPolicy(max_retries=2, base_delay_seconds=0.01),
        sleep=SleepRecorder(),
    )

    with pytest.raises(CommitFailedError) as exc_info:
        await committer.commit()

    assert len(store.batches) == 3
    assert exc_info.value.submitted == 0
    assert committer.state is CommitState.FAILED
    assert queue.size() == 5
    assert store.flushes == 0


@pytest.mark.asyncio
async def test_committer_propagates_permanent_errors_without_retry() -> None:
    sleep = SleepRecorder()
    store = BrokenStore()
    committer = BatchCommitter(queue=build_queue(3), store=store, sleep=sleep)

    with pytest.raises(StorePermanentError):
        await committer.commit()

    assert sleep.calls == []
    assert store.flushes == 0
    assert committer.state is CommitState.FAILED


@pytest.mark.asyncio
async def test_committer_refuses_second_commit() -> None:
    committer = BatchCommitter(queue=build_queue(1), store=RecordingStore(), sleep=SleepRecorder())
    await committer.commit()

    with pytest.raises(CommitAlreadyStartedError):
        await committer.commit()


@pytest.mark.asyncio
async def test_committer_records_batch_metrics() -> None:
    metrics = InMemoryIngestMetricsCollector()
    committer = BatchCommitter(
        queue=build_queue(30),
        store=RecordingStore(),
        metrics=metrics,
        sleep=SleepRecorder(),
    )

    await committer.commit()

    assert metrics.submitted_batches == 2
    assert metrics.submitted_items == 30
    assert metrics.queue_size == 0


def test_committer_rejects_batch_size_above_store_limit() -> None:
    with pytest.raises(ValueError):
        BatchCommitter(queue=WriteQueue(), store=RecordingStore(), batch_size=26)


class FailingFlushStore(RecordingStore):
    async def flush(self) -> None:
        raise StorePermanentError("disk full")


@pytest.mark.asyncio
async def test_committer_fails_when_store_cannot_flush() -> None:
    store = FailingFlushStore()
    committer = BatchCommitter(queue=build_queue(2), store=store, sleep=SleepRecorder())

    with pytest.raises(StorePermanentError):
        await committer.commit()

    assert store.batches == [[1, 2]]
    assert committer.state is CommitState.FAILED
