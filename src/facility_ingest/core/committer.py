from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from facility_ingest.core.exceptions import CommitAlreadyStartedError, CommitFailedError, StoreThrottledError
from facility_ingest.core.metrics import InMemoryIngestMetricsCollector
from facility_ingest.core.models import PendingWrite
from facility_ingest.core.retry import RetryPolicy, with_exponential_backoff
from facility_ingest.core.store import FacilityStore
from facility_ingest.core.write_queue import WriteQueue

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 25


class CommitState(str, enum.Enum):
    IDLE = "idle"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class CommitResult:
    submitted: int
    batches: int
    retries: int


class BatchCommitter:
    """Drains a frozen ``WriteQueue`` into the store one batch at a time.

    Batches are sent strictly in sequence, with ``inter_batch_delay_seconds``
    between them to keep the aggregate write rate under the table's provisioned
    capacity. Throttled batches are retried with exponential backoff; only the
    writes the store reports as unprocessed are resubmitted. Writes committed
    before a failure stay committed.
    """

    def __init__(
        self,
        queue: WriteQueue,
        store: FacilityStore,
        batch_size: int = MAX_BATCH_SIZE,
        inter_batch_delay_seconds: float = 0.15,
        retry_policy: RetryPolicy | None = None,
        progress_log_every: int = 500,
        metrics: InMemoryIngestMetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size <= 0 or batch_size > MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if inter_batch_delay_seconds < 0:
            raise ValueError("inter_batch_delay_seconds must be >= 0")
        self._queue = queue
        self._store = store
        self._batch_size = batch_size
        self._inter_batch_delay_seconds = inter_batch_delay_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._progress_log_every = progress_log_every
        self._metrics = metrics
        self._sleep = sleep
        self._state = CommitState.IDLE
        self._submitted = 0
        self._batches = 0
        self._retries = 0
        self._last_logged = 0

    @property
    def state(self) -> CommitState:
        return self._state

    @property
    def submitted(self) -> int:
        return self._submitted

    async def commit(self) -> CommitResult:
        if self._state is not CommitState.IDLE:
            raise CommitAlreadyStartedError(f"commit already started: state={self._state.value}")
        self._state = CommitState.COMMITTING
        self._queue.freeze()
        logger.info(
            "commit_started",
            extra={"queued": self._queue.size(), "ignored": self._queue.ignored, "batch_size": self._batch_size},
        )
        try:
            while True:
                batch = self._queue.drain(self._batch_size)
                if not batch:
                    break
                await self._submit(batch)
                if self._queue.size() > 0 and self._inter_batch_delay_seconds > 0:
                    await self._sleep(self._inter_batch_delay_seconds)
            await self._store.flush()
        except CommitFailedError as exc:
            self._state = CommitState.FAILED
            exc.submitted = self._submitted
            logger.error("commit_failed", extra={"submitted": self._submitted, "reason": "throttled"})
            raise
        except Exception:
            self._state = CommitState.FAILED
            logger.error("commit_failed", extra={"submitted": self._submitted, "reason": "store_error"})
            raise
        self._state = CommitState.DONE
        logger.info("commit_completed", extra={"submitted": self._submitted, "batches": self._batches})
        return CommitResult(submitted=self._submitted, batches=self._batches, retries=self._retries)

    async def _submit(self, batch: list[PendingWrite]) -> None:
        pending = batch

        async def _write_once() -> int:
            nonlocal pending
            try:
                return await self._store.batch_write(pending)
            except StoreThrottledError as exc:
                if exc.unprocessed is not None:
                    pending = exc.unprocessed
                raise

        await with_exponential_backoff(
            _write_once,
            policy=self._retry_policy,
            should_retry=lambda exc: isinstance(exc, StoreThrottledError),
            on_retry=self._on_retry,
            sleep=self._sleep,
        )
        self._batches += 1
        self._submitted += len(batch)
        self._observe_batch(len(batch))

    def _on_retry(self, attempt: int, delay: float, exc: Exception) -> None:
        self._retries += 1
        if self._metrics:
            self._metrics.increment_throttle_retry()
        logger.warning(
            "batch_write_throttled",
            extra={"attempt": attempt, "retry_delay_seconds": delay, "error": str(exc)},
        )

    def _observe_batch(self, size: int) -> None:
        if self._metrics:
            self._metrics.observe_batch(size)
            self._metrics.set_queue_size(self._queue.size())
        if self._submitted - self._last_logged >= self._progress_log_every:
            self._last_logged = self._submitted
            logger.info("commit_progress", extra={"submitted": self._submitted, "remaining": self._queue.size()})
        else:
            logger.debug("batch_written", extra={"size": size, "submitted": self._submitted})
