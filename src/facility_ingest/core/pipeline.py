from __future__ import annotations

from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, TypeVar

from facility_ingest.core.acceptance import CategoryFilter
from facility_ingest.core.committer import BatchCommitter, CommitResult
from facility_ingest.core.exceptions import InvalidRecordError
from facility_ingest.core.metrics import InMemoryIngestMetricsCollector
from facility_ingest.core.normalizer import facility_from_row
from facility_ingest.core.progress import ProgressReporter, ProgressSnapshot
from facility_ingest.core.retry import RetryPolicy
from facility_ingest.core.store import FacilityStore
from facility_ingest.core.write_queue import WriteQueue

R = TypeVar("R")
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    queued: int
    ignored: int
    invalid: int
    submitted: int
    batches: int


class IngestPipeline:
    def __init__(
        self,
        source: AsyncIterable[Mapping[str, Any]],
        store: FacilityStore,
        category_filter: CategoryFilter | None = None,
        batch_size: int = 25,
        inter_batch_delay_seconds: float = 0.15,
        retry_policy: RetryPolicy | None = None,
        progress_interval_seconds: float = 5.0,
        progress_log_every: int = 500,
        metrics: InMemoryIngestMetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._filter = category_filter or CategoryFilter()
        self._metrics = metrics
        self._queue = WriteQueue()
        self._invalid = 0
        self._progress = ProgressReporter(
            snapshot=self._snapshot,
            interval_seconds=progress_interval_seconds,
            on_report=self._on_progress,
        )
        committer_options: dict[str, Any] = {}
        if sleep is not None:
            committer_options["sleep"] = sleep
        self._committer = BatchCommitter(
            queue=self._queue,
            store=store,
            batch_size=batch_size,
            inter_batch_delay_seconds=inter_batch_delay_seconds,
            retry_policy=retry_policy,
            progress_log_every=progress_log_every,
            metrics=metrics,
            **committer_options,
        )

    @property
    def queue(self) -> WriteQueue:
        return self._queue

    @property
    def committer(self) -> BatchCommitter:
        return self._committer

    async def run(self) -> IngestResult:
        total_started = perf_counter()
        await self._store.ensure_table()
        logger.info("parse_started")
        try:
            await self._time_async("parse", self._accumulate)
        finally:
            self._progress.stop()
        logger.info(
            "parse_completed",
            extra={"queued": self._queue.size(), "ignored": self._queue.ignored, "invalid": self._invalid},
        )
        queued = self._queue.size()
        commit_result: CommitResult = await self._time_async("commit", self._committer.commit)
        self._observe("ingest_total", (perf_counter() - total_started) * 1000.0)
        return IngestResult(
            queued=queued,
            ignored=self._queue.ignored,
            invalid=self._invalid,
            submitted=commit_result.submitted,
            batches=commit_result.batches,
        )

    async def _accumulate(self) -> None:
        async for row in self._source:
            self.add_row(row)

    def add_row(self, row: Mapping[str, Any]) -> None:
        try:
            facility = facility_from_row(row)
        except InvalidRecordError as exc:
            self._invalid += 1
            self._count("invalid")
            logger.warning("record_invalid", extra={"reason": str(exc)})
            return
        if self._filter.accepts(facility.category):
            self._queue.enqueue(facility)
            self._count("accepted")
        else:
            self._queue.record_ignored()
            self._count("ignored")
        self._progress.notify()

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(queued=self._queue.size(), ignored=self._queue.ignored)

    def _on_progress(self, snapshot: ProgressSnapshot) -> None:
        if self._metrics:
            self._metrics.set_queue_size(snapshot.queued)

    def _count(self, result: str) -> None:
        if self._metrics:
            self._metrics.add_records(result)

    async def _time_async(self, stage: str, action: Callable[[], Awaitable[R]]) -> R:
        started = perf_counter()
        result = await action()
        self._observe(stage, (perf_counter() - started) * 1000.0)
        return result

    def _observe(self, stage: str, duration_ms: float) -> None:
        if self._metrics:
            self._metrics.observe_stage_duration(stage, duration_ms)
