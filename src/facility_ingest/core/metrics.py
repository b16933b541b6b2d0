from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass


@dataclass(frozen=True)
class StageDuration:
    stage: str
    duration_ms: float


class InMemoryIngestMetricsCollector:
    def __init__(self) -> None:
        self.stage_durations: list[StageDuration] = []
        self.records_total: dict[str, int] = defaultdict(int)
        self.run_total: dict[str, int] = defaultdict(int)
        self.submitted_items = 0
        self.submitted_batches = 0
        self.throttle_retries = 0
        self.queue_size = 0

    def observe_stage_duration(self, stage: str, duration_ms: float) -> None:
        self.stage_durations.append(StageDuration(stage=stage, duration_ms=duration_ms))

    def add_records(self, result: str, count: int = 1) -> None:
        if count <= 0:
            return
        self.records_total[result] += count

    def set_queue_size(self, size: int) -> None:
        self.queue_size = size

    def observe_batch(self, size: int) -> None:
        self.submitted_batches += 1
        self.submitted_items += size

    def increment_throttle_retry(self) -> None:
        self.throttle_retries += 1

    def increment_run(self, status: str) -> None:
        self.run_total[status] += 1
