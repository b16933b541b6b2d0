from __future__ import annotations

from prometheus_client import CollectorRegistry, Gauge, generate_latest, write_to_textfile

from facility_ingest.core.metrics import InMemoryIngestMetricsCollector


class IngestPrometheusExporter:
    def __init__(self) -> None:
        self._registry = CollectorRegistry()
        self._stage_duration = Gauge(
            "ingest_stage_duration_ms",
            "Ingest stage duration in milliseconds",
            labelnames=("stage",),
            registry=self._registry,
        )
        self._records_total = Gauge(
            "ingest_records_total",
            "Ingested record counts grouped by result",
            labelnames=("result",),
            registry=self._registry,
        )
        self._run_total = Gauge(
            "ingest_run_total",
            "Ingest runs grouped by status",
            labelnames=("status",),
            registry=self._registry,
        )
        self._submitted_items = Gauge(
            "ingest_submitted_items_total",
            "Items written to the store",
            registry=self._registry,
        )
        self._submitted_batches = Gauge(
            "ingest_submitted_batches_total",
            "Batches written to the store",
            registry=self._registry,
        )
        self._throttle_retries = Gauge(
            "ingest_throttle_retries_total",
            "Batch write retries caused by store throttling",
            registry=self._registry,
        )
        self._queue_size = Gauge(
            "ingest_queue_size",
            "Pending writes waiting for commit",
            registry=self._registry,
        )

    def _collect(self, metrics: InMemoryIngestMetricsCollector) -> None:
        latest_by_stage: dict[str, float] = {}
        for item in metrics.stage_durations:
            latest_by_stage[item.stage] = item.duration_ms
        for stage, duration in latest_by_stage.items():
            self._stage_duration.labels(stage=stage).set(duration)
        for result, count in metrics.records_total.items():
            self._records_total.labels(result=result).set(count)
        for status, count in metrics.run_total.items():
            self._run_total.labels(status=status).set(count)
        self._submitted_items.set(metrics.submitted_items)
        self._submitted_batches.set(metrics.submitted_batches)
        self._throttle_retries.set(metrics.throttle_retries)
        self._queue_size.set(metrics.queue_size)

    def render(self, metrics: InMemoryIngestMetricsCollector) -> str:
        self._collect(metrics)
        return generate_latest(self._registry).decode("utf-8")

    def write_textfile(self, metrics: InMemoryIngestMetricsCollector, path: str) -> None:
        self._collect(metrics)
        write_to_textfile(path, self._registry)
