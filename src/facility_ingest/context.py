from __future__ import annotations

from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass
from typing import Any

from facility_ingest.config import IngestSettings
from facility_ingest.core.acceptance import CategoryFilter
from facility_ingest.core.metrics import InMemoryIngestMetricsCollector
from facility_ingest.core.pipeline import IngestPipeline, IngestResult
from facility_ingest.core.retry import RetryPolicy
from facility_ingest.core.store import FacilityStore
from facility_ingest.stores.dynamodb import DynamoFacilityStore
from facility_ingest.stores.jsonl import JsonlFacilityStore


@dataclass(frozen=True)
class IngestContext:
    """Everything one ingest run shares, built once per process."""

    settings: IngestSettings
    store: FacilityStore
    metrics: InMemoryIngestMetricsCollector
    category_filter: CategoryFilter


def build_store(settings: IngestSettings) -> FacilityStore:
    if settings.STORE_BACKEND == "jsonl":
        return JsonlFacilityStore(file_path=settings.OUTPUT_FILE)
    return DynamoFacilityStore(
        table_name=settings.TABLE_NAME,
        read_capacity=settings.READ_CAPACITY,
        write_capacity=settings.WRITE_CAPACITY,
        region_name=settings.AWS_REGION,
        endpoint_url=settings.DYNAMODB_ENDPOINT_URL,
        profile_name=settings.AWS_PROFILE,
        report_consumed_capacity=settings.REPORT_CONSUMED_CAPACITY,
    )


def build_context(settings: IngestSettings, store: FacilityStore | None = None) -> IngestContext:
    return IngestContext(
        settings=settings,
        store=store or build_store(settings),
        metrics=InMemoryIngestMetricsCollector(),
        category_filter=CategoryFilter(settings.DENIED_CATEGORIES),
    )


async def run_ingest(source: AsyncIterable[Mapping[str, Any]], context: IngestContext) -> IngestResult:
    settings = context.settings
    pipeline = IngestPipeline(
        source=source,
        store=context.store,
        category_filter=context.category_filter,
        batch_size=settings.BATCH_SIZE,
        inter_batch_delay_seconds=settings.INTER_BATCH_DELAY_SECONDS,
        retry_policy=RetryPolicy(
            max_retries=settings.MAX_RETRIES,
            base_delay_seconds=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.RETRY_MAX_DELAY_SECONDS,
        ),
        progress_interval_seconds=settings.PROGRESS_INTERVAL_SECONDS,
        progress_log_every=settings.PROGRESS_LOG_EVERY,
        metrics=context.metrics,
    )
    try:
        result = await pipeline.run()
    except Exception:
        context.metrics.increment_run("failure")
        raise
    context.metrics.increment_run("success")
    return result
