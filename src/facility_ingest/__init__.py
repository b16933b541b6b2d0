"""Health facility CSV ingestion into a throttled key-value store."""

from facility_ingest.config import IngestSettings, load_settings
from facility_ingest.context import IngestContext, build_context, build_store, run_ingest
from facility_ingest.core.pipeline import IngestPipeline, IngestResult

__all__ = [
    "IngestContext",
    "IngestPipeline",
    "IngestResult",
    "IngestSettings",
    "build_context",
    "build_store",
    "load_settings",
    "run_ingest",
]
