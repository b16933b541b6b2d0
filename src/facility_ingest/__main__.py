from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence

from pydantic import ValidationError as SettingsValidationError

from facility_ingest.config import configure_logging, load_settings
from facility_ingest.context import IngestContext, build_context, run_ingest
from facility_ingest.core.prometheus_exporter import IngestPrometheusExporter
from facility_ingest.sources.csv_source import CsvFacilitySource

logger = logging.getLogger("facility_ingest")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="facility-ingest",
        description="Load a health facility CSV export into the facility store.",
    )
    parser.add_argument("csv_path", help="path to the facilities CSV file")
    parser.add_argument("--delimiter", default=",", help="CSV field delimiter")
    parser.add_argument("--encoding", default="utf-8", help="CSV file encoding")
    return parser.parse_args(argv)


def _export_metrics(context: IngestContext) -> None:
    path = context.settings.METRICS_TEXTFILE
    if not path:
        return
    try:
        IngestPrometheusExporter().write_textfile(context.metrics, path)
    except OSError:
        logger.exception("metrics_export_failed", extra={"path": path})


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings()
    except SettingsValidationError:
        configure_logging()
        logger.exception("ingest_failed", extra={"reason": "invalid_settings"})
        return 1
    configure_logging(settings.LOG_LEVEL)

    context = build_context(settings)
    source = CsvFacilitySource(args.csv_path, delimiter=args.delimiter, encoding=args.encoding)
    logger.info("ingest_started", extra={"path": args.csv_path, "backend": settings.STORE_BACKEND})
    try:
        result = asyncio.run(run_ingest(source, context))
    except Exception:
        logger.exception("ingest_failed", extra={"path": args.csv_path})
        return 1
    finally:
        _export_metrics(context)
    logger.info(
        "ingest_completed",
        extra={
            "queued": result.queued,
            "ignored": result.ignored,
            "invalid": result.invalid,
            "submitted": result.submitted,
            "batches": result.batches,
        },
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
