"""CLI job that enriches pending records with Outscraper place data."""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from placesync.core.config import ConfigError, get_settings, require
from placesync.core.db import PlacesStore
from placesync.core.pipeline import EnrichmentPipeline, PipelineOptions
from placesync.vendors.outscraper import OutscraperClient

logger = logging.getLogger(__name__)


def run_process_job(
    *,
    max_records: int,
    delay_ms: int,
    stop_on_error: bool = False,
    record_ids: Optional[List[str]] = None,
    stream: bool = False,
) -> Optional[Dict[str, Any]]:
    settings = get_settings()
    require(settings, "database_url", "outscraper_api_key")

    options = PipelineOptions(
        max_records=max_records,
        delay_ms=delay_ms,
        stop_on_error=stop_on_error,
        record_ids=record_ids or None,
    )
    store = PlacesStore(settings)
    pipeline = EnrichmentPipeline(settings, store, OutscraperClient(settings))
    logger.info("Processing up to %d pending records (delay=%dms)", max_records, delay_ms)

    try:
        if stream:
            for event in pipeline.stream(options):
                sys.stdout.write(json.dumps(event, default=str) + "\n")
                sys.stdout.flush()
            return None
        return pipeline.run_batch(options)
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Enrich pending records with Google Maps data")
    parser.add_argument(
        "--max-records",
        dest="max_records",
        type=int,
        default=settings.max_records,
        help="Maximum number of records to process",
    )
    parser.add_argument(
        "--delay-ms",
        dest="delay_ms",
        type=int,
        default=settings.delay_ms,
        help="Pause between records, in milliseconds",
    )
    parser.add_argument("--stop-on-error", dest="stop_on_error", action="store_true", help="Abort on the first record error")
    parser.add_argument("--id", dest="record_ids", action="append", help="Process only this pending record (repeatable)")
    parser.add_argument("--stream", dest="stream", action="store_true", help="Print progress events as NDJSON")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    try:
        summary = run_process_job(
            max_records=args.max_records,
            delay_ms=args.delay_ms,
            stop_on_error=args.stop_on_error,
            record_ids=args.record_ids,
            stream=args.stream,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except Exception as exc:  # pragma: no cover - CLI fallback
        logger.error("Processing run failed: %s", exc, exc_info=True)
        raise SystemExit(1) from exc

    if summary is not None:
        logger.info("%s", summary["message"])
        print(json.dumps(summary["stats"], indent=2))


if __name__ == "__main__":
    main()
