"""CLI job that copies Metabase card rows into ``metabase_customers``."""

import argparse
import logging
import time
from typing import Any, Callable, Dict, Optional

import psycopg2

from placesync.core.config import ConfigError, Settings, get_settings, require
from placesync.core.db import CUSTOMERS_TABLE, PlacesStore
from placesync.core.models import utc_now_iso
from placesync.etl.customers import UPDATE_COLUMNS, map_card_rows, stamp_records
from placesync.vendors.metabase import MetabaseClient

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


def sync_customers(
    settings: Settings,
    store: PlacesStore,
    client: MetabaseClient,
    *,
    card_id: Optional[int] = None,
    limit: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Insert new customers and refresh existing ones, keeping their ``created_at``."""
    card_id = card_id or settings.metabase_card_id
    limit = limit or settings.metabase_row_limit
    started = time.monotonic()

    total_before = store.count_rows(CUSTOMERS_TABLE)
    columns, rows = client.get_card_data(card_id, limit)
    if not rows:
        raise ValueError(f"card {card_id} returned no rows")

    records = stamp_records(map_card_rows(columns, rows))
    if not records:
        raise ValueError(f"no card {card_id} rows could be mapped")

    inserted = updated = errors = 0
    for start in range(0, len(records), BATCH_SIZE):
        batch = records[start:start + BATCH_SIZE]
        batch_number = start // BATCH_SIZE + 1
        try:
            existing = store.existing_customer_ids([r["id"] for r in batch])
            new_records = [r for r in batch if r["id"] not in existing]
            now = utc_now_iso()
            updates = [
                {**{column: r.get(column) for column in UPDATE_COLUMNS}, "id": r["id"], "updated_at": now}
                for r in batch
                if r["id"] in existing
            ]
            inserted += store.insert_customers(new_records)
            updated += store.update_customers(updates)
            logger.info("Batch %d: %d inserted, %d updated", batch_number, len(new_records), len(updates))
        except psycopg2.Error as exc:
            errors += len(batch)
            logger.error("Batch %d failed: %s", batch_number, exc)

        if start + BATCH_SIZE < len(records):
            sleep(0.3)

    total_after = store.count_rows(CUSTOMERS_TABLE)
    return {
        "success": inserted + updated > 0,
        "card_id": card_id,
        "rows": len(rows),
        "mapped": len(records),
        "skipped_rows": len(rows) - len(records),
        "total_before": total_before,
        "total_after": total_after,
        "inserted": inserted,
        "updated": updated,
        "errors": errors,
        "elapsed_seconds": round(time.monotonic() - started, 2),
    }


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Sync Metabase customers into the store")
    parser.add_argument("--card-id", dest="card_id", type=int, default=settings.metabase_card_id, help="Metabase card to read")
    parser.add_argument("--limit", dest="limit", type=int, default=settings.metabase_row_limit, help="Maximum rows to fetch")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()
    settings = get_settings()
    try:
        require(settings, "database_url", "metabase_url", "metabase_api_key")
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc

    store = PlacesStore(settings)
    try:
        summary = sync_customers(settings, store, MetabaseClient(settings), card_id=args.card_id, limit=args.limit)
    finally:
        store.close()
    logger.info("Customer sync finished: %s", summary)


if __name__ == "__main__":
    main()
