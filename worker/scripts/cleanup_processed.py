"""Delete staging rows that a previous run already marked as processed."""

import argparse
import logging

from placesync.core.config import ConfigError, get_settings, require
from placesync.core.db import PlacesStore
from placesync.core.reconcile import PROCESSED_MARKER_PREFIX

logger = logging.getLogger("cleanup_processed")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = argparse.ArgumentParser(description="Remove processed rows from google_maps_pending")
    parser.add_argument("--prefix", default=PROCESSED_MARKER_PREFIX, help="Marker prefix to match")
    args = parser.parse_args()

    settings = get_settings()
    try:
        require(settings, "database_url")
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc

    store = PlacesStore(settings)
    try:
        removed = store.delete_marked_pending(args.prefix)
    finally:
        store.close()
    print("Removed", removed, "processed pending rows")


if __name__ == "__main__":
    main()
