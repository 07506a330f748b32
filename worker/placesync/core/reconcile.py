"""Insert-or-update of sanitized place rows into ``google_maps``.

The existence check and the write are two round trips with no transaction
around them. Two concurrent runs for the same ``metabase_id`` can both insert;
a unique index on ``google_maps.metabase_id`` is what prevents that in
production.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import psycopg2

from placesync.core.db import PlacesStore

logger = logging.getLogger(__name__)

PROCESSED_MARKER_PREFIX = "PROCESSED_"

INSERTED = "inserted"
UPDATED = "updated"
DUPLICATE = "duplicate"
FAILED = "failed"

# substring of the store's message -> (category, readable message)
_ERROR_PATTERNS: Tuple[Tuple[str, str, str], ...] = (
    ("invalid input syntax", "invalid_syntax", "a value does not match its column type"),
    ("value too long", "value_too_long", "a value exceeds its column length"),
    ("invalid json", "invalid_json", "a JSON column received invalid JSON"),
    ("not-null constraint", "not_null", "a required column is null"),
    ("unique constraint", "unique_violation", "a row with the same unique key already exists"),
)

_SUSPECT_FIELDS = ("latitude", "longitude", "rating", "reviews", "photos_count", "verified")


@dataclass
class ReconcileOutcome:
    status: str
    detail: Optional[str] = None
    category: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (INSERTED, UPDATED)


def classify_store_error(text: str, row: Optional[Dict[str, Any]] = None) -> Tuple[str, str]:
    """Turn a store error message into ``(category, readable message)``."""
    lowered = (text or "").lower()
    for needle, category, message in _ERROR_PATTERNS:
        if needle not in lowered:
            continue
        if category == "invalid_syntax" and row is not None:
            for name in _SUSPECT_FIELDS:
                if name in lowered:
                    value = row.get(name)
                    return category, f"problem with {name}: {value!r} ({type(value).__name__})"
        if category == "invalid_json":
            message = "invalid JSON (JSON columns are lossy when truncated)"
        return category, message
    return "unknown", "unknown store error"


class Reconciler:
    def __init__(self, store: PlacesStore) -> None:
        self.store = store

    def reconcile(self, row: Dict[str, Any]) -> ReconcileOutcome:
        """Write ``row`` with exactly one insert or update keyed by ``metabase_id``."""
        external_key = row.get("metabase_id")
        place_id = row.get("place_id")
        if not external_key:
            raise ValueError("metabase_id is required to reconcile a row")

        if place_id:
            conflicts = self.store.find_place_conflicts(place_id, external_key)
            if conflicts:
                owner = conflicts[0].get("metabase_id")
                logger.warning("Skipping %s: place_id %s already belongs to %s", external_key, place_id, owner)
                return ReconcileOutcome(DUPLICATE, f"place_id {place_id} already belongs to metabase_id {owner}")

        existing = self.store.find_places_by_external_key(external_key)
        try:
            if not existing:
                self.store.insert_place(row)
                logger.info("Inserted google_maps row for %s", external_key)
                return ReconcileOutcome(INSERTED)
            updated = self.store.update_place(row)
            logger.info("Updated %d google_maps rows for %s", updated, external_key)
            return ReconcileOutcome(UPDATED)
        except psycopg2.OperationalError:
            raise
        except psycopg2.Error as exc:
            text = getattr(exc, "pgerror", None) or str(exc)
            category, message = classify_store_error(text, row)
            logger.error("Store rejected %s (%s): %s", external_key, category, text.strip())
            return ReconcileOutcome(FAILED, f"{message}: {text.strip()}", category)

    def mark_processed(self, record_id: str) -> bool:
        """Flag a staging row as done; failures are logged and swallowed."""
        marker = f"{PROCESSED_MARKER_PREFIX}{int(time.time() * 1000)}"
        try:
            self.store.mark_pending_processed(record_id, marker)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to mark pending record %s as processed: %s", record_id, exc)
            return False
        return True

    def has_completed_row(self, external_key: Optional[str]) -> bool:
        if not external_key:
            return False
        return any(row.get("place_id") for row in self.store.find_places_by_external_key(external_key))


def cleanup_processed(store: PlacesStore, record_ids, batch_size: int = 50) -> int:
    """Delete staging rows in batches, returning how many were removed."""
    ids = list(record_ids)
    removed = 0
    for start in range(0, len(ids), batch_size):
        batch = ids[start:start + batch_size]
        try:
            removed += store.delete_pending(batch)
        except psycopg2.Error as exc:
            logger.error("Failed to delete pending batch starting at %d: %s", start, exc)
    logger.info("Cleanup removed %d of %d pending records", removed, len(ids))
    return removed
