"""Read pending records and attach the customer each one refers to."""

import logging
from typing import Dict, List, Optional, Sequence

from placesync.core.db import PlacesStore
from placesync.core.models import CustomerReference, PendingRecord

logger = logging.getLogger(__name__)

ID_BATCH_SIZE = 50
NAME_BATCH_SIZE = 30


def names_match(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive equality or containment in either direction."""
    if not left or not right:
        return False
    a, b = left.strip().lower(), right.strip().lower()
    if not a or not b:
        return False
    return a == b or a in b or b in a


def _batched(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def resolve_customers(store: PlacesStore, records: Sequence[PendingRecord]) -> Dict[str, CustomerReference]:
    """Map pending record ids to customers, by external key first, then by fuzzy name."""
    resolved: Dict[str, CustomerReference] = {}

    keyed = [r for r in records if r.external_key]
    keys = list(dict.fromkeys(r.external_key for r in keyed))
    for batch in _batched(keys, ID_BATCH_SIZE):
        customers = {c.id: c for c in map(CustomerReference.from_row, store.fetch_customers_by_ids(batch))}
        for record in keyed:
            customer = customers.get(record.external_key)
            if customer is not None and record.id not in resolved:
                resolved[record.id] = customer

    unkeyed = [r for r in records if not r.external_key and r.name and r.name != "null"]
    names = list(dict.fromkeys(r.name for r in unkeyed))
    for batch in _batched(names, NAME_BATCH_SIZE):
        for customer in map(CustomerReference.from_row, store.search_customers_by_names(batch)):
            match = next(
                (r for r in unkeyed if r.id not in resolved and names_match(r.name, customer.name)),
                None,
            )
            if match is not None:
                resolved[match.id] = customer

    logger.info("Resolved customers for %d of %d pending records", len(resolved), len(records))
    return resolved


def load_pending(
    store: PlacesStore,
    *,
    limit: Optional[int] = None,
    only_pending: bool = True,
    record_ids: Optional[Sequence[str]] = None,
) -> List[PendingRecord]:
    if record_ids:
        rows = store.fetch_pending_by_ids(record_ids)
    else:
        rows = store.fetch_pending(limit=limit, only_pending=only_pending)
    return [PendingRecord.from_row(row) for row in rows]
