"""Utilities for transforming Outscraper place candidates into ``google_maps`` rows."""

import json
import logging
from typing import Any, Dict, Optional

from placesync.core.errors import IdentityMismatch
from placesync.core.models import CustomerReference, PendingRecord, utc_now_iso

logger = logging.getLogger(__name__)

# Columns copied straight from the candidate when present.
PLACE_FIELDS = (
    "place_id",
    "google_id",
    "cid",
    "kgmid",
    "reviews_id",
    "site",
    "category",
    "subtypes",
    "borough",
    "street",
    "postal_code",
    "state",
    "country",
    "latitude",
    "longitude",
    "rating",
    "reviews",
    "photos_count",
    "photo",
    "range",
    "prices",
    "description",
    "typical_time_spent",
    "verified",
    "booking_appointment_link",
    "menu_link",
    "location_link",
)

STRUCTURED_FIELDS = ("reviews_per_score", "working_hours", "about", "reservation_links", "order_links")


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _encode(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError):
        logger.debug("Leaving unserializable value for validation: %r", value)
        return value


def build_search_query(name: Optional[str], address: Optional[str], city: Optional[str]) -> str:
    """Join name and address, appending the city only when the address lacks it."""
    name = (name or "").strip()
    address = (address or "").strip()
    city = (city or "").strip()

    if city and city.lower() not in address.lower():
        address = f"{address}, {city}" if address else city
    return f"{name} {address}".strip()


def map_candidate(
    candidate: Dict[str, Any],
    pending: PendingRecord,
    customer: Optional[CustomerReference] = None,
) -> Dict[str, Any]:
    """Flatten a search candidate into a row carrying every ``google_maps`` column.

    Missing values become explicit ``None`` so validation always sees the same
    shape. Structured fields are JSON-encoded here.
    """
    source_name = customer.name if customer and customer.name else pending.name
    source_address = customer.address if customer else pending.address
    source_city = customer.city if customer else pending.city
    source_phone = customer.phone if customer else None
    external_key = customer.id if customer else pending.external_key

    row: Dict[str, Any] = {"metabase_id": external_key}
    for name in PLACE_FIELDS:
        row[name] = candidate.get(name)

    row["name"] = _first_present(candidate.get("name"), source_name)
    row["phone"] = _first_present(candidate.get("phone"), source_phone)
    row["full_address"] = _first_present(candidate.get("full_address"), source_address)
    row["city"] = _first_present(candidate.get("city"), source_city)

    for name in STRUCTURED_FIELDS:
        row[name] = _encode(candidate.get(name))

    row["updated_at"] = utc_now_iso()
    return row


def verify_identity(row: Dict[str, Any], pending: PendingRecord) -> None:
    """Refuse rows attributed to a different customer than the pending record names."""
    expected = pending.external_key
    found = row.get("metabase_id")
    if expected and str(found) != str(expected):
        raise IdentityMismatch(expected, found, record_id=pending.id)
