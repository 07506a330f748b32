"""Validation and sanitization of mapped place rows before they reach the store.

``validate_place_row`` restores the invariants the search API routinely breaks:
numbers and booleans arriving as strings, oversized text, nested structures that
still need serializing. It never mutates its input.

Long strings are truncated with a warning rather than rejected. JSON-bearing
fields are truncated the same way once serialized, which can leave invalid JSON
behind; that loss is accepted. JSON strings under the cap are re-parsed but
never re-serialized.

Numeric strings must be numbers in full: "4.5 stars" or "100+" is an error,
not a leading-number read.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from placesync.core.models import format_instant

logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 1000
MAX_JSON_LENGTH = 10000

EXTERNAL_KEY_FIELD = "metabase_id"
PRIMARY_ID_FIELD = "place_id"

# field -> (kind, lower bound, upper bound)
NUMERIC_FIELDS: Dict[str, Tuple[str, float, Optional[float]]] = {
    "latitude": ("float", -90.0, 90.0),
    "longitude": ("float", -180.0, 180.0),
    "rating": ("float", 0.0, 5.0),
    "reviews": ("int", 0, None),
    "photos_count": ("int", 0, None),
}

STRING_FIELDS = (
    "name",
    "site",
    "subtypes",
    "category",
    "phone",
    "full_address",
    "borough",
    "street",
    "city",
    "postal_code",
    "state",
    "country",
    "photo",
    "range",
    "prices",
    "description",
    "typical_time_spent",
    "booking_appointment_link",
    "menu_link",
    "location_link",
    "place_id",
    "google_id",
    "cid",
    "kgmid",
    "reviews_id",
)

JSON_FIELDS = ("reviews_per_score", "working_hours", "about", "reservation_links", "order_links")

_FALSE_STRINGS = {"false", "0", "no", "off", ""}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sanitized_data: Dict[str, Any] = field(default_factory=dict)


def _parse_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    number = _parse_float(value)
    if number is None:
        return None
    return int(number)


def _stringify(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else str(item) for item in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def coerce_bool(value: Any) -> bool:
    """Coerce loosely typed flags; textual false-like values become ``False``."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def _reject_constant(token: str) -> None:
    raise ValueError(f"{token} is not allowed in JSON")


def _parse_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def validate_place_row(row: Mapping[str, Any]) -> ValidationResult:
    """Check and sanitize a mapped place row, returning a fresh dictionary."""
    errors: List[str] = []
    warnings: List[str] = []
    sanitized: Dict[str, Any] = dict(row)

    if not row.get(EXTERNAL_KEY_FIELD):
        errors.append(f"{EXTERNAL_KEY_FIELD} is required")
    if not row.get(PRIMARY_ID_FIELD):
        errors.append(f"{PRIMARY_ID_FIELD} is required")

    for name, (kind, lower, upper) in NUMERIC_FIELDS.items():
        raw = row.get(name)
        if raw is None:
            continue
        number = _parse_float(raw) if kind == "float" else _parse_int(raw)
        if number is None or number < lower or (upper is not None and number > upper):
            errors.append(f"invalid {name}: {raw!r}")
            continue
        sanitized[name] = number

    for name in STRING_FIELDS:
        raw = row.get(name)
        if raw is None:
            continue
        text = _stringify(raw)
        if len(text) > MAX_STRING_LENGTH:
            warnings.append(f"{name} is too long ({len(text)} chars), truncated to {MAX_STRING_LENGTH}")
            text = text[:MAX_STRING_LENGTH]
        sanitized[name] = text

    for name in JSON_FIELDS:
        raw = row.get(name)
        if raw is None:
            continue
        if isinstance(raw, str):
            if len(raw) > MAX_JSON_LENGTH:
                warnings.append(f"{name} JSON is too large ({len(raw)} chars), truncated")
                sanitized[name] = raw[:MAX_JSON_LENGTH]
            elif len(raw) < MAX_JSON_LENGTH:
                # a value exactly at the cap is an earlier truncation and is not re-parsed
                try:
                    json.loads(raw, parse_constant=_reject_constant)
                except ValueError as exc:
                    errors.append(f"{name} is not valid JSON: {exc}")
            continue
        try:
            encoded = json.dumps(raw, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as exc:
            errors.append(f"{name} is not valid JSON: {exc}")
            sanitized[name] = None
            continue
        if len(encoded) > MAX_JSON_LENGTH:
            warnings.append(f"{name} JSON is too large ({len(encoded)} chars), truncated")
            encoded = encoded[:MAX_JSON_LENGTH]
        sanitized[name] = encoded

    if row.get("verified") is not None:
        sanitized["verified"] = coerce_bool(row["verified"])

    if row.get("updated_at"):
        instant = _parse_instant(row["updated_at"])
        if instant is None:
            errors.append(f"invalid updated_at: {row['updated_at']!r}")
        else:
            sanitized["updated_at"] = format_instant(instant)

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, sanitized_data=sanitized)


def diff_fields(original: Mapping[str, Any], sanitized: Mapping[str, Any]) -> List[Tuple[str, Any, Any]]:
    """Return ``(field, original, sanitized)`` for every field sanitization changed."""
    return [
        (key, original.get(key), value)
        for key, value in sanitized.items()
        if original.get(key) != value or type(original.get(key)) is not type(value)
    ]


def log_validation_result(record_id: str, result: ValidationResult, original: Mapping[str, Any]) -> None:
    logger.info("Validation for record %s: valid=%s", record_id, result.is_valid)
    for error in result.errors:
        logger.warning("Record %s: %s", record_id, error)
    for warning in result.warnings:
        logger.info("Record %s: %s", record_id, warning)
    for name, before, after in diff_fields(original, result.sanitized_data):
        logger.debug("Record %s: %s %r -> %r", record_id, name, before, after)
