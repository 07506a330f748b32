"""Client utilities for the Outscraper Google Maps search API."""

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from placesync.core.config import Settings
from placesync.etl.transform import build_search_query

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60
SEARCH_FIELDS = (
    "name,site,subtypes,category,phone,full_address,borough,street,city,postal_code,state,country,"
    "latitude,longitude,rating,reviews,reviews_per_score,photos_count,photo,working_hours,about,range,"
    "prices,description,typical_time_spent,verified,reservation_links,booking_appointment_link,menu_link,"
    "order_links,location_link,place_id,google_id,cid,kgmid,reviews_id"
)


class OutscraperError(RuntimeError):
    """Raised when the Outscraper API returns a non-successful response."""


def first_candidate(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pick the first place of the first query; results come as a list or a bare object."""
    data = payload.get("data") or []
    if not data:
        return None
    first = data[0]
    if isinstance(first, dict) and first.get("name"):
        return first
    if isinstance(first, list) and first and isinstance(first[0], dict):
        return first[0]
    return None


class OutscraperClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    def search_places(
        self,
        queries: Sequence[str],
        *,
        limit: Optional[int] = None,
        drop_duplicates: Optional[bool] = None,
        total_limit: Optional[int] = None,
        language: Optional[str] = None,
        region: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self.settings.outscraper_api_key:
            raise OutscraperError("OUTSCRAPER_API_KEY is required")

        params: List[tuple] = [("query", query) for query in queries]
        if limit is not None:
            params.append(("limit", str(limit)))
        if drop_duplicates is not None:
            params.append(("dropDuplicates", str(drop_duplicates).lower()))
        if total_limit is not None:
            params.append(("totalLimit", str(total_limit)))
        if language:
            params.append(("language", language))
        if region:
            params.append(("region", region))
        if fields:
            params.append(("fields", fields))
        params.append(("async", "false"))

        logger.info("Calling Outscraper for %d queries", len(queries))
        response = self.session.get(
            self.settings.outscraper_base_url,
            params=params,
            headers={"X-API-KEY": self.settings.outscraper_api_key, "Accept": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
        if not response.ok:
            logger.error("search failed: status=%s body=%s", response.status_code, response.text[:500])
            raise OutscraperError(f"Outscraper API error: {response.status_code} {response.reason}")
        return response.json()

    def lookup_place(self, name: Optional[str], address: Optional[str], city: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the single best candidate for a business, or ``None`` when nothing matched."""
        query = build_search_query(name, address, city)
        if not query:
            raise ValueError("Query parameters are empty")

        logger.info("Looking up place for query=%s", query)
        payload = self.search_places(
            [query],
            limit=1,
            drop_duplicates=True,
            total_limit=1,
            language=self.settings.outscraper_language,
            region=self.settings.outscraper_region,
            fields=SEARCH_FIELDS,
        )
        candidate = first_candidate(payload)
        if candidate is None:
            logger.info("No place found for query=%s", query)
        return candidate
