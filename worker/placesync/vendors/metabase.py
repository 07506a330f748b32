"""Client utilities for the Metabase card query API."""

import logging
from typing import Any, List, Optional, Sequence, Tuple

import requests

from placesync.core.config import Settings

logger = logging.getLogger(__name__)


class MetabaseError(RuntimeError):
    """Raised when a card query fails or returns an unexpected payload."""


class MetabaseClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        if not settings.metabase_url:
            raise MetabaseError("METABASE_URL is required")
        self.settings = settings
        self.base_url = settings.metabase_url.rstrip("/")
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "x-api-key": self.settings.metabase_api_key}

    def get_card_data(self, card_id: int, limit: int = 1000) -> Tuple[List[str], List[Sequence[Any]]]:
        """Run a saved question and return its column display names and rows."""
        payload = {"constraints": {"max-results": limit}}
        response = self.session.post(
            f"{self.base_url}/api/card/{card_id}/query",
            json=payload,
            headers=self._headers(),
            timeout=self.settings.metabase_timeout,
        )
        if not response.ok:
            logger.error("card %s query failed: status=%s body=%s", card_id, response.status_code, response.text[:500])
            raise MetabaseError(f"card {card_id} query failed: {response.status_code} {response.reason}")

        result = response.json()
        if result.get("status") == "failed" or result.get("error"):
            raise MetabaseError(f"card {card_id} query failed: {result.get('error') or 'query failed'}")

        data = result.get("data") or {}
        cols = data.get("cols")
        if not cols:
            raise MetabaseError(f"unexpected response structure for card {card_id}")

        columns = [col.get("display_name") or col.get("name") for col in cols]
        rows = data.get("rows") or []
        logger.info("Fetched card %s: %d rows, %d columns", card_id, len(rows), len(columns))
        return columns, rows
