"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_OUTSCRAPER_URL = "https://api.outscraper.cloud/maps/search-v3"


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    outscraper_api_key: str
    outscraper_base_url: str = DEFAULT_OUTSCRAPER_URL
    outscraper_language: str = "es"
    outscraper_region: str = "ES"
    metabase_url: str = ""
    metabase_api_key: str = ""
    metabase_card_id: int = 7391
    metabase_row_limit: int = 2000
    metabase_timeout: int = 300
    worker_port: int = 9000
    max_records: int = 50
    delay_ms: int = 2000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    outscraper_api_key = os.getenv("OUTSCRAPER_API_KEY", "")
    metabase_url = os.getenv("METABASE_URL", "").rstrip("/")
    metabase_api_key = os.getenv("METABASE_API_KEY", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not outscraper_api_key:
        logger.warning("OUTSCRAPER_API_KEY is not configured; place lookups will fail.")
    if not metabase_url or not metabase_api_key:
        logger.warning("METABASE_URL or METABASE_API_KEY is not configured; customer sync is disabled.")

    return Settings(
        database_url=database_url,
        outscraper_api_key=outscraper_api_key,
        outscraper_base_url=os.getenv("OUTSCRAPER_BASE_URL") or DEFAULT_OUTSCRAPER_URL,
        outscraper_language=os.getenv("OUTSCRAPER_LANGUAGE", "es"),
        outscraper_region=os.getenv("OUTSCRAPER_REGION", "ES"),
        metabase_url=metabase_url,
        metabase_api_key=metabase_api_key,
        metabase_card_id=int(os.getenv("METABASE_CARD_ID", "7391")),
        metabase_row_limit=int(os.getenv("METABASE_ROW_LIMIT", "2000")),
        metabase_timeout=int(os.getenv("METABASE_TIMEOUT", "300")),
        worker_port=int(os.getenv("WORKER_PORT", "9000")),
        max_records=int(os.getenv("WORKER_MAX_RECORDS", "50")),
        delay_ms=int(os.getenv("WORKER_DELAY_MS", "2000")),
    )


def require(settings: Settings, *names: str) -> None:
    """Raise ConfigError naming every empty setting among ``names``."""
    missing = [name for name in names if not getattr(settings, name)]
    if missing:
        raise ConfigError(f"missing configuration: {', '.join(missing)}")
