"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_YELP_BASE_URL = "https://api.yelp.com/v3"
DEFAULT_GOOGLE_BASE_URL = "https://maps.googleapis.com/maps/api/place"
DEFAULT_TRIPADVISOR_BASE_URL = "https://api.content.tripadvisor.com/api/v1"


@dataclass(frozen=True)
class Settings:
    database_url: str
    yelp_api_key: str = ""
    yelp_base_url: str = DEFAULT_YELP_BASE_URL
    google_api_key: str = ""
    google_base_url: str = DEFAULT_GOOGLE_BASE_URL
    tripadvisor_api_key: str = ""
    tripadvisor_base_url: str = DEFAULT_TRIPADVISOR_BASE_URL
    worker_port: int = 9000
    job_workers: int = 3
    max_active_jobs: int = 3
    default_limit: int = 100
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    yelp_api_key = os.getenv("YELP_API_KEY", "")
    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    tripadvisor_api_key = os.getenv("TRIPADVISOR_API_KEY", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not (yelp_api_key or google_api_key or tripadvisor_api_key):
        logger.warning("No directory API keys are configured; indexing runs will fail.")

    return Settings(
        database_url=database_url,
        yelp_api_key=yelp_api_key,
        yelp_base_url=os.getenv("YELP_API_BASE_URL") or DEFAULT_YELP_BASE_URL,
        google_api_key=google_api_key,
        google_base_url=os.getenv("GOOGLE_API_BASE_URL") or DEFAULT_GOOGLE_BASE_URL,
        tripadvisor_api_key=tripadvisor_api_key,
        tripadvisor_base_url=os.getenv("TRIPADVISOR_API_BASE_URL") or DEFAULT_TRIPADVISOR_BASE_URL,
        worker_port=int(os.getenv("WORKER_PORT", "9000")),
        job_workers=int(os.getenv("JOB_WORKERS", "3")),
        max_active_jobs=int(os.getenv("MAX_ACTIVE_JOBS", "3")),
        default_limit=int(os.getenv("INDEX_DEFAULT_LIMIT", "100")),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
