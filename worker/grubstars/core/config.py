"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    database_url: str
    yelp_api_key: str = ""
    google_api_key: str = ""
    tripadvisor_api_key: str = ""
    yelp_api_base_url: str = "https://api.yelp.com/v3"
    google_api_base_url: str = "https://maps.googleapis.com/maps/api/place"
    tripadvisor_api_base_url: str = "https://api.content.tripadvisor.com/api/v1"
    worker_port: int = 9000
    max_concurrent_jobs: int = 3
    job_retention_seconds: int = 3600
    match_threshold: int = 50
    index_limit: int = 100
    provider_timeout_seconds: float = 10.0
    db_pool_max: int = 10


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
        logger.warning("No provider API keys are configured; indexing requests will be rejected.")

    return Settings(
        database_url=database_url,
        yelp_api_key=yelp_api_key,
        google_api_key=google_api_key,
        tripadvisor_api_key=tripadvisor_api_key,
        yelp_api_base_url=os.getenv("YELP_API_BASE_URL") or Settings.yelp_api_base_url,
        google_api_base_url=os.getenv("GOOGLE_API_BASE_URL") or Settings.google_api_base_url,
        tripadvisor_api_base_url=os.getenv("TRIPADVISOR_API_BASE_URL") or Settings.tripadvisor_api_base_url,
        worker_port=int(os.getenv("WORKER_PORT", "9000")),
        max_concurrent_jobs=int(os.getenv("MAX_CONCURRENT_JOBS", "3")),
        job_retention_seconds=int(os.getenv("JOB_RETENTION_SECONDS", "3600")),
        match_threshold=int(os.getenv("MATCH_THRESHOLD", "50")),
        index_limit=int(os.getenv("INDEX_LIMIT", "100")),
        provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10")),
        db_pool_max=int(os.getenv("DB_POOL_MAX", "10")),
    )
