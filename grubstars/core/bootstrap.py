"""Wiring of adapters, repositories and the indexer for the entry points."""

import logging
from typing import List, Optional

from grubstars.core.config import Settings, get_settings
from grubstars.core.db import ensure_schema, init_pool
from grubstars.core.rate_tracker import RateTracker
from grubstars.core.repositories import (
    CategoryRepository,
    ExternalIdRepository,
    MediaRepository,
    RatingRepository,
    RestaurantRepository,
)
from grubstars.jobs.indexer import IndexingOrchestrator, ProgressCallback
from grubstars.vendors.base import BusinessSource
from grubstars.vendors.google_places import GooglePlacesSource
from grubstars.vendors.tripadvisor import TripAdvisorSource
from grubstars.vendors.yelp import YelpSource

logger = logging.getLogger(__name__)


def build_adapters(settings: Settings, rate_tracker: Optional[RateTracker] = None) -> List[BusinessSource]:
    """Adapters in indexing priority order."""
    return [
        YelpSource(settings.yelp_api_key, settings.yelp_base_url, rate_tracker=rate_tracker),
        GooglePlacesSource(settings.google_api_key, settings.google_base_url, rate_tracker=rate_tracker),
        TripAdvisorSource(settings.tripadvisor_api_key, settings.tripadvisor_base_url, rate_tracker=rate_tracker),
    ]


def prepare_database(settings: Settings) -> None:
    init_pool(maxconn=max(5, settings.job_workers * 2))
    ensure_schema()


def build_orchestrator(
    settings: Optional[Settings] = None,
    rate_tracker: Optional[RateTracker] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> IndexingOrchestrator:
    settings = settings or get_settings()
    rate_tracker = rate_tracker or RateTracker()
    adapters = build_adapters(settings, rate_tracker)
    logger.debug(
        "Configured adapters: %s",
        ", ".join(adapter.source_name for adapter in adapters if adapter.configured()) or "none",
    )
    return IndexingOrchestrator(
        adapters=adapters,
        restaurant_repo=RestaurantRepository(),
        external_id_repo=ExternalIdRepository(),
        rating_repo=RatingRepository(),
        media_repo=MediaRepository(),
        category_repo=CategoryRepository(),
        progress_callback=progress_callback,
    )
