"""Client for the TripAdvisor Content API."""

import logging
from typing import Iterator, List, Optional, Tuple

from grubstars.core.errors import AdapterError
from grubstars.core.models import BusinessRecord, Progress
from grubstars.etl.transform import tripadvisor_location_to_record, tripadvisor_photo_urls
from grubstars.vendors.base import HttpSource, strip_source_prefix

logger = logging.getLogger(__name__)


def build_search_query(location: str, categories: Optional[str] = None) -> str:
    return f"{categories} in {location}" if categories else f"restaurants in {location}"


class TripAdvisorSource(HttpSource):
    """Location search returns at most ten results and no photos or phone."""

    source_name = "tripadvisor"

    def _search(self, query: str) -> List[dict]:
        payload = self._get_json("location/search", {"searchQuery": query, "key": self._api_key, "language": "en"})
        return payload.get("data") or []

    def search_all(
        self, location: str, categories: Optional[str] = None, limit: int = 100
    ) -> Iterator[Tuple[BusinessRecord, Progress]]:
        locations = self._search(build_search_query(location, categories))[:limit]
        logger.info("TripAdvisor returned %d locations for %s", len(locations), location)
        total = len(locations)
        for index, data in enumerate(locations, start=1):
            yield tripadvisor_location_to_record(data), Progress.of(index, total)

    def get_photos(self, location_id: str) -> List[str]:
        try:
            payload = self._get_json(f"location/{location_id}/photos", {"key": self._api_key, "language": "en"})
        except AdapterError as exc:
            logger.warning("TripAdvisor photos unavailable for %s: %s", location_id, exc)
            return []
        return tripadvisor_photo_urls(payload.get("data") or [])

    def get_business(self, external_id: str) -> BusinessRecord:
        location_id = strip_source_prefix(external_id, self.source_name)
        payload = self._get_json(f"location/{location_id}/details", {"key": self._api_key, "language": "en"})
        return tripadvisor_location_to_record(payload, photos=self.get_photos(location_id), detailed=True)

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[BusinessRecord]:
        query = f"{name} in {location}" if location else name
        return [tripadvisor_location_to_record(data) for data in self._search(query)[:limit]]
