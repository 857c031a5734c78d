"""Client for the Yelp Fusion business search API."""

import logging
from typing import Iterator, List, Optional, Tuple

import requests

from grubstars.core.models import BusinessRecord, Progress
from grubstars.core.rate_tracker import RateTracker
from grubstars.etl.transform import yelp_business_to_record
from grubstars.vendors.base import HttpSource, strip_source_prefix

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
# Yelp refuses offset + limit beyond this.
MAX_RESULTS = 240


class YelpSource(HttpSource):
    source_name = "yelp"
    REQUEST_LIMIT = 5000

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        rate_tracker: Optional[RateTracker] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(api_key, base_url, rate_tracker=rate_tracker, session=session)
        self._session.headers.update({"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"})

    def search_all(
        self, location: str, categories: Optional[str] = None, limit: int = 100
    ) -> Iterator[Tuple[BusinessRecord, Progress]]:
        max_results = min(limit, MAX_RESULTS)
        offset = 0
        processed = 0
        total: Optional[int] = None

        while processed < max_results:
            params = {"location": location, "limit": PAGE_SIZE, "offset": offset}
            if categories:
                # term handles free text ("bubble tea"), categories handles exact aliases.
                params["term"] = categories
                params["categories"] = categories

            payload = self._get_json("businesses/search", params)
            if total is None:
                total = min(int(payload.get("total") or 0), max_results)
            businesses = payload.get("businesses") or []
            logger.info("Yelp returned %d businesses at offset %d for %s", len(businesses), offset, location)
            if not businesses:
                break

            for business in businesses:
                if processed >= max_results:
                    break
                processed += 1
                yield yelp_business_to_record(business), Progress.of(processed, total)

            offset += PAGE_SIZE
            if offset >= max_results or offset >= total:
                break

    def get_business(self, external_id: str) -> BusinessRecord:
        business_id = strip_source_prefix(external_id, self.source_name)
        payload = self._get_json(f"businesses/{business_id}")
        return yelp_business_to_record(payload)

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[BusinessRecord]:
        params = {"term": name, "limit": min(limit, PAGE_SIZE)}
        if location:
            params["location"] = location
        payload = self._get_json("businesses/search", params)
        return [yelp_business_to_record(business) for business in payload.get("businesses") or []]
