"""Client for the Google Places web service API."""

import logging
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

from grubstars.core.errors import AdapterError, AuthenticationError, QuotaExceededError
from grubstars.core.models import BusinessRecord, Progress
from grubstars.etl.transform import google_place_to_record
from grubstars.vendors.base import HttpSource, strip_source_prefix

logger = logging.getLogger(__name__)

# Text search pagination stops at three pages of twenty.
MAX_RESULTS = 60
# Google needs a moment before a next_page_token becomes valid.
PAGE_TOKEN_DELAY_SECONDS = 2.0
DETAIL_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,geometry,rating,"
    "user_ratings_total,types,url,photos,permanently_closed"
)


class GooglePlacesError(AdapterError):
    """Raised when the Places API returns a non-successful status."""


def build_query(location: str, categories: Optional[str] = None) -> str:
    return f"{categories} in {location}" if categories else f"restaurants in {location}"


class GooglePlacesSource(HttpSource):
    source_name = "google"
    REQUEST_LIMIT = 10_000

    def _places_call(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._get_json(path, dict(params, key=self._api_key))
        status = payload.get("status")
        if status in {"OK", "ZERO_RESULTS"}:
            return payload

        message = f"Google API error: {payload.get('error_message') or status}"
        logger.error("%s failed: status=%s, error_message=%s", path, status, payload.get("error_message"))
        if status == "REQUEST_DENIED":
            raise AuthenticationError(message, source=self.source_name)
        if status == "OVER_QUERY_LIMIT":
            raise QuotaExceededError(message, source=self.source_name)
        raise GooglePlacesError(message, source=self.source_name)

    def text_search(self, query: str, pagetoken: Optional[str] = None) -> Dict[str, Any]:
        params = {"query": query}
        if pagetoken:
            params["pagetoken"] = pagetoken
        return self._places_call("textsearch/json", params)

    def search_all(
        self, location: str, categories: Optional[str] = None, limit: int = 100
    ) -> Iterator[Tuple[BusinessRecord, Progress]]:
        query = build_query(location, categories)
        max_results = min(limit, MAX_RESULTS)
        processed = 0
        page_token = None

        while processed < max_results:
            response = self.text_search(query, pagetoken=page_token)
            results = response.get("results", [])
            logger.info("Fetched %d Google results for query=%s", len(results), query)

            for place in results:
                if processed >= max_results:
                    return
                processed += 1
                record = google_place_to_record(place, self._base_url, self._api_key)
                yield record, Progress.of(processed, max_results)

            page_token = response.get("next_page_token")
            if not page_token or not results:
                break
            time.sleep(PAGE_TOKEN_DELAY_SECONDS)

    def get_business(self, external_id: str) -> BusinessRecord:
        place_id = strip_source_prefix(external_id, self.source_name)
        payload = self._places_call("details/json", {"place_id": place_id, "fields": DETAIL_FIELDS})
        result = payload.get("result")
        if not result:
            raise GooglePlacesError(f"Google returned no details for {place_id}", source=self.source_name)
        return google_place_to_record(result, self._base_url, self._api_key)

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[BusinessRecord]:
        query = f"{name} in {location}" if location else name
        results = self.text_search(query).get("results", [])
        return [google_place_to_record(place, self._base_url, self._api_key) for place in results[:limit]]
