"""Shared plumbing for directory clients and the capability set the indexer consumes."""

import logging
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

import requests

from grubstars.core.errors import AdapterError, AuthenticationError, ConfigurationError, QuotaExceededError
from grubstars.core.models import BusinessRecord, Progress
from grubstars.core.rate_tracker import RateTracker

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class BusinessSource(Protocol):
    """A directory that can discover businesses and describe them in full."""

    source_name: str

    def configured(self) -> bool:
        ...

    def search_all(
        self, location: str, categories: Optional[str] = None, limit: int = 100
    ) -> Iterator[Tuple[BusinessRecord, Progress]]:
        """Lazily yield (business, progress) pairs, one result page at a time."""
        ...

    def get_business(self, external_id: str) -> BusinessRecord:
        ...

    def search_by_name(self, name: str, location: Optional[str] = None, limit: int = 10) -> List[BusinessRecord]:
        ...


def strip_source_prefix(external_id: str, source: str) -> str:
    """Turn ``"yelp:abc"`` into ``"abc"``; raw ids pass through unchanged."""
    prefix = f"{source}:"
    return external_id[len(prefix):] if external_id.startswith(prefix) else external_id


class HttpSource:
    """Base for directory clients talking JSON over HTTP.

    Subclasses set ``source_name`` and ``REQUEST_LIMIT`` (monthly budget, or
    None for untracked directories) and call ``_get_json`` for every request.
    """

    source_name = ""
    REQUEST_LIMIT: Optional[int] = None

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        rate_tracker: Optional[RateTracker] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key or ""
        self._base_url = base_url.rstrip("/")
        self._rate_tracker = rate_tracker
        self._session = session or requests.Session()

    def configured(self) -> bool:
        return bool(self._api_key)

    def _ensure_configured(self) -> None:
        if not self.configured():
            raise ConfigurationError(f"{self.source_name} API key is not configured")

    def _track_request(self) -> None:
        limit = self.REQUEST_LIMIT
        if limit is None or self._rate_tracker is None:
            return
        if self._rate_tracker.try_increment(self.source_name, limit) is None:
            current = self._rate_tracker.get_count(self.source_name)
            raise QuotaExceededError(
                f"API rate limit exceeded for {self.source_name}: {current}/{limit} requests used",
                source=self.source_name,
                limit=limit,
                current_count=current,
            )

    def _error_message(self, payload: Any, response: requests.Response) -> str:
        if isinstance(payload, dict):
            return str(payload.get("message") or payload.get("error") or payload)
        return response.text[:500]

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._ensure_configured()
        self._track_request()

        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            response = self._session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            logger.error("%s request to %s failed: %s", self.source_name, path, exc)
            raise AdapterError(f"{self.source_name} request failed: {exc}", source=self.source_name) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        status = response.status_code
        if status < 400:
            if not isinstance(payload, dict):
                raise AdapterError(f"{self.source_name} returned a non-JSON response", source=self.source_name, status=status)
            return payload

        message = f"{self.source_name} API error: {self._error_message(payload, response)}"
        logger.error("%s (status=%s)", message, status)
        if status in (401, 403):
            raise AuthenticationError(message, source=self.source_name, status=status)
        if status == 429:
            raise QuotaExceededError(message, source=self.source_name, status=status)
        raise AdapterError(message, source=self.source_name, status=status)
