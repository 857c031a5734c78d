"""Two-phase indexing of restaurants from every configured directory.

The forward phase walks each adapter's geographic search in priority order and
resolves every business against storage (update by external id, merge with a
matched restaurant, or create a new one). The reverse-lookup phase then asks
each adapter, by name, for the restaurants its own geographic search missed.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from grubstars.core.errors import AdapterError, ConfigurationError, DetailFetchError, PersistenceError
from grubstars.core.matcher import Matcher
from grubstars.core.models import (
    BusinessRecord,
    ExternalId,
    IndexStats,
    MatchResult,
    Outcome,
    Progress,
    Restaurant,
)
from grubstars.vendors.base import BusinessSource

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
# Degrees around a business's coordinates searched for candidates (~1 km).
CANDIDATE_DELTA = 0.01
REVERSE_LOOKUP_LIMIT = 5
PHOTO = "photo"

# Serializes match-or-create across every run in this process.
_STORE_LOCK = threading.RLock()

ProgressCallback = Callable[[str, BusinessRecord, Progress], None]

# Fields copied from a detail response when the search result lacks them.
_DETAIL_FIELDS = ("address", "phone", "rating", "review_count", "categories", "photos", "url", "is_closed")


def _with_details(business: BusinessRecord, details: BusinessRecord) -> BusinessRecord:
    updates: Dict[str, Any] = {}
    for field in _DETAIL_FIELDS:
        if not getattr(business, field) and getattr(details, field):
            updates[field] = getattr(details, field)
    if not business.has_coordinates and details.has_coordinates:
        updates["latitude"] = details.latitude
        updates["longitude"] = details.longitude
    return dataclasses.replace(business, **updates) if updates else business


class IndexingOrchestrator:
    def __init__(
        self,
        adapters: Sequence[BusinessSource],
        restaurant_repo,
        external_id_repo,
        rating_repo,
        media_repo,
        category_repo,
        matcher: Optional[Matcher] = None,
        store_lock: Optional[threading.RLock] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.adapters = list(adapters)
        self.restaurant_repo = restaurant_repo
        self.external_id_repo = external_id_repo
        self.rating_repo = rating_repo
        self.media_repo = media_repo
        self.category_repo = category_repo
        self.matcher = matcher or Matcher()
        self._store_lock = store_lock or _STORE_LOCK
        self._progress_callback = progress_callback

    def configured_adapters(self) -> List[BusinessSource]:
        return [adapter for adapter in self.adapters if adapter.configured()]

    # ---------- Public operations ----------

    def index(self, location: str, categories: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> IndexStats:
        """Index ``location`` from every configured adapter; ``limit`` applies per adapter."""
        adapters = self.configured_adapters()
        if not adapters:
            raise ConfigurationError("No adapters configured. Set directory API keys in the environment.")

        stats = IndexStats(limit=limit)
        touched: Dict[int, None] = {}
        failed_sources = set()

        for adapter in adapters:
            logger.info("Indexing %s from %s (limit=%d)", location, adapter.source_name, limit)
            try:
                self._index_with_adapter(adapter, location, categories, limit, stats, touched)
            except AdapterError as exc:
                logger.error("Adapter %s failed during forward indexing: %s", adapter.source_name, exc)
                stats.errors[adapter.source_name] = str(exc)
                failed_sources.add(adapter.source_name)

        reverse_adapters = [adapter for adapter in adapters if adapter.source_name not in failed_sources]
        self._reverse_lookup(reverse_adapters, list(touched), location, stats)

        logger.info(
            "Indexed %s: total=%d created=%d updated=%d merged=%d backfilled=%d",
            location,
            stats.total,
            stats.created,
            stats.updated,
            stats.merged,
            stats.backfilled,
        )
        return stats

    def index_one(self, business: BusinessRecord, source: str, location: Optional[str] = None) -> Outcome:
        outcome, _ = self._store_business(business, source, location)
        return outcome

    def reindex_restaurant(self, restaurant_id: int) -> Dict[str, Any]:
        """Refresh one restaurant from every source it is already linked to."""
        restaurant = self.restaurant_repo.find_by_id(restaurant_id)
        if restaurant is None:
            raise ValueError(f"Restaurant with ID {restaurant_id} not found")

        links = self.external_id_repo.find_by_restaurant(restaurant_id)
        if not links:
            return {"sources_updated": [], "sources_failed": [], "changes": {}, "message": "No external sources to refresh"}

        adapters = {adapter.source_name: adapter for adapter in self.configured_adapters()}
        sources_updated: List[str] = []
        sources_failed: List[Dict[str, str]] = []

        for link in links:
            adapter = adapters.get(link.source)
            if adapter is None:
                logger.debug("Skipping %s refresh for restaurant %s: adapter not configured", link.source, restaurant_id)
                continue
            try:
                fresh = adapter.get_business(link.external_id)
            except AdapterError as exc:
                logger.warning("Failed to refresh restaurant %s from %s: %s", restaurant_id, link.source, exc)
                sources_failed.append({"source": link.source, "error": str(exc)})
                continue
            self.index_one(fresh, link.source, restaurant.location)
            sources_updated.append(link.source)

        refreshed = self.restaurant_repo.find_by_id(restaurant_id) or restaurant
        changes = {
            field: {"old": getattr(restaurant, field), "new": getattr(refreshed, field)}
            for field in ("name", "address", "phone")
            if getattr(restaurant, field) != getattr(refreshed, field)
        }
        return {
            "sources_updated": sources_updated,
            "sources_failed": sources_failed,
            "changes": changes,
            "message": _reindex_message(sources_updated, sources_failed, changes),
        }

    # ---------- Forward phase ----------

    def _index_with_adapter(
        self,
        adapter: BusinessSource,
        location: str,
        categories: Optional[str],
        limit: int,
        stats: IndexStats,
        touched: Dict[int, None],
    ) -> None:
        source = adapter.source_name
        processed = 0
        for business, progress in adapter.search_all(location, categories=categories, limit=limit):
            if processed >= limit:
                break
            if self._progress_callback is not None:
                self._progress_callback(source, business, progress)

            if not business.photos:
                business = self._enrich(adapter, business)

            outcome, restaurant_id = self._store_business(business, source, location)
            stats.record(outcome)
            touched[restaurant_id] = None
            processed += 1

        logger.info("Finished %s: %d businesses processed", source, processed)

    def _fetch_details(self, adapter: BusinessSource, business: BusinessRecord) -> BusinessRecord:
        try:
            return adapter.get_business(business.external_id)
        except PersistenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DetailFetchError(
                f"Failed to fetch details for {business.external_id}: {exc}", source=adapter.source_name
            ) from exc

    def _enrich(self, adapter: BusinessSource, business: BusinessRecord) -> BusinessRecord:
        if not business.external_id:
            return business
        try:
            details = self._fetch_details(adapter, business)
        except DetailFetchError as exc:
            logger.warning("%s; using search result data", exc)
            return business
        return _with_details(business, details)

    # ---------- Resolution ----------

    def _store_business(
        self, business: BusinessRecord, source: str, location: Optional[str]
    ) -> Tuple[Outcome, int]:
        with self._store_lock:
            existing = None
            if business.external_id:
                existing = self.restaurant_repo.find_by_external_id(source, business.external_id)
            if existing is not None:
                self._update_restaurant(existing, business, source, location)
                return Outcome.UPDATED, existing.id

            match = self._find_match(business, source)
            if match is not None and self._merge_restaurant(match.restaurant, business, source, location):
                return Outcome.MERGED, match.restaurant.id

            restaurant = self._create_restaurant(business, source, location)
            return Outcome.CREATED, restaurant.id

    def _find_match(self, business: BusinessRecord, source: str) -> Optional[MatchResult]:
        if not business.has_coordinates:
            return None
        candidates = [
            candidate
            for candidate in self.restaurant_repo.find_candidates(business.latitude, business.longitude, CANDIDATE_DELTA)
            if not self._linked_to(candidate.id, source)
        ]
        return self.matcher.find_match(business, candidates)

    def _create_restaurant(self, business: BusinessRecord, source: str, location: Optional[str]) -> Restaurant:
        restaurant = self.restaurant_repo.create(
            Restaurant(
                name=business.name,
                address=business.address,
                latitude=business.latitude,
                longitude=business.longitude,
                phone=business.phone,
                location=location,
            )
        )
        self._link_external_id(restaurant.id, source, business.external_id)
        self._store_satellites(restaurant.id, business, source)
        if business.photos:
            self.media_repo.replace_media(restaurant.id, source, PHOTO, business.photos)
        logger.debug("Created restaurant %s for %s %s", restaurant.id, source, business.external_id)
        return restaurant

    def _update_restaurant(
        self, existing: Restaurant, business: BusinessRecord, source: str, location: Optional[str]
    ) -> None:
        existing.name = business.name or existing.name
        if business.address:
            existing.address = business.address
        if business.phone:
            existing.phone = business.phone
        if business.has_coordinates:
            existing.latitude = business.latitude
            existing.longitude = business.longitude
        if location:
            existing.location = location
        self.restaurant_repo.update(existing)

        self._store_satellites(existing.id, business, source)
        if business.photos:
            self.media_repo.replace_media(existing.id, source, PHOTO, business.photos)

    def _merge_restaurant(
        self, existing: Restaurant, business: BusinessRecord, source: str, location: Optional[str]
    ) -> bool:
        if not self._link_external_id(existing.id, source, business.external_id):
            return False

        # Fill gaps only; the first source to provide a field keeps it.
        updates: Dict[str, Any] = {}
        if existing.address is None and business.address:
            updates["address"] = business.address
        if existing.phone is None and business.phone:
            updates["phone"] = business.phone
        if not existing.has_coordinates and business.has_coordinates:
            updates["latitude"] = business.latitude
            updates["longitude"] = business.longitude
        if existing.location is None and location:
            updates["location"] = location
        if updates:
            self.restaurant_repo.update_fields(existing.id, updates)
            for field, value in updates.items():
                setattr(existing, field, value)

        self._store_satellites(existing.id, business, source)
        if business.photos:
            self.media_repo.add_media(existing.id, source, PHOTO, business.photos)
        return True

    def _link_external_id(self, restaurant_id: int, source: str, external_id: Optional[str]) -> bool:
        if not external_id:
            return True
        inserted = self.external_id_repo.insert_if_absent(
            ExternalId(restaurant_id=restaurant_id, source=source, external_id=external_id)
        )
        if not inserted:
            logger.warning(
                "Restaurant %s already linked to %s; not linking %s", restaurant_id, source, external_id
            )
        return inserted

    def _linked_to(self, restaurant_id: int, source: str) -> bool:
        return any(link.source == source for link in self.external_id_repo.find_by_restaurant(restaurant_id))

    def _store_satellites(self, restaurant_id: int, business: BusinessRecord, source: str) -> None:
        if business.categories:
            self.category_repo.link_names(restaurant_id, business.categories)
        if business.rating is not None:
            self.rating_repo.upsert(restaurant_id, source, business.rating, business.review_count)

    # ---------- Reverse lookup ----------

    def _reverse_lookup(
        self, adapters: Sequence[BusinessSource], restaurant_ids: Sequence[int], location: str, stats: IndexStats
    ) -> None:
        if not adapters or not restaurant_ids:
            return

        linked_sources = {
            restaurant_id: {link.source for link in self.external_id_repo.find_by_restaurant(restaurant_id)}
            for restaurant_id in restaurant_ids
        }

        for adapter in adapters:
            source = adapter.source_name
            missing = [rid for rid in restaurant_ids if source not in linked_sources[rid]]
            if not missing:
                continue
            logger.info("Reverse lookup on %s for %d restaurants", source, len(missing))
            try:
                for restaurant_id in missing:
                    if self._backfill(adapter, restaurant_id, location):
                        stats.backfilled += 1
                        linked_sources[restaurant_id].add(source)
            except AdapterError as exc:
                logger.error("Adapter %s failed during reverse lookup: %s", source, exc)
                stats.errors.setdefault(source, str(exc))

    def _backfill(self, adapter: BusinessSource, restaurant_id: int, location: str) -> bool:
        restaurant = self.restaurant_repo.find_by_id(restaurant_id)
        if restaurant is None:
            return False

        source = adapter.source_name
        results = adapter.search_by_name(
            restaurant.name, location=restaurant.location or location, limit=REVERSE_LOOKUP_LIMIT
        )

        best: Optional[Tuple[BusinessRecord, MatchResult]] = None
        for business in results:
            if self._owned_elsewhere(source, business):
                continue
            match = self.matcher.find_match(business, [restaurant])
            if match is not None and (best is None or match.score > best[1].score):
                best = (business, match)

        if best is None:
            logger.debug("Reverse lookup on %s found no match for %r", source, restaurant.name)
            return False

        business, match = best
        with self._store_lock:
            # Another run may have claimed the id or changed the row since the search.
            if self._owned_elsewhere(source, business):
                return False
            current = self.restaurant_repo.find_by_id(restaurant_id)
            if current is None or self._linked_to(restaurant_id, source):
                return False
            if not self._merge_restaurant(current, business, source, current.location or location):
                return False

        logger.info(
            "Backfilled %s %s onto restaurant %s (score=%d)", source, business.external_id, restaurant_id, match.score
        )
        return True

    def _owned_elsewhere(self, source: str, business: BusinessRecord) -> bool:
        if not business.external_id or self.external_id_repo.find(source, business.external_id) is None:
            return False
        logger.debug("%s %s already belongs to another restaurant", source, business.external_id)
        return True


def _reindex_message(
    sources_updated: List[str], sources_failed: List[Dict[str, str]], changes: Dict[str, Any]
) -> str:
    parts = []
    if sources_updated:
        parts.append(f"Updated from {', '.join(sources_updated)}")
    if sources_failed:
        parts.append(f"Failed: {', '.join(failure['source'] for failure in sources_failed)}")
    if changes:
        parts.append(f"Changed: {', '.join(changes)}")
    return ". ".join(parts) if parts else "Data refreshed (no changes detected)"
