import dataclasses
import sys
from pathlib import Path

import pytest

# Ensure the `grubstars` package is importable when running pytest from the repository root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from grubstars.core.models import BusinessRecord, Category, Progress  # noqa: E402


class MemoryStore:
    """Dict-backed stand-in for the PostgreSQL tables the indexer writes."""

    def __init__(self):
        self.restaurants = {}
        self.external_ids = []
        self.ratings = {}
        self.media = []
        self.categories = {}
        self.restaurant_categories = set()
        self._next_id = 1

    def next_id(self):
        value = self._next_id
        self._next_id += 1
        return value

    def sources_for(self, restaurant_id):
        return {link.source for link in self.external_ids if link.restaurant_id == restaurant_id}

    def category_names(self, restaurant_id):
        by_id = {category.id: category.name for category in self.categories.values()}
        return {by_id[cid] for rid, cid in self.restaurant_categories if rid == restaurant_id}

    def urls(self, restaurant_id, source=None):
        return [
            url
            for rid, src, _, url in self.media
            if rid == restaurant_id and (source is None or src == source)
        ]


class MemoryRestaurantRepository:
    def __init__(self, store):
        self.store = store

    def create(self, restaurant):
        restaurant.id = self.store.next_id()
        self.store.restaurants[restaurant.id] = dataclasses.replace(restaurant)
        return restaurant

    def update(self, restaurant):
        self.store.restaurants[restaurant.id] = dataclasses.replace(restaurant)
        return restaurant

    def update_fields(self, restaurant_id, fields):
        for field, value in fields.items():
            setattr(self.store.restaurants[restaurant_id], field, value)

    def find_by_id(self, restaurant_id):
        restaurant = self.store.restaurants.get(restaurant_id)
        return dataclasses.replace(restaurant) if restaurant else None

    def find_by_external_id(self, source, external_id):
        for link in self.store.external_ids:
            if link.source == source and link.external_id == external_id:
                return self.find_by_id(link.restaurant_id)
        return None

    def find_candidates(self, latitude, longitude, delta):
        found = [
            dataclasses.replace(r)
            for r in self.store.restaurants.values()
            if r.has_coordinates
            and abs(r.latitude - latitude) <= delta
            and abs(r.longitude - longitude) <= delta
        ]
        return sorted(found, key=lambda r: ((r.latitude - latitude) ** 2 + (r.longitude - longitude) ** 2, r.id))


class MemoryExternalIdRepository:
    def __init__(self, store):
        self.store = store

    def find(self, source, external_id):
        for link in self.store.external_ids:
            if link.source == source and link.external_id == external_id:
                return link
        return None

    def find_by_restaurant(self, restaurant_id):
        return [link for link in self.store.external_ids if link.restaurant_id == restaurant_id]

    def insert_if_absent(self, external_id):
        for link in self.store.external_ids:
            same_id = link.source == external_id.source and link.external_id == external_id.external_id
            same_pair = link.restaurant_id == external_id.restaurant_id and link.source == external_id.source
            if same_id or same_pair:
                return False
        external_id.id = len(self.store.external_ids) + 1
        self.store.external_ids.append(external_id)
        return True


class MemoryRatingRepository:
    def __init__(self, store):
        self.store = store

    def upsert(self, restaurant_id, source, score, review_count):
        self.store.ratings[(restaurant_id, source)] = (score, review_count)


class MemoryMediaRepository:
    def __init__(self, store):
        self.store = store

    def replace_media(self, restaurant_id, source, media_type, urls):
        self.store.media = [
            row for row in self.store.media if row[:3] != (restaurant_id, source, media_type)
        ]
        for url in dict.fromkeys(urls):
            self.store.media.append((restaurant_id, source, media_type, url))
        return len(urls)

    def add_media(self, restaurant_id, source, media_type, urls):
        existing = {row[3] for row in self.store.media if row[:3] == (restaurant_id, source, media_type)}
        added = 0
        for url in dict.fromkeys(urls):
            if url not in existing:
                self.store.media.append((restaurant_id, source, media_type, url))
                added += 1
        return added


class MemoryCategoryRepository:
    def __init__(self, store):
        self.store = store

    def find_or_create(self, name):
        if name not in self.store.categories:
            self.store.categories[name] = Category(id=len(self.store.categories) + 1, name=name)
        return self.store.categories[name]

    def link(self, restaurant_id, category_id):
        self.store.restaurant_categories.add((restaurant_id, category_id))

    def link_names(self, restaurant_id, names):
        for name in names:
            self.link(restaurant_id, self.find_or_create(name).id)


class FakeAdapter:
    """Scripted directory: canned search results, details and name lookups."""

    def __init__(
        self,
        source_name,
        businesses=(),
        details=None,
        name_results=None,
        configured=True,
        fail_after=None,
        error=None,
        detail_error=None,
        name_error=None,
    ):
        self.source_name = source_name
        self.businesses = list(businesses)
        self.details = details or {}
        self.name_results = name_results or {}
        self._configured = configured
        self.fail_after = fail_after
        self.error = error
        self.detail_error = detail_error
        self.name_error = name_error
        self.search_calls = []
        self.detail_calls = []
        self.name_calls = []

    def configured(self):
        return self._configured

    def search_all(self, location, categories=None, limit=100):
        self.search_calls.append({"location": location, "categories": categories, "limit": limit})
        total = len(self.businesses)
        for index, business in enumerate(self.businesses, start=1):
            if self.fail_after is not None and index > self.fail_after:
                raise self.error
            yield business, Progress.of(index, total)
        if self.fail_after is not None and self.fail_after >= total and self.error is not None:
            raise self.error

    def get_business(self, external_id):
        self.detail_calls.append(external_id)
        if self.detail_error is not None:
            raise self.detail_error
        if external_id not in self.details:
            raise KeyError(external_id)
        return self.details[external_id]

    def search_by_name(self, name, location=None, limit=10):
        self.name_calls.append(name)
        if self.name_error is not None:
            raise self.name_error
        return list(self.name_results.get(name, []))[:limit]


def make_business(external_id, name, **overrides):
    fields = {
        "address": "123 Main Street, Barrie, ON",
        "latitude": 44.3894,
        "longitude": -79.6903,
        "phone": "(705) 555-0100",
        "rating": 4.5,
        "review_count": 120,
        "categories": ["brewery"],
        "photos": [f"https://img.example.com/{external_id}.jpg"],
    }
    fields.update(overrides)
    return BusinessRecord(external_id=external_id, name=name, **fields)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repos(store):
    return {
        "restaurant_repo": MemoryRestaurantRepository(store),
        "external_id_repo": MemoryExternalIdRepository(store),
        "rating_repo": MemoryRatingRepository(store),
        "media_repo": MemoryMediaRepository(store),
        "category_repo": MemoryCategoryRepository(store),
    }


@pytest.fixture
def build_orchestrator(repos):
    import threading

    from grubstars.jobs.indexer import IndexingOrchestrator

    def _build(*adapters, **kwargs):
        kwargs.setdefault("store_lock", threading.RLock())
        return IndexingOrchestrator(adapters=list(adapters), **repos, **kwargs)

    return _build


@pytest.fixture
def fake_adapter():
    return FakeAdapter


@pytest.fixture
def business():
    return make_business


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class DummySession:
    """Replays queued responses and records every GET."""

    def __init__(self):
        self.headers = {}
        self.calls = []
        self.responses = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def session():
    return DummySession()


@pytest.fixture
def respond():
    return DummyResponse
