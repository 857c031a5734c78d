import pytest
import requests

from grubstars.core.errors import AdapterError, AuthenticationError, ConfigurationError, QuotaExceededError
from grubstars.vendors import yelp
from grubstars.vendors.base import strip_source_prefix
from grubstars.vendors.tripadvisor import TripAdvisorSource
from grubstars.vendors.yelp import YelpSource


class DummyTracker:
    def __init__(self, count=0):
        self.count = count

    def try_increment(self, adapter, limit, amount=1):
        if self.count + amount > limit:
            return None
        self.count += amount
        return self.count

    def get_count(self, adapter):
        return self.count


def _business(business_id, **extra):
    data = {
        "id": business_id,
        "name": f"Place {business_id}",
        "location": {"address1": "1 Main St", "city": "Barrie", "state": "ON"},
        "coordinates": {"latitude": 44.38, "longitude": -79.69},
        "display_phone": "(705) 555-0100",
        "rating": 4.0,
        "review_count": 12,
        "categories": [{"alias": "pizza", "title": "Pizza"}],
    }
    data.update(extra)
    return data


def test_strip_source_prefix():
    assert strip_source_prefix("yelp:abc", "yelp") == "abc"
    assert strip_source_prefix("abc", "yelp") == "abc"
    assert strip_source_prefix("google:abc", "yelp") == "google:abc"


def test_unconfigured_source_refuses_requests(session):
    source = YelpSource("", "https://api.yelp.com/v3", session=session)

    assert source.configured() is False
    with pytest.raises(ConfigurationError):
        source.get_business("abc")
    assert session.calls == []


@pytest.mark.parametrize(
    "status, error",
    [(401, AuthenticationError), (403, AuthenticationError), (429, QuotaExceededError), (500, AdapterError)],
)
def test_http_errors_are_mapped(session, respond, status, error):
    session.queue(respond(status_code=status, payload={"error": {"description": "nope"}}))
    source = YelpSource("key", "https://api.yelp.com/v3", session=session)

    with pytest.raises(error) as excinfo:
        source.get_business("abc")

    assert excinfo.value.status == status
    assert excinfo.value.source == "yelp"


def test_network_failure_becomes_adapter_error(session):
    session.queue(requests.ConnectionError("connection refused"))
    source = YelpSource("key", "https://api.yelp.com/v3", session=session)

    with pytest.raises(AdapterError, match="connection refused"):
        source.get_business("abc")


def test_non_json_body_is_rejected(session, respond):
    session.queue(respond(status_code=200, payload=None, text="<html>"))
    source = YelpSource("key", "https://api.yelp.com/v3", session=session)

    with pytest.raises(AdapterError):
        source.get_business("abc")


def test_requests_are_counted_against_monthly_budget(session, respond):
    tracker = DummyTracker(count=yelp.YelpSource.REQUEST_LIMIT - 1)
    session.queue(respond(payload=_business("abc")))
    source = YelpSource("key", "https://api.yelp.com/v3", rate_tracker=tracker, session=session)

    source.get_business("abc")
    with pytest.raises(QuotaExceededError) as excinfo:
        source.get_business("abc")

    assert excinfo.value.limit == 5000
    assert excinfo.value.current_count == 5000
    assert len(session.calls) == 1


def test_yelp_sets_auth_header(session):
    YelpSource("key", "https://api.yelp.com/v3", session=session)

    assert session.headers["Authorization"] == "Bearer key"


def test_yelp_search_all_paginates(session, respond):
    first_page = [_business(f"b{i}") for i in range(yelp.PAGE_SIZE)]
    session.queue(
        respond(payload={"total": 70, "businesses": first_page}),
        respond(payload={"total": 70, "businesses": [_business(f"c{i}") for i in range(20)]}),
    )
    source = YelpSource("key", "https://api.yelp.com/v3", session=session)

    results = list(source.search_all("barrie", categories="pizza", limit=100))

    assert len(results) == 70
    assert [call[1]["offset"] for call in session.calls] == [0, 50]
    assert session.calls[0][1]["categories"] == "pizza"
    record, progress = results[-1]
    assert record.external_id == "yelp:c19"
    assert (progress.current, progress.total, progress.percent) == (70, 70, 100.0)


def test_yelp_search_all_respects_limit(session, respond):
    session.queue(respond(payload={"total": 500, "businesses": [_business(f"b{i}") for i in range(yelp.PAGE_SIZE)]}))
    source = YelpSource("key", "https://api.yelp.com/v3", session=session)

    results = list(source.search_all("barrie", limit=10))

    assert len(results) == 10
    assert len(session.calls) == 1


def test_yelp_search_by_name(session, respond):
    session.queue(respond(payload={"businesses": [_business("abc")]}))
    source = YelpSource("key", "https://api.yelp.com/v3", session=session)

    records = source.search_by_name("Place abc", location="barrie", limit=5)

    assert session.calls[0][1] == {"term": "Place abc", "limit": 5, "location": "barrie"}
    assert records[0].phone == "(705) 555-0100"


def _location(location_id, **extra):
    data = {
        "location_id": location_id,
        "name": f"Spot {location_id}",
        "address_obj": {"street1": "5 Bay St", "city": "Barrie", "postalcode": "L4M"},
    }
    data.update(extra)
    return data


def test_tripadvisor_search_all_is_single_page(session, respond):
    session.queue(respond(payload={"data": [_location("1"), _location("2"), _location("3")]}))
    source = TripAdvisorSource("key", "https://api.content.tripadvisor.com/api/v1", session=session)

    results = list(source.search_all("barrie", limit=2))

    assert [record.external_id for record, _ in results] == ["tripadvisor:1", "tripadvisor:2"]
    assert session.calls[0][1]["searchQuery"] == "restaurants in barrie"
    assert results[0][0].address == "5 Bay St, Barrie, L4M"


def test_tripadvisor_details_include_photos(session, respond):
    details = _location("1", latitude="44.38", longitude="-79.69", phone="+1 705 555 0100", category={"name": "restaurant"})
    photos = {"data": [{"images": {"large": {"url": "https://ta.example.com/1.jpg"}}}]}
    session.queue(respond(payload=details), respond(payload=photos))
    source = TripAdvisorSource("key", "https://api.content.tripadvisor.com/api/v1", session=session)

    record = source.get_business("tripadvisor:1")

    assert session.calls[0][0].endswith("/location/1/details")
    assert record.phone == "+1 705 555 0100"
    assert record.latitude == 44.38
    assert record.categories == ["restaurant"]
    assert record.photos == ["https://ta.example.com/1.jpg"]


def test_tripadvisor_photo_failure_is_not_fatal(session, respond):
    session.queue(respond(payload=_location("1")), respond(status_code=500, payload={"message": "down"}))
    source = TripAdvisorSource("key", "https://api.content.tripadvisor.com/api/v1", session=session)

    record = source.get_business("1")

    assert record.photos == []
    assert record.name == "Spot 1"
