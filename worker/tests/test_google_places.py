import pytest

from grubstars.vendors import google_places
from grubstars.vendors.base import AdapterAPIError
from grubstars.vendors.google_places import GooglePlacesAdapter


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = ""

    def json(self):
        return self._payload


class DummySession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, timeout))
        return self.responses.pop(0)


class DummyCounter:
    def get_count(self, adapter):
        return 0

    def increment(self, adapter, amount=1):
        return 1


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(google_places.time, "sleep", sleeps.append)
    return sleeps


def place(place_id, name="Joe's Pizza"):
    return {"place_id": place_id, "name": name, "geometry": {"location": {"lat": 44.38, "lng": -79.69}}}


def make_adapter(*responses):
    session = DummySession(*responses)
    adapter = GooglePlacesAdapter("key", session=session, request_counter=DummyCounter())
    return adapter, session


def test_search_area_builds_query():
    adapter, session = make_adapter(DummyResponse(payload={"status": "OK", "results": [place("a")]}))

    listings = adapter.search_area("barrie, ontario", category="bakery", limit=10)

    assert [l.external_id for l in listings] == ["google:a"]
    url, params, timeout = session.calls[0]
    assert url.endswith("/textsearch/json")
    assert params["query"] == "bakery in barrie, ontario"
    assert params["key"] == "key"
    assert timeout == 10


def test_search_area_follows_page_tokens(no_sleep):
    first = {"status": "OK", "results": [place(str(i)) for i in range(20)], "next_page_token": "t1"}
    second = {"status": "OK", "results": [place(str(i)) for i in range(20, 40)]}
    adapter, session = make_adapter(DummyResponse(payload=first), DummyResponse(payload=second))

    listings = adapter.search_area("barrie", limit=10, offset=15)

    assert [l.external_id for l in listings] == [f"google:{i}" for i in range(15, 25)]
    assert session.calls[1][1]["pagetoken"] == "t1"
    assert no_sleep == [google_places.PAGE_TOKEN_DELAY_SECONDS]


def test_search_area_skips_results_without_place_id():
    payload = {"status": "OK", "results": [{"name": "No id"}, place("b")]}
    adapter, _ = make_adapter(DummyResponse(payload=payload))

    assert [l.external_id for l in adapter.search_area("barrie")] == ["google:b"]


def test_zero_results_is_not_an_error():
    adapter, _ = make_adapter(DummyResponse(payload={"status": "ZERO_RESULTS", "results": []}))
    assert adapter.search_area("nowhere") == []


def test_error_status_raises():
    adapter, _ = make_adapter(DummyResponse(payload={"status": "REQUEST_DENIED", "error_message": "bad key"}))

    with pytest.raises(AdapterAPIError) as excinfo:
        adapter.search_area("barrie")
    assert "bad key" in str(excinfo.value)
    assert excinfo.value.status is None


def test_over_query_limit_maps_to_429():
    adapter, _ = make_adapter(DummyResponse(payload={"status": "OVER_QUERY_LIMIT"}))

    with pytest.raises(AdapterAPIError) as excinfo:
        adapter.get_detail("google:abc")
    assert excinfo.value.status == 429


def test_get_detail_strips_prefix():
    detail = dict(place("abc"), formatted_phone_number="(705) 555-0100", photos=[{"photo_reference": "r"}])
    adapter, session = make_adapter(DummyResponse(payload={"status": "OK", "result": detail}))

    listing = adapter.get_detail("google:abc")

    assert session.calls[0][1]["place_id"] == "abc"
    assert listing.phone == "(705) 555-0100"
    assert listing.photos[0].startswith("https://maps.googleapis.com/maps/api/place/photo?")


def test_get_reviews():
    result = {"reviews": [{"text": "Great crust.", "rating": 5, "author_name": "Sam", "time": 1700000000}]}
    adapter, session = make_adapter(DummyResponse(payload={"status": "OK", "result": result}))

    reviews = adapter.get_reviews("abc")

    assert session.calls[0][1]["fields"] == "reviews"
    assert [r.text for r in reviews] == ["Great crust."]


def test_search_by_name_limits_results():
    payload = {"status": "OK", "results": [place(str(i)) for i in range(8)]}
    adapter, session = make_adapter(DummyResponse(payload=payload))

    results = adapter.search_by_name("Joe's Pizza", location="barrie", limit=5)

    assert len(results) == 5
    assert session.calls[0][1]["query"] == "Joe's Pizza in barrie"
