import pytest

from grubstars.domain import matcher
from grubstars.domain.matcher import Matcher
from grubstars.domain.models import Listing, Restaurant


def joes_listing(**overrides):
    fields = dict(
        name="Joe's Pizza",
        source="yelp",
        address="123 Main St, Barrie",
        latitude=44.3894,
        longitude=-79.6903,
        phone="(705) 555-0100",
    )
    fields.update(overrides)
    return Listing(**fields)


def joes_restaurant(id=1, **overrides):
    fields = dict(
        name="Joe's Pizza",
        address="123 Main Street, Barrie",
        latitude=44.3894,
        longitude=-79.6903,
        phone="705-555-0100",
    )
    fields.update(overrides)
    return Restaurant(id=id, **fields)


def test_normalizers():
    assert matcher.normalize_name("  Joe's   PIZZA! ") == "joes pizza"
    assert matcher.normalize_address("123 Main St., Barrie") == "123 main barrie"
    assert matcher.normalize_address("9 Dunlop Avenue") == "9 dunlop"
    assert matcher.normalize_phone("+1 (705) 555-0100") == "17055550100"


def test_string_similarity():
    assert matcher.longest_common_subsequence("abcde", "ace") == 3
    assert matcher.string_similarity("pizza", "pizza") == 1.0
    assert matcher.string_similarity("", "pizza") == 0.0
    assert matcher.string_similarity("abcd", "ab") == 0.5


def test_round_half_up():
    assert matcher._round_half_up(12.5) == 13
    assert matcher._round_half_up(17.5) == 18
    assert matcher._round_half_up(12.49) == 12


def test_identical_records_score_full_marks():
    listing = joes_listing()
    assert Matcher().score(listing, listing) == 100


def test_records_without_data_score_zero():
    empty = Listing(name=None, source="yelp")
    assert Matcher().score(empty, Restaurant(id=1, name="Joe's Pizza")) == 0


def test_component_scores():
    scores = Matcher().component_scores(joes_listing(), joes_restaurant())
    assert scores == {"name": 35, "address": 20, "gps": 25, "phone": 20}


def test_name_half_similarity_rounds_up():
    scores = Matcher().component_scores(Listing(name="abcd", source="yelp"), Restaurant(id=1, name="ab"))
    assert scores["name"] == 18


def test_phone_requires_exact_digits():
    scores = Matcher().component_scores(joes_listing(phone="705-555-0199"), joes_restaurant())
    assert scores["phone"] == 0


def test_gps_score_decreases_with_distance():
    m = Matcher()
    base = joes_listing(name=None, address=None, phone=None)
    # ~0.00045 degrees of latitude is roughly 50 m.
    distances = [0.0, 0.00045, 0.00135, 0.00225]
    scores = [
        m.score(base, joes_restaurant(name=None, address=None, phone=None, latitude=44.3894 + delta))
        for delta in distances
    ]
    assert scores[0] == 25
    assert scores == sorted(scores, reverse=True)
    assert scores[-1] == 0


def test_gps_ignored_when_coordinates_missing():
    scores = Matcher().component_scores(joes_listing(latitude=None), joes_restaurant())
    assert scores["gps"] == 0


def test_threshold_is_exclusive():
    m = Matcher(threshold=55)
    listing = Listing(name="Joe's Pizza", source="yelp", phone="705 555 0100")
    candidate = Restaurant(id=1, name="Joe's Pizza", phone="(705) 555-0100")

    assert m.score(listing, candidate) == 55
    assert m.is_match(listing, candidate) is False
    assert Matcher(threshold=54).is_match(listing, candidate) is True


def test_score_of_exactly_threshold_is_not_a_match():
    m = Matcher()
    listing = Listing(name="abcdefg", source="yelp", phone="705 555 0100")
    candidate = Restaurant(id=1, name="abcdef", phone="(705) 555-0100")

    assert m.component_scores(listing, candidate) == {"name": 30, "address": 0, "gps": 0, "phone": 20}
    assert m.score(listing, candidate) == 50
    assert m.is_match(listing, candidate) is False
    assert m.best_match(listing, [candidate]) is None


def test_full_name_plus_partial_gps_at_threshold_is_rejected(monkeypatch):
    monkeypatch.setattr(matcher, "haversine_distance", lambda *coords: 80.0)
    listing = Listing(name="Joe's Pizza", source="yelp", latitude=44.3894, longitude=-79.6903)
    candidate = Restaurant(id=1, name="Joe's Pizza", latitude=44.3901, longitude=-79.6903)

    assert Matcher().component_scores(listing, candidate)["gps"] == 15
    assert Matcher().score(listing, candidate) == 50
    assert Matcher().best_match(listing, [candidate]) is None


@pytest.mark.parametrize("distance, expected", [(250.0, 0), (200.0, 0), (190.0, 1), (80.0, 15)])
def test_gps_score_at_cutoff(monkeypatch, distance, expected):
    monkeypatch.setattr(matcher, "haversine_distance", lambda *coords: distance)
    listing = joes_listing(name=None, address=None, phone=None)

    scores = Matcher().component_scores(listing, joes_restaurant(name=None, address=None, phone=None))

    assert scores["gps"] == expected


def test_score_is_symmetric():
    a = joes_listing(address="123 Main St", latitude=44.3897)
    b = joes_listing(name="Joes Pizzeria", phone=None)
    m = Matcher()
    assert m.score(a, b) == m.score(b, a)


def test_best_match_picks_highest_scoring_candidate():
    weak = joes_restaurant(id=1, name="Sushi Palace", address="9 Dunlop St", phone=None, latitude=44.40)
    strong = joes_restaurant(id=2)

    assert Matcher().best_match(joes_listing(), [weak, strong]) is strong


def test_best_match_keeps_first_on_tie():
    first = joes_restaurant(id=1)
    second = joes_restaurant(id=2)
    assert Matcher().best_match(joes_listing(), [first, second]) is first


def test_best_match_returns_none_below_threshold():
    candidate = Restaurant(id=1, name="Completely Different")
    assert Matcher().best_match(joes_listing(), [candidate]) is None
    assert Matcher().best_match(joes_listing(), []) is None


@pytest.mark.parametrize(
    "lat1, lon1, lat2, lon2, expected",
    [
        (44.3894, -79.6903, 44.3894, -79.6903, 0.0),
        (0.0, 0.0, 0.0, 1.0, 111_195.0),
    ],
)
def test_haversine_distance(lat1, lon1, lat2, lon2, expected):
    assert matcher.haversine_distance(lat1, lon1, lat2, lon2) == pytest.approx(expected, abs=1.0)
