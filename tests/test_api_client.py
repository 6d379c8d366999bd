import json
from io import BytesIO
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urlparse

import pytest

import judostats.api_client as api_module
from judostats.api_client import IJFAPIClient
from tests.helpers import SAMPLE_CONTEST, load_json


@pytest.fixture
def client():
    return IJFAPIClient(backoff_seconds=0)


class _FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_build_url_uses_action_params(client):
    url = client._build_url("contest.find", id_competition=3081, id_weight=2, order_by="cnum")
    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://data.ijf.org/api/get_json?")
    assert query["params[action]"] == ["contest.find"]
    assert query["params[id_competition]"] == ["3081"]
    assert query["params[id_weight]"] == ["2"]
    assert query["params[order_by]"] == ["cnum"]


def test_parse_competition_list_handles_alternate_fields(client):
    payload = [
        {"id_competition": "3081", "name": "Grand Prix Mexico", "date_to": "2025-02-02",
         "city": "Guadalajara", "ages": ["seniors"], "comp_year": "2025"},
        {"id": 12, "nm": "Old Open", "dt_end": "2009-05-01", "loc": "Rome", "ev_typ": "open", "yr": 2009},
        {"name": "missing id"},
        "garbage",
    ]
    competitions = client.parse_competition_list(payload)
    assert [c.competition_id for c in competitions] == [3081, 12]
    mexico, rome = competitions
    assert (mexico.name, mexico.date, mexico.location, mexico.event_type, mexico.year) == (
        "Grand Prix Mexico", "2025-02-02", "Guadalajara", "seniors", 2025,
    )
    assert (rome.name, rome.date, rome.location, rome.event_type, rome.year) == (
        "Old Open", "2009-05-01", "Rome", "open", 2009,
    )


def test_parse_competition_list_rejects_non_list(client):
    assert client.parse_competition_list(None) == []
    assert client.parse_competition_list({"error": "nope"}) == []


def test_parse_categories_flattens_gender_groups(client):
    payload = {
        "1": {"gender": "m", "categories": {"1": "-60", "2": "-66"}},
        "2": {"gender": "f", "categories": {"8": "-48"}},
        "3": "junk",
    }
    categories = client.parse_categories(payload, 3081)
    by_label = {(c.gender, c.weight_class): c for c in categories}
    assert set(by_label) == {("m", "-60"), ("m", "-66"), ("f", "-48")}
    minus66 = by_label[("m", "-66")]
    assert minus66.weight_id == 2
    assert minus66.id == 3081 * 1000 + 2


def test_parse_categories_accepts_list(client):
    categories = client.parse_categories([{"id_weight": 2, "nm": "-66", "gender": "m"}], 7)
    assert len(categories) == 1
    assert categories[0].id == 7002


def test_parse_contest_list_envelopes(client):
    wrapped = {"contests": [{"contest_code_long": "a_1", "fight_no": 5}, {"code": "a_2"}, {"nothing": 1}]}
    bare = [{"contest_code_long": "a_1"}]
    assert [m.contest_code for m in client.parse_contest_list(wrapped)] == ["a_1", "a_2"]
    assert client.parse_contest_list(wrapped)[0].match_number == "5"
    assert [m.contest_code for m in client.parse_contest_list(bare)] == ["a_1"]
    assert client.parse_contest_list(None) == []


def test_parse_match_detail_from_fixture(client):
    detail = client.parse_match_detail(load_json(f"contest_{SAMPLE_CONTEST}.json"))
    assert detail.contest_code == SAMPLE_CONTEST
    assert len(detail.events) == 6
    assert [(c.id, c.name, c.country_code, c.is_winner) for c in detail.competitors] == [
        ("11111", "GARCIA Juan", "MEX", True),
        ("22222", "SMITH John", "USA", False),
    ]


def test_parse_match_detail_flat_competitors(client):
    payload = {"contests": [{
        "contest_code_long": "x_1",
        "id_person_blue": 5, "person_blue": "BLUE Person", "country_short_blue": "FRA",
        "id_person_white": 6, "person_white": "WHITE Person", "country_short_white": "JPN",
        "id_winner": 6,
        "events": [],
    }]}
    detail = client.parse_match_detail(payload)
    assert [(c.id, c.is_winner) for c in detail.competitors] == [("5", False), ("6", True)]


def test_parse_match_detail_empty(client):
    assert client.parse_match_detail({"contests": []}) is None
    assert client.parse_match_detail(None) is None


def test_parse_competitor_info(client):
    profile = client.parse_competitor_info(
        {"given_name": "Juan", "family_name": "GARCIA", "height": "178", "age": "24", "country_short": "MEX"},
        "11111",
    )
    assert (profile.id, profile.name, profile.height, profile.age, profile.country) == (
        "11111", "Juan GARCIA", 178, 24, "MEX",
    )
    assert profile.last_updated
    assert client.parse_competitor_info(None, "1") is None

    unknown = client.parse_competitor_info({"given_name": "A", "family_name": "B", "height": "0", "age": ""}, "2")
    assert unknown.height is None
    assert unknown.age is None


def test_get_match_details_passes_parts(client, monkeypatch):
    seen = {}

    def fake_get_json(url, retry_429=True):
        seen["query"] = parse_qs(urlparse(url).query)
        return load_json(f"contest_{SAMPLE_CONTEST}.json")

    monkeypatch.setattr(client, "_get_json", fake_get_json)
    detail = client.get_match_details(SAMPLE_CONTEST)
    assert detail.contest_code == SAMPLE_CONTEST
    assert seen["query"]["params[part]"] == ["info,score_list,media,events"]
    assert seen["query"]["params[contest_code]"] == [SAMPLE_CONTEST]


def test_transport_failure_returns_none(client, monkeypatch):
    def boom(req, timeout=0):
        raise URLError("connection refused")

    monkeypatch.setattr(api_module, "urlopen", boom)
    assert client._get_json("https://example.invalid") is None
    assert client.get_all_competitions() == []
    assert client.get_match_details("x") is None
    assert client.get_profile("1") is None


def test_http_error_returns_none(client, monkeypatch):
    def not_found(req, timeout=0):
        raise HTTPError(req.full_url, 500, "Server Error", hdrs=None, fp=BytesIO(b""))

    monkeypatch.setattr(api_module, "urlopen", not_found)
    assert client._get_json("https://data.ijf.org/api/get_json") is None


def test_retry_once_on_429(client, monkeypatch):
    calls = {"n": 0}

    def flaky(req, timeout=0):
        calls["n"] += 1
        if calls["n"] == 1:
            raise HTTPError(req.full_url, 429, "Too Many Requests", hdrs=None, fp=BytesIO(b""))
        return _FakeResponse([{"id": 1, "nm": "Open"}])

    monkeypatch.setattr(api_module, "urlopen", flaky)
    monkeypatch.setattr(api_module.time, "sleep", lambda s: None)
    competitions = client.get_all_competitions()
    assert calls["n"] == 2
    assert [c.competition_id for c in competitions] == [1]


def test_second_429_gives_up(client, monkeypatch):
    calls = {"n": 0}

    def limited(req, timeout=0):
        calls["n"] += 1
        raise HTTPError(req.full_url, 429, "Too Many Requests", hdrs=None, fp=BytesIO(b""))

    monkeypatch.setattr(api_module, "urlopen", limited)
    monkeypatch.setattr(api_module.time, "sleep", lambda s: None)
    assert client._get_json("https://data.ijf.org/api/get_json") is None
    assert calls["n"] == 2
