# tests/helpers.py

import copy
import json
import os
import tempfile
import threading

from judostats.api_client import IJFAPIClient
from judostats.database import Database
from judostats.models import Category, Competition, Competitor, JudokaProfile, Match, MatchDetail, Technique

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")
SAMPLE_CONTEST = "gp_mex2025_0001_m_0066_0021"


def load_json(filename: str):
    with open(os.path.join(FIXTURES_DIR, filename), "r", encoding="utf-8") as f:
        return json.load(f)


def load_sample_detail() -> MatchDetail:
    return IJFAPIClient().parse_match_detail(load_json(f"contest_{SAMPLE_CONTEST}.json"))


def create_temp_db():
    """Return (database, path) for a fresh temporary database file."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return Database(db_path), db_path


def remove_temp_db(database: Database, db_path: str) -> None:
    database.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.remove(db_path + suffix)


def make_technique(**overrides) -> Technique:
    values = {
        "technique_name": "Seoi-nage",
        "score": 7,
        "score_group": "Waza-ari",
        "competitor_id": "100",
        "competitor_name": "ONE Judoka",
        "side": "Left",
        "competition_id": 1,
        "match_contest_code": "c1_m_0066_0001",
        "competition_name": "Grand Prix One",
        "weight_class": "-66",
        "gender": "m",
        "event_type": "seniors",
        "opponent_id": "200",
        "opponent_name": "TWO Judoka",
        "opponent_country": "Japan",
    }
    values.update(overrides)
    return Technique(**values)


def seed_competition(db: Database, competition_id: int, year: int, techniques, name: str = "") -> Competition:
    competition = Competition(
        competition_id=competition_id,
        name=name or f"Competition {competition_id}",
        date=f"{year}-06-01",
        location="Somewhere",
        event_type="seniors",
        year=year,
    )
    db.replace_competition_techniques(competition_id, list(techniques), competition)
    return competition


def technique_event(name, group, side="Left", actor_id=100, family="ONE", given="Judoka"):
    tags = [{"name": name, "code_short": name.lower().replace("-", ""), "group_name": group}]
    if side:
        tags.append({"name": side, "code_short": side.lower(), "group_name": "Direction"})
    return {
        "id_contest_event_type": 1,
        "time_real": "01:00",
        "tags": tags,
        "actors": [{"id_person": actor_id, "family_name": family, "given_name": given}],
    }


def shido_event(name="Passivity", actor_id=200):
    return {
        "id_contest_event_type": 3,
        "tags": [{"name": name, "code_short": "passivity", "group_name": "Shido"}],
        "actors": [{"id_person": actor_id, "family_name": "TWO", "given_name": "Judoka"}],
    }


def make_detail(code, events, competitors=None) -> MatchDetail:
    if competitors is None:
        competitors = [
            Competitor(id="100", name="ONE Judoka", country="France", country_code="FRA", is_winner=True),
            Competitor(id="200", name="TWO Judoka", country="Japan", country_code="JPN"),
        ]
    return MatchDetail(contest_code=code, competitors=competitors, events=events)


class FakeIJFClient:
    """In-memory stand-in for IJFAPIClient used by crawler tests."""

    def __init__(self, competitions=None, categories=None, matches=None, details=None, profiles=None):
        self.competitions = competitions or []
        self.categories = categories or {}
        self.matches = matches or {}
        self.details = details or {}
        self.profiles = profiles or {}
        self.fail_categories = set()
        self.fail_profiles = set()
        self.detail_calls = []
        self.profile_calls = []
        self._lock = threading.Lock()

    def get_all_competitions(self):
        return copy.deepcopy(self.competitions)

    def get_competition_categories(self, competition_id):
        if competition_id in self.fail_categories:
            raise RuntimeError(f"boom {competition_id}")
        return copy.deepcopy(self.categories.get(competition_id, []))

    def get_matches(self, competition_id, weight_id):
        return copy.deepcopy(self.matches.get((competition_id, weight_id), []))

    def get_match_details(self, contest_code):
        with self._lock:
            self.detail_calls.append(contest_code)
        return copy.deepcopy(self.details.get(contest_code))

    def get_profile(self, judoka_id):
        with self._lock:
            self.profile_calls.append(judoka_id)
        if judoka_id in self.fail_profiles:
            raise RuntimeError(f"profile boom {judoka_id}")
        profile = self.profiles.get(judoka_id)
        return copy.deepcopy(profile) if profile else None


def build_fake_world():
    """
    Two competitions:
      10: one category (-66, 4 matches with techniques) and one category
          (-73) whose first matches carry no techniques.
      20: no categories at all.
    """
    competitions = [
        Competition(competition_id=10, name="Grand Prix Ten", date="2024-03-01", location="Paris",
                    event_type="seniors", year=2024),
        Competition(competition_id=20, name="Open Twenty", date="2023-05-01", location="Rome",
                    event_type="seniors", year=2023),
    ]
    categories = {
        10: [
            Category(id=10002, weight_id=2, weight_class="-66", gender="m"),
            Category(id=10003, weight_id=3, weight_class="-73", gender="m"),
        ],
        20: [],
    }
    scoring_codes = [f"c10_m_0066_000{i}" for i in range(1, 5)]
    empty_codes = [f"c10_m_0073_000{i}" for i in range(1, 6)]
    matches = {
        (10, 2): [Match(contest_code=code, match_number=str(i)) for i, code in enumerate(scoring_codes, 1)],
        (10, 3): [Match(contest_code=code, match_number=str(i)) for i, code in enumerate(empty_codes, 1)],
    }
    details = {
        scoring_codes[0]: make_detail(scoring_codes[0], [technique_event("Seoi-nage", "Ippon"), shido_event()]),
        scoring_codes[1]: make_detail(scoring_codes[1], [technique_event("Uchi-mata", "Waza-ari", side="Right")]),
        scoring_codes[2]: make_detail(scoring_codes[2], [shido_event()]),
        scoring_codes[3]: make_detail(scoring_codes[3], [
            technique_event("O-soto-gari", "Waza-ari", actor_id=200, family="TWO"),
            technique_event("Kesa-gatame", "Ippon"),
        ]),
    }
    for code in empty_codes:
        details[code] = make_detail(code, [shido_event()])
    profiles = {
        "100": JudokaProfile(id="100", name="Judoka ONE", height=178, age=25, country="France"),
        "200": JudokaProfile(id="200", name="Judoka TWO", height=185, age=27, country="Japan"),
    }
    return FakeIJFClient(competitions, categories, matches, details, profiles)
