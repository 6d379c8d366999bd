# tests/test_database.py

import os
import sqlite3
import tempfile

import pytest

from judostats.database import INDEXES, TECHNIQUE_COLUMNS, Database
from judostats.models import Category, Competition, Competitor, JudokaProfile, Match
from tests.helpers import create_temp_db, make_technique, remove_temp_db, seed_competition


class TestDatabase:
    """Test suite for database operations."""

    @pytest.fixture
    def db(self):
        database, db_path = create_temp_db()
        yield database
        remove_temp_db(database, db_path)

    def test_schema_tables_and_indexes(self, db):
        cursor = db.conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row["name"] for row in cursor.fetchall()}
        assert {"competitions", "techniques", "judoka_profiles"} <= tables

        cursor.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
        indexes = {row["name"] for row in cursor.fetchall()}
        for index_name, _, _ in INDEXES:
            assert index_name in indexes

        columns = db._get_table_columns("techniques")
        assert set(TECHNIQUE_COLUMNS) <= columns

    def test_relative_path_is_anchored_to_project_root(self):
        resolved = Database._resolve_db_path("data/x.db")
        assert os.path.isabs(resolved)
        assert resolved.endswith(os.path.join("data", "x.db"))
        assert Database._resolve_db_path(":memory:") == ":memory:"

    def test_upsert_competition_round_trips_categories(self, db):
        competition = Competition(
            competition_id=3081,
            name="Grand Prix Mexico",
            date="2025-02-02",
            location="Guadalajara",
            event_type="seniors",
            year=2025,
            categories=[
                Category(
                    id=3081002,
                    weight_id=2,
                    weight_class="-66",
                    gender="m",
                    matches=[Match(contest_code="gp_1", competitors=[Competitor(id="11111", name="GARCIA Juan")])],
                )
            ],
        )
        db.upsert_competition(competition)
        stored = db.get_competition(3081)
        assert stored.name == "Grand Prix Mexico"
        assert stored.year == 2025
        assert stored.match_count == 1
        assert stored.categories[0].matches[0].competitors[0].id == "11111"

        competition.name = "Grand Prix Mexico 2025"
        db.upsert_competition(competition)
        assert db.get_competition(3081).name == "Grand Prix Mexico 2025"
        assert db.get_competition_ids() == {3081}
        assert db.get_competition(999) is None

    def test_replace_competition_techniques_is_idempotent(self, db):
        techniques = [make_technique(), make_technique(technique_name="Uchi-mata", score=10, score_group="Ippon")]
        seed_competition(db, 1, 2024, techniques)
        seed_competition(db, 1, 2024, techniques)
        assert db.count_techniques(1) == 2

        inserted = db.replace_competition_techniques(1, [make_technique()])
        assert inserted == 1
        assert db.count_techniques() == 1
        assert db.get_competition(1) is not None

    def test_replace_only_touches_one_competition(self, db):
        seed_competition(db, 1, 2024, [make_technique()])
        seed_competition(db, 2, 2023, [make_technique(competition_id=2)])
        db.replace_competition_techniques(1, [])
        assert db.count_techniques(1) == 0
        assert db.count_techniques(2) == 1

    def test_remove_techniques_for_competition(self, db):
        seed_competition(db, 1, 2024, [make_technique(), make_technique()])
        assert db.remove_techniques_for_competition(1) == 2
        assert db.count_techniques() == 0

    def test_get_techniques_filtered(self, db):
        seed_competition(db, 1, 2024, [
            make_technique(technique_name="Seoi-nage", score=5, score_group="Yuko"),
            make_technique(technique_name="Ippon-seoi-nage", score=10, score_group="Ippon"),
            make_technique(technique_name="Uchi-mata", score=7),
        ])
        rows = db.get_techniques_filtered(technique_name="seoi")
        assert [r["technique_name"] for r in rows] == ["Seoi-nage", "Ippon-seoi-nage"]
        rows = db.get_techniques_filtered(min_score=7)
        assert {r["technique_name"] for r in rows} == {"Ippon-seoi-nage", "Uchi-mata"}
        assert len(db.get_techniques_filtered(limit=1)) == 1

    def test_competitions_with_techniques(self, db):
        seed_competition(db, 1, 2024, [make_technique(), make_technique()])
        db.upsert_competition(Competition(competition_id=2, name="Empty", year=2023))
        rows = db.get_competitions_with_techniques()
        assert [(r["competition_id"], r["technique_count"]) for r in rows] == [(1, 2)]
        assert db.get_competition_years() == [2024, 2023]

    def test_profile_upsert_and_update(self, db):
        db.upsert_judoka_profile(JudokaProfile(id="100", name="Judoka ONE", height=178, age=25, country="France"))
        db.upsert_judoka_profiles([
            JudokaProfile(id="100", name="Judoka ONE", height=179, age=26, country="France"),
            JudokaProfile(id="200", name="Judoka TWO"),
        ])
        assert db.get_judoka_profile("100").height == 179
        assert db.get_judoka_profile_ids() == {"100", "200"}
        assert db.upsert_judoka_profiles([]) == 0

        updated = db.update_judoka_profile("200", {"height": 185, "name": None})
        assert updated.height == 185
        assert updated.name == "Judoka TWO"
        assert db.get_judoka_profile("200").height == 185

        created = db.update_judoka_profile("300", {"age": 30})
        assert created.age == 30
        assert [p.id for p in db.get_all_judoka_profiles()] == ["100", "200", "300"]

    def test_unique_judoka_ids_cover_performers_opponents_and_competitors(self, db):
        competition = Competition(
            competition_id=1,
            name="One",
            year=2024,
            categories=[Category(id=1002, weight_id=2, weight_class="-66", matches=[
                Match(contest_code="c1", competitors=[Competitor(id="300"), Competitor(id="0")]),
            ])],
        )
        db.replace_competition_techniques(1, [
            make_technique(competitor_id="100", opponent_id="200"),
            make_technique(competitor_id="", opponent_id=None),
        ], competition)
        assert db.get_all_unique_judoka_ids() == ["100", "200", "300"]

    def test_clear_all(self, db):
        seed_competition(db, 1, 2024, [make_technique()])
        db.upsert_judoka_profile(JudokaProfile(id="100"))
        counts = db.clear_all()
        assert counts == {"techniques": 1, "competitions": 1, "judoka_profiles": 1}
        assert db.count_techniques() == 0
        assert db.get_all_competitions() == []
        assert db.get_all_judoka_profiles() == []


def test_migrates_old_techniques_table():
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE techniques (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            competitor_id TEXT,
            competitor_name TEXT,
            technique_name TEXT NOT NULL,
            technique_type TEXT,
            side TEXT,
            score INTEGER,
            timestamp TEXT,
            note TEXT,
            competition_id INTEGER,
            match_contest_code TEXT,
            competition_name TEXT,
            weight_class TEXT,
            gender TEXT,
            event_type TEXT,
            score_group TEXT
        )
    """)
    conn.execute("INSERT INTO techniques (technique_name, score, competition_id) VALUES ('Seoi-nage', 7, 1)")
    conn.commit()
    conn.close()

    database = Database(db_path)
    try:
        columns = database._get_table_columns("techniques")
        assert {"technique_category", "opponent_id", "opponent_name", "opponent_country"} <= columns
        rows = database.get_techniques_filtered()
        assert rows[0]["technique_name"] == "Seoi-nage"
        assert rows[0]["technique_category"] is None
    finally:
        remove_temp_db(database, db_path)
