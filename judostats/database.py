# judostats/database.py

import json
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from judostats.models import Competition, JudokaProfile, Technique, utc_now_iso
from judostats.settings import DEFAULT_DB_PATH, PROJECT_ROOT

logger = logging.getLogger(__name__)

TECHNIQUE_COLUMNS = (
    "competitor_id",
    "competitor_name",
    "technique_name",
    "technique_type",
    "technique_category",
    "side",
    "score",
    "timestamp",
    "note",
    "competition_id",
    "match_contest_code",
    "competition_name",
    "weight_class",
    "gender",
    "event_type",
    "score_group",
    "opponent_id",
    "opponent_name",
    "opponent_country",
)

INDEXES = (
    ("idx_techniques_competition_id", "techniques", "competition_id"),
    ("idx_techniques_technique_name", "techniques", "technique_name"),
    ("idx_techniques_competitor_id", "techniques", "competitor_id"),
    ("idx_techniques_opponent_id", "techniques", "opponent_id"),
    ("idx_techniques_gender", "techniques", "gender"),
    ("idx_techniques_weight_class", "techniques", "weight_class"),
    ("idx_techniques_event_type", "techniques", "event_type"),
    ("idx_techniques_technique_category", "techniques", "technique_category"),
    ("idx_techniques_score_group", "techniques", "score_group"),
    ("idx_competitions_year", "competitions", "year"),
    ("idx_judoka_profiles_height", "judoka_profiles", "height"),
)


class Database:
    """Handle all database operations."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = self._resolve_db_path(db_path)
        self.conn = None
        self.init_database()

    @staticmethod
    def _resolve_db_path(db_path: str) -> str:
        """Return an absolute database path anchored to project root when relative."""
        if db_path == ":memory:":
            return db_path
        path = Path(db_path)
        if path.is_absolute():
            return str(path)
        return str(PROJECT_ROOT / path)

    def init_database(self):
        """Create tables and indexes if they don't exist."""
        try:
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                try:
                    os.makedirs(db_dir, exist_ok=True)
                except OSError as e:
                    raise RuntimeError(f"Failed to create database directory '{db_dir}': {e}")

            # Opened on the caller thread, used from the event loop thread.
            self.conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA busy_timeout = 30000")
            self._set_wal_mode_best_effort()

            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS competitions (
                    id INTEGER PRIMARY KEY,
                    competition_id INTEGER UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    date TEXT,
                    location TEXT,
                    event_type TEXT,
                    year INTEGER,
                    categories_json TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS techniques (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    competitor_id TEXT,
                    competitor_name TEXT,
                    technique_name TEXT NOT NULL,
                    technique_type TEXT,
                    technique_category TEXT,
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
                    score_group TEXT,
                    opponent_id TEXT,
                    opponent_name TEXT,
                    opponent_country TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS judoka_profiles (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    height INTEGER,
                    age INTEGER,
                    country TEXT,
                    last_updated TEXT
                )
            """)

            self._commit_with_retry(context="init schema commit")
            self._migrate_schema()

            for index_name, table, column in INDEXES:
                cursor.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {table}({column})")
            self._commit_with_retry(context="create indexes commit")
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize database at '{self.db_path}': {e}")

    def _migrate_schema(self) -> None:
        """
        Apply additive, idempotent schema migrations for older local databases.
        """
        try:
            self._add_column_if_missing("techniques", "technique_category TEXT", "technique_category")
            self._add_column_if_missing("techniques", "opponent_id TEXT", "opponent_id")
            self._add_column_if_missing("techniques", "opponent_name TEXT", "opponent_name")
            self._add_column_if_missing("techniques", "opponent_country TEXT", "opponent_country")
            self._commit_with_retry(context="migrate schema commit")
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to migrate database schema: {e}")

    def _commit_with_retry(self, retries: int = 8, delay_seconds: float = 0.25, context: str = "commit") -> None:
        """
        Retry commit on transient SQLITE_BUSY/locked errors.
        """
        last_error = None
        for attempt in range(retries):
            try:
                self.conn.commit()
                return
            except sqlite3.OperationalError as e:
                last_error = e
                if "locked" not in str(e).lower() and "busy" not in str(e).lower():
                    raise
                if attempt == retries - 1:
                    break
                time.sleep(delay_seconds)
        raise RuntimeError(
            f"Failed to {context}: database remained locked after {retries} attempts ({last_error})"
        )

    def _set_wal_mode_best_effort(self, retries: int = 5, delay_seconds: float = 0.2) -> None:
        """Try to enable WAL without failing startup if the DB is temporarily locked."""
        for attempt in range(retries):
            try:
                self.conn.execute("PRAGMA journal_mode = WAL")
                return
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                if "locked" not in msg and "busy" not in msg:
                    raise
                if attempt == retries - 1:
                    logger.warning("Could not enable WAL mode (database locked); continuing. (%s)", e)
                    return
                time.sleep(delay_seconds)

    def _get_table_columns(self, table_name: str) -> set:
        cursor = self.conn.cursor()
        cursor.execute(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in cursor.fetchall()}

    def _add_column_if_missing(self, table_name: str, column_sql: str, column_name: str) -> None:
        columns = self._get_table_columns(table_name)
        if column_name not in columns:
            logger.info("Adding column %s.%s", table_name, column_name)
            cursor = self.conn.cursor()
            cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")

    # --- Competitions ---

    def _upsert_competition(self, cursor: sqlite3.Cursor, competition: Competition) -> None:
        cursor.execute("""
            INSERT INTO competitions (
                competition_id, name, date, location, event_type, year, categories_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(competition_id) DO UPDATE SET
                name = excluded.name,
                date = excluded.date,
                location = excluded.location,
                event_type = excluded.event_type,
                year = excluded.year,
                categories_json = excluded.categories_json
        """, (
            competition.competition_id,
            competition.name or "",
            competition.date,
            competition.location,
            competition.event_type,
            competition.year,
            competition.categories_json(),
        ))

    def upsert_competition(self, competition: Competition) -> None:
        """Insert or replace a competition row, including its category blob."""
        try:
            self._upsert_competition(self.conn.cursor(), competition)
            self._commit_with_retry(context=f"save competition {competition.competition_id}")
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to save competition {competition.competition_id}: {e}")

    def get_competition(self, competition_id: int) -> Optional[Competition]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM competitions WHERE competition_id = ?", (competition_id,))
            row = cursor.fetchone()
            return Competition.from_row(row) if row else None
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to get competition {competition_id}: {e}")

    def get_all_competitions(self) -> List[Competition]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM competitions ORDER BY year DESC, date DESC, competition_id DESC")
            return [Competition.from_row(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to list competitions: {e}")

    def get_competition_ids(self) -> set:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT competition_id FROM competitions")
            return {int(row["competition_id"]) for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to list competition ids: {e}")

    def get_competition_years(self) -> List[int]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT DISTINCT year FROM competitions WHERE year IS NOT NULL ORDER BY year DESC")
            return [int(row["year"]) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to list competition years: {e}")

    def get_competitions_with_techniques(self) -> List[Dict[str, Any]]:
        """Competitions that have at least one stored technique, with counts."""
        try:
            cursor = self.conn.cursor()
            cursor.execute("""
                SELECT c.competition_id, c.name, c.date, c.location, c.event_type, c.year,
                       COUNT(t.id) AS technique_count
                FROM competitions c
                INNER JOIN techniques t ON t.competition_id = c.competition_id
                GROUP BY c.competition_id
                ORDER BY c.year DESC, c.date DESC
            """)
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to list competitions with techniques: {e}")

    # --- Techniques ---

    @staticmethod
    def _technique_values(technique: Technique) -> tuple:
        data = technique.to_dict()
        return tuple(data[column] for column in TECHNIQUE_COLUMNS)

    def _insert_techniques(self, cursor: sqlite3.Cursor, techniques: Iterable[Technique]) -> int:
        rows = [self._technique_values(t) for t in techniques]
        if rows:
            placeholders = ", ".join("?" for _ in TECHNIQUE_COLUMNS)
            cursor.executemany(
                f"INSERT INTO techniques ({', '.join(TECHNIQUE_COLUMNS)}) VALUES ({placeholders})",
                rows,
            )
        return len(rows)

    def add_techniques(self, techniques: Iterable[Technique]) -> int:
        """Insert techniques in one transaction. Returns the number inserted."""
        try:
            count = self._insert_techniques(self.conn.cursor(), techniques)
            self._commit_with_retry(context="add techniques")
            return count
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to add techniques: {e}")

    def remove_techniques_for_competition(self, competition_id: int) -> int:
        try:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM techniques WHERE competition_id = ?", (competition_id,))
            self._commit_with_retry(context=f"remove techniques for {competition_id}")
            return cursor.rowcount
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to remove techniques for competition {competition_id}: {e}")

    def replace_competition_techniques(
        self,
        competition_id: int,
        techniques: Iterable[Technique],
        competition: Optional[Competition] = None,
    ) -> int:
        """
        Replace every technique of a competition in a single transaction.

        Existing rows for ``competition_id`` are deleted before the new set is
        inserted; when ``competition`` is given its row is upserted too.
        Returns the number of techniques inserted.
        """
        try:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM techniques WHERE competition_id = ?", (competition_id,))
            removed = cursor.rowcount
            count = self._insert_techniques(cursor, techniques)
            if competition is not None:
                self._upsert_competition(cursor, competition)
            self._commit_with_retry(context=f"replace techniques for {competition_id}")
            if removed:
                logger.debug("Replaced %s old techniques for competition %s", removed, competition_id)
            return count
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to replace techniques for competition {competition_id}: {e}")

    def get_techniques_filtered(
        self,
        competition_id: Optional[int] = None,
        technique_name: Optional[str] = None,
        min_score: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict]:
        """Raw technique rows filtered by competition, name substring and minimum score."""
        clauses = []
        params: List[Any] = []
        if competition_id is not None:
            clauses.append("competition_id = ?")
            params.append(competition_id)
        if technique_name:
            clauses.append("technique_name LIKE ?")
            params.append(f"%{technique_name}%")
        if min_score is not None:
            clauses.append("score >= ?")
            params.append(min_score)
        sql = "SELECT * FROM techniques"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        try:
            cursor = self.conn.cursor()
            cursor.execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to query techniques: {e}")

    def count_techniques(self, competition_id: Optional[int] = None) -> int:
        try:
            cursor = self.conn.cursor()
            if competition_id is None:
                cursor.execute("SELECT COUNT(*) AS n FROM techniques")
            else:
                cursor.execute("SELECT COUNT(*) AS n FROM techniques WHERE competition_id = ?", (competition_id,))
            return int(cursor.fetchone()["n"])
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to count techniques: {e}")

    # --- Judoka profiles ---

    @staticmethod
    def _profile_values(profile: JudokaProfile) -> tuple:
        return (
            str(profile.id),
            profile.name,
            profile.height,
            profile.age,
            profile.country,
            profile.last_updated,
        )

    _PROFILE_UPSERT = """
        INSERT INTO judoka_profiles (id, name, height, age, country, last_updated)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            height = excluded.height,
            age = excluded.age,
            country = excluded.country,
            last_updated = excluded.last_updated
    """

    def upsert_judoka_profile(self, profile: JudokaProfile) -> None:
        try:
            self.conn.execute(self._PROFILE_UPSERT, self._profile_values(profile))
            self._commit_with_retry(context=f"save profile {profile.id}")
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to save judoka profile {profile.id}: {e}")

    def upsert_judoka_profiles(self, profiles: Iterable[JudokaProfile]) -> int:
        rows = [self._profile_values(p) for p in profiles]
        if not rows:
            return 0
        try:
            self.conn.executemany(self._PROFILE_UPSERT, rows)
            self._commit_with_retry(context="save profile batch")
            return len(rows)
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to save {len(rows)} judoka profiles: {e}")

    def get_judoka_profile(self, judoka_id: str) -> Optional[JudokaProfile]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM judoka_profiles WHERE id = ?", (str(judoka_id),))
            row = cursor.fetchone()
            return JudokaProfile.from_row(row) if row else None
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to get judoka profile {judoka_id}: {e}")

    def get_all_judoka_profiles(self) -> List[JudokaProfile]:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM judoka_profiles ORDER BY id")
            return [JudokaProfile.from_row(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to list judoka profiles: {e}")

    def get_judoka_profile_ids(self) -> set:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT id FROM judoka_profiles")
            return {str(row["id"]) for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to list judoka profile ids: {e}")

    def update_judoka_profile(self, judoka_id: str, updates: Dict[str, Any]) -> JudokaProfile:
        """Merge ``updates`` into an existing profile (or a new blank one) and save it."""
        profile = self.get_judoka_profile(judoka_id) or JudokaProfile(id=str(judoka_id))
        for key in ("name", "height", "age", "country"):
            if key in updates and updates[key] is not None:
                setattr(profile, key, updates[key])
        profile.last_updated = utc_now_iso()
        self.upsert_judoka_profile(profile)
        return profile

    def get_all_unique_judoka_ids(self) -> List[str]:
        """Every athlete id seen as performer, opponent or match competitor."""
        ids: set = set()
        try:
            cursor = self.conn.cursor()
            cursor.execute("""
                SELECT competitor_id AS judoka_id FROM techniques WHERE competitor_id IS NOT NULL
                UNION
                SELECT opponent_id FROM techniques WHERE opponent_id IS NOT NULL
            """)
            ids.update(str(row["judoka_id"]) for row in cursor.fetchall())

            cursor.execute("SELECT categories_json FROM competitions WHERE categories_json IS NOT NULL")
            for row in cursor.fetchall():
                try:
                    categories = json.loads(row["categories_json"])
                except (TypeError, ValueError):
                    continue
                for category in categories or []:
                    for match in category.get("matches") or []:
                        for competitor in match.get("competitors") or []:
                            if competitor.get("id") is not None:
                                ids.add(str(competitor["id"]))
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to collect judoka ids: {e}")
        ids.discard("")
        ids.discard("0")
        return sorted(ids)

    # --- Maintenance ---

    def clear_all(self) -> Dict[str, int]:
        """Delete every row from every table and reclaim space."""
        try:
            cursor = self.conn.cursor()
            counts = {}
            for table in ("techniques", "competitions", "judoka_profiles"):
                cursor.execute(f"DELETE FROM {table}")
                counts[table] = cursor.rowcount
            self._commit_with_retry(context="clear database")
            self.conn.execute("VACUUM")
            logger.info("Cleared database %s: %s", self.db_path, counts)
            return counts
        except sqlite3.Error as e:
            self.conn.rollback()
            raise RuntimeError(f"Failed to clear database: {e}")

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
