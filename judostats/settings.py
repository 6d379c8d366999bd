"""
judostats/settings.py
=====================
Shared constants and configuration lookups.
"""

from __future__ import annotations

import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_DB_PATH = "data/judostats.db"
DB_PATH_ENV = "JUDOSTATS_DB_PATH"

# Remote API
IJF_API_BASE = "https://data.ijf.org/api/get_json"
JUDOBASE_CONTEST_URL = "https://judobase.ijf.org/#/competition/contest/{code}"
REQUEST_TIMEOUT_SECONDS = 20
RATE_LIMIT_BACKOFF_SECONDS = 10.0

# Crawl
DEFAULT_WORKERS = 20
SAMPLE_MATCHES = 3
PROFILE_SAVE_EVERY = 50

# Result cache
CACHE_TTL_SECONDS = 5 * 60
CACHE_TTL_UNFILTERED_SECONDS = 60 * 60

# Aggregation
WALKOVER_TECHNIQUES = ("fusen-gachi", "fusen gachi")
SCORE_GROUP_ORDER = ("Ippon", "Waza-ari", "Yuko")
TOP_TECHNIQUES_LIMIT = 50
TOP_PER_GROUP_LIMIT = 20
TOP_JUDOKA_LIMIT = 10
HARDEST_TO_SCORE_MIN_COMPETITIONS = 5
JUDOKA_LIST_LIMIT = 100

HEIGHT_PERCENTILES = (0.10, 0.25, 0.35, 0.40, 0.50, 0.60, 0.70, 0.75, 0.80, 0.90)
CANONICAL_HEIGHT_BOUNDARY = 182


def resolve_db_path(arg_db: str | None = None) -> str:
    """Pick the database path from CLI arg, then env, then default."""
    env_db = os.getenv(DB_PATH_ENV, "").strip()
    chosen = arg_db or env_db or DEFAULT_DB_PATH
    path = Path(chosen)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return str(path)
