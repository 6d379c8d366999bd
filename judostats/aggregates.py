"""
judostats/aggregates.py
=======================
Read-side aggregate statistics over stored techniques.

Every query is composed with FilteredQuery, so the walkover exclusion and all
active filter predicates (and their joins) apply uniformly. Results are cached
per (operation, filter signature): unfiltered reads with the long TTL,
filtered reads with the short one.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable, Iterable, Optional

from judostats.cache import ResultCache
from judostats.query import JOIN_COMPETITIONS, JOIN_PROFILES, FilteredQuery, TechniqueFilters
from judostats.settings import (
    CACHE_TTL_SECONDS,
    CACHE_TTL_UNFILTERED_SECONDS,
    CANONICAL_HEIGHT_BOUNDARY,
    HARDEST_TO_SCORE_MIN_COMPETITIONS,
    HEIGHT_PERCENTILES,
    JUDOBASE_CONTEST_URL,
    JUDOKA_LIST_LIMIT,
    SCORE_GROUP_ORDER,
    TOP_JUDOKA_LIMIT,
    TOP_PER_GROUP_LIMIT,
    TOP_TECHNIQUES_LIMIT,
)

logger = logging.getLogger(__name__)

SCORE_GROUP_SORT = (
    "CASE score_group WHEN 'Ippon' THEN 1 WHEN 'Waza-ari' THEN 2 WHEN 'Yuko' THEN 3 ELSE 4 END"
)
SCORE_GROUP_COUNTS = (
    "SUM(CASE WHEN t.score_group = 'Ippon' THEN 1 ELSE 0 END) AS ippon, "
    "SUM(CASE WHEN t.score_group = 'Waza-ari' THEN 1 ELSE 0 END) AS waza_ari, "
    "SUM(CASE WHEN t.score_group = 'Yuko' THEN 1 ELSE 0 END) AS yuko"
)


def _round(value: Optional[float], digits: int = 2) -> float:
    return round(float(value or 0.0), digits)


def _percentile(sorted_values: list[int], q: float) -> int:
    index = min(int(len(sorted_values) * q), len(sorted_values) - 1)
    return sorted_values[index]


def build_height_ranges(heights: Iterable[Optional[int]]) -> list[str]:
    """
    Population-balanced height buckets from the distinct heights on record.

    Cut-points are the configured percentiles of the distinct heights; the
    canonical boundary replaces the 60/70th cut-points when it lies strictly
    between the 50th and 75th. Buckets are half-open ``[a, b)`` and labelled
    ``<a``, ``a-b`` and ``>=b``; zero-width buckets are skipped, so every
    height falls in exactly one bucket.
    """
    values = sorted({int(h) for h in heights if h})
    if not values:
        return []

    p = {q: _percentile(values, q) for q in HEIGHT_PERCENTILES}
    cuts = [p[0.10], p[0.25], p[0.35], p[0.40], p[0.50]]
    if p[0.50] < CANONICAL_HEIGHT_BOUNDARY < p[0.75]:
        cuts.extend([CANONICAL_HEIGHT_BOUNDARY, p[0.75]])
    else:
        cuts.extend([p[0.60], p[0.70], p[0.75]])
    cuts.extend([p[0.80], p[0.90]])

    distinct: list[int] = []
    for cut in cuts:
        if not distinct or cut > distinct[-1]:
            distinct.append(cut)

    ranges = [f"<{distinct[0]}"]
    ranges.extend(f"{low}-{high}" for low, high in zip(distinct, distinct[1:]))
    ranges.append(f">={distinct[-1]}")
    return ranges


class TechniqueAggregates:
    def __init__(
        self,
        db_or_conn: Any,
        cache: Optional[ResultCache] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if hasattr(db_or_conn, "conn"):
            self._conn = db_or_conn.conn
        else:
            self._conn = db_or_conn
        self.cache = cache if cache is not None else ResultCache(clock=clock)

    def invalidate(self) -> None:
        self.cache.clear()

    def _cached(
        self,
        operation: str,
        filters: TechniqueFilters,
        compute: Callable[[], Any],
        *extra: Any,
        search: str = "",
    ) -> Any:
        key = (operation, filters.signature(), search, extra)
        ttl = CACHE_TTL_UNFILTERED_SECONDS if filters.is_empty() and not search else CACHE_TTL_SECONDS
        return self.cache.get_or_compute(key, ttl, compute)

    def _fetch(self, sql: str, params: list) -> list[dict]:
        try:
            cur = self._conn.cursor()
            cur.execute(sql, params)
            return [dict(row) for row in cur.fetchall()]
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to run aggregate query: {e}")

    # --- Dashboard stats ---

    def get_stats(self, filters: Optional[TechniqueFilters] = None) -> dict:
        filters = filters or TechniqueFilters()
        return self._cached("stats", filters, lambda: self._compute_stats(filters))

    def _compute_stats(self, filters: TechniqueFilters) -> dict:
        base = FilteredQuery.for_filters(filters)

        totals = self._fetch(*base.sql(
            "COUNT(*) AS total_techniques, "
            "COUNT(DISTINCT t.competition_id) AS total_competitions, "
            "COUNT(DISTINCT t.match_contest_code) AS total_matches, "
            "COUNT(DISTINCT t.competitor_id) AS total_judoka"
        ))[0]

        top_techniques = self._top_techniques(base, TOP_TECHNIQUES_LIMIT)

        by_group = self._fetch(*base.sql(
            "COALESCE(t.score_group, 'Unknown') AS score_group, COUNT(*) AS count",
            group_by="COALESCE(t.score_group, 'Unknown')",
            order_by=f"{SCORE_GROUP_SORT}, count DESC",
        ))

        top_by_group = {
            group: self._top_techniques(base.copy().where("t.score_group = ?", group), TOP_PER_GROUP_LIMIT)
            for group in SCORE_GROUP_ORDER
        }

        by_year = self._fetch(*base.copy().require(JOIN_COMPETITIONS).sql(
            "c.year AS year, COUNT(DISTINCT t.competition_id) AS competitions, COUNT(*) AS techniques",
            group_by="c.year",
            order_by="c.year DESC",
        ))

        return {
            "total_competitions": totals["total_competitions"] or 0,
            "total_matches": totals["total_matches"] or 0,
            "total_techniques": totals["total_techniques"] or 0,
            "total_judoka": totals["total_judoka"] or 0,
            "top_techniques": top_techniques,
            "techniques_by_score_group": by_group,
            "top_techniques_by_group": top_by_group,
            "competitions_by_year": [row for row in by_year if row["year"] is not None],
            "filters": filters.to_dict(),
        }

    def _top_techniques(self, query: FilteredQuery, limit: int) -> list[dict]:
        rows = self._fetch(*query.sql(
            "t.technique_name AS name, COUNT(*) AS count, AVG(t.score) AS avg_score",
            group_by="t.technique_name",
            order_by="count DESC, name ASC",
            limit=limit,
        ))
        for row in rows:
            row["avg_score"] = _round(row["avg_score"])
        return rows

    def get_technique_stats(self, filters: Optional[TechniqueFilters] = None) -> list[dict]:
        filters = filters or TechniqueFilters()
        return self._cached("technique_stats", filters, lambda: self._compute_technique_stats(filters))

    def _compute_technique_stats(self, filters: TechniqueFilters) -> list[dict]:
        rows = self._fetch(*FilteredQuery.for_filters(filters).sql(
            f"t.technique_name AS name, COUNT(*) AS total, {SCORE_GROUP_COUNTS}, AVG(t.score) AS avg_score",
            group_by="t.technique_name",
            order_by="total DESC, name ASC",
        ))
        for row in rows:
            row["avg_score"] = _round(row["avg_score"])
        return rows

    # --- Filter options ---

    def get_available_filters(self) -> dict:
        return self._cached("available_filters", TechniqueFilters(), self._compute_available_filters)

    def _distinct(self, column: str) -> list:
        rows = self._fetch(*FilteredQuery().where(f"{column} IS NOT NULL AND {column} != ''").sql(
            f"DISTINCT {column} AS value", order_by="value"
        ))
        return [row["value"] for row in rows]

    def _compute_available_filters(self) -> dict:
        years = self._fetch("SELECT DISTINCT year FROM competitions WHERE year IS NOT NULL ORDER BY year DESC", [])
        return {
            "genders": self._distinct("t.gender"),
            "weight_classes": self._distinct("t.weight_class"),
            "event_types": self._distinct("t.event_type"),
            "technique_categories": self._distinct("COALESCE(t.technique_category, 'tachi-waza')"),
            "score_groups": self._distinct("t.score_group"),
            "years": [row["year"] for row in years],
            "height_ranges": self.height_ranges(),
        }

    def profile_heights(self) -> list[int]:
        query = FilteredQuery().require(JOIN_PROFILES).where(
            "t.competitor_id IS NOT NULL AND t.competitor_id != ''"
        ).where("p.height IS NOT NULL AND p.height > 0")
        rows = self._fetch(*query.sql("DISTINCT p.height AS height", order_by="height"))
        return [int(row["height"]) for row in rows]

    def height_ranges(self) -> list[str]:
        return build_height_ranges(self.profile_heights())

    # --- Judoka leaderboards ---

    def get_top_judoka_stats(self, filters: Optional[TechniqueFilters] = None, limit: int = TOP_JUDOKA_LIMIT) -> dict:
        filters = filters or TechniqueFilters()
        return self._cached("top_judoka", filters, lambda: self._compute_top_judoka(filters, limit), limit)

    def _performer_query(self, filters: TechniqueFilters) -> FilteredQuery:
        return FilteredQuery.for_filters(filters).where("t.competitor_id IS NOT NULL AND t.competitor_id != ''")

    def _compute_top_judoka(self, filters: TechniqueFilters, limit: int) -> dict:
        select = (
            "t.competitor_id AS id, MAX(t.competitor_name) AS name, COUNT(*) AS count, "
            "COUNT(DISTINCT t.competition_id) AS competitions"
        )
        most_ippons = self._fetch(*self._performer_query(filters).where("t.score_group = 'Ippon'").sql(
            select, group_by="t.competitor_id", order_by="count DESC, name ASC", limit=limit
        ))
        most_techniques = self._fetch(*self._performer_query(filters).sql(
            select, group_by="t.competitor_id", order_by="count DESC, name ASC", limit=limit
        ))
        most_competitions = self._fetch(*self._performer_query(filters).sql(
            select, group_by="t.competitor_id", order_by="competitions DESC, count DESC, name ASC", limit=limit
        ))

        appear_sql, appear_params = self._performer_query(filters).sql(
            "t.competitor_id AS id, MAX(t.competitor_name) AS name, COUNT(DISTINCT t.competition_id) AS competitions",
            group_by="t.competitor_id",
            having="COUNT(DISTINCT t.competition_id) >= ?",
        )
        received_sql, received_params = FilteredQuery.for_filters(filters).where(
            "t.opponent_id IS NOT NULL AND t.score > 0"
        ).sql("t.opponent_id AS id, COUNT(*) AS received", group_by="t.opponent_id")
        hardest = self._fetch(
            f"""
            SELECT a.id, a.name, a.competitions, COALESCE(r.received, 0) AS received,
                   ROUND(COALESCE(r.received, 0) * 1.0 / a.competitions, 2) AS received_per_competition
            FROM ({appear_sql}) a
            LEFT JOIN ({received_sql}) r ON r.id = a.id
            ORDER BY received_per_competition ASC, a.competitions DESC, a.name ASC
            LIMIT ?
            """,
            appear_params + [HARDEST_TO_SCORE_MIN_COMPETITIONS] + received_params + [limit],
        )
        return {
            "most_ippons": most_ippons,
            "most_techniques": most_techniques,
            "most_competitions": most_competitions,
            "hardest_to_score_against": hardest,
        }

    def get_judoka_list(self, search: str = "", limit: int = JUDOKA_LIST_LIMIT) -> list[dict]:
        search = (search or "").strip()
        return self._cached(
            "judoka_list", TechniqueFilters(), lambda: self._compute_judoka_list(search, limit), limit, search=search
        )

    def _compute_judoka_list(self, search: str, limit: int) -> list[dict]:
        query = self._performer_query(TechniqueFilters())
        if search:
            query.where("(LOWER(t.competitor_name) LIKE ? OR t.competitor_id = ?)", f"%{search.lower()}%", search)
        return self._fetch(*query.sql(
            "t.competitor_id AS id, MAX(t.competitor_name) AS name, COUNT(*) AS technique_count, "
            "COUNT(DISTINCT t.competition_id) AS competition_count",
            group_by="t.competitor_id",
            order_by="technique_count DESC, name ASC",
            limit=limit,
        ))

    # --- Technique detail ---

    def get_matches_for_technique(self, technique_name: str, filters: Optional[TechniqueFilters] = None) -> list[dict]:
        filters = filters or TechniqueFilters()
        return self._cached(
            "technique_matches", filters, lambda: self._compute_matches_for_technique(technique_name, filters),
            technique_name.lower(),
        )

    def _compute_matches_for_technique(self, technique_name: str, filters: TechniqueFilters) -> list[dict]:
        rows = self._fetch(*FilteredQuery.for_filters(filters).where(
            "LOWER(t.technique_name) = LOWER(?)", technique_name
        ).sql(
            "t.match_contest_code, t.competition_name, t.competitor_id, t.competitor_name, "
            "t.score, t.score_group, t.timestamp",
            order_by="t.competition_id DESC, t.match_contest_code ASC, t.id ASC",
        ))
        seen: set = set()
        matches = []
        for row in rows:
            code = row["match_contest_code"]
            if not code or code in seen:
                continue
            seen.add(code)
            matches.append({
                "match_url": JUDOBASE_CONTEST_URL.format(code=code),
                "contest_code": code,
                "competition": row["competition_name"],
                "competitor_id": row["competitor_id"],
                "competitor": row["competitor_name"],
                "score": row["score"],
                "score_group": row["score_group"],
                "timestamp": row["timestamp"],
            })
        return matches

    def get_top_judoka_for_technique(
        self,
        technique_name: str,
        limit: int = TOP_JUDOKA_LIMIT,
        filters: Optional[TechniqueFilters] = None,
    ) -> list[dict]:
        filters = filters or TechniqueFilters()
        return self._cached(
            "technique_top_judoka", filters,
            lambda: self._fetch(*self._performer_query(filters).where(
                "LOWER(t.technique_name) = LOWER(?)", technique_name
            ).sql(
                "t.competitor_id AS id, MAX(t.competitor_name) AS name, COUNT(*) AS count, "
                "COUNT(DISTINCT t.match_contest_code) AS match_count",
                group_by="t.competitor_id",
                order_by="count DESC, name ASC",
                limit=limit,
            )),
            technique_name.lower(), limit,
        )
