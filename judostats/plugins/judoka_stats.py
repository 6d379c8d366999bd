"""
judostats/plugins/judoka_stats.py
=================================
Per-athlete technique breakdowns: what a judoka scores with, and what gets
scored against them.
"""

from __future__ import annotations

from typing import Any, Optional

from judostats.query import FilteredQuery, TechniqueFilters

PERCENT_DIGITS = 1


def _is_numeric(value: str) -> bool:
    return value.isdigit()


class JudokaStatsPlugin:
    def __init__(self, db_or_conn: Any):
        if hasattr(db_or_conn, "conn"):
            self._conn = db_or_conn.conn
        else:
            self._conn = db_or_conn

    def stats_for(self, athlete_id: Any, filters: Optional[TechniqueFilters] = None) -> Optional[dict]:
        """Techniques performed by the athlete; None when they have none."""
        athlete_id = str(athlete_id).strip()
        query = FilteredQuery.for_filters(filters).where("t.competitor_id = ?", athlete_id)
        rows = self._fetch_techniques(query)
        if not rows:
            return None

        profile = self._fetch_profile(athlete_id)
        breakdown = self._aggregate(rows, received=False)
        return {
            "id": athlete_id,
            "name": (profile or {}).get("name") or rows[0]["competitor_name"] or "",
            "total_techniques": len(rows),
            "competition_count": len({r["competition_id"] for r in rows}),
            "waza_breakdown": breakdown,
            "favorite_technique": breakdown[0]["name"] if breakdown else None,
            "height": (profile or {}).get("height"),
            "age": (profile or {}).get("age"),
            "country": (profile or {}).get("country"),
        }

    def received_stats_for(self, athlete_id: Any, filters: Optional[TechniqueFilters] = None) -> dict:
        """Techniques scored against the athlete, matched on the opponent id."""
        athlete_id = str(athlete_id).strip()
        query = FilteredQuery.for_filters(filters)
        if _is_numeric(athlete_id):
            query.where("(t.opponent_id = ? OR CAST(t.opponent_id AS INTEGER) = ?)", athlete_id, int(athlete_id))
        else:
            query.where("t.opponent_id = ?", athlete_id)
        rows = self._fetch_techniques(query)
        breakdown = self._aggregate(rows, received=True)
        return {
            "id": athlete_id,
            "total_techniques": len(rows),
            "competition_count": len({r["competition_id"] for r in rows}),
            "waza_breakdown": breakdown,
            "favorite_technique": breakdown[0]["name"] if breakdown else None,
        }

    def summary(self, athlete_id: Any, filters: Optional[TechniqueFilters] = None) -> None:
        result = self.stats_for(athlete_id, filters)
        if result is None:
            print(f"[JudokaStats] No techniques recorded for judoka {athlete_id}")
            return

        print(f"\n=== JUDOKA: {result['name']} ({result['id']}) ===")
        extras = [
            f"height {result['height']}cm" if result["height"] else "",
            f"age {result['age']}" if result["age"] else "",
            result["country"] or "",
        ]
        extras = [e for e in extras if e]
        if extras:
            print("  " + ", ".join(extras))
        print(f"Techniques: {result['total_techniques']} across {result['competition_count']} competitions")
        print(f"Favorite: {result['favorite_technique']}")
        print(f"\n  {'Technique':<24} {'Cnt':>4} {'%':>6} {'Avg':>5} {'Ipp':>4} {'WzA':>4} {'Yko':>4}")
        for row in result["waza_breakdown"]:
            print(
                f"  {row['name']:<24} {row['count']:>4} {row['percentage']:>5.1f}% "
                f"{row['avg_score']:>5.2f} {row['ippon']:>4} {row['waza_ari']:>4} {row['yuko']:>4}"
            )

        received = self.received_stats_for(athlete_id, filters)
        print(f"\nReceived: {received['total_techniques']} techniques")
        for row in received["waza_breakdown"][:5]:
            print(f"  {row['name']:<24} {row['count']:>4} {row['percentage']:>5.1f}%")

    def _fetch_techniques(self, query: FilteredQuery) -> list[dict]:
        sql, params = query.sql(
            "t.id, t.competitor_id, t.competitor_name, t.technique_name, t.score, t.score_group, "
            "t.competition_id, t.competition_name, t.match_contest_code, t.weight_class, "
            "t.opponent_id, t.opponent_name, t.opponent_country",
            order_by="t.id ASC",
        )
        cur = self._conn.cursor()
        cur.execute(sql, params)
        return [dict(row) for row in cur.fetchall()]

    def _fetch_profile(self, athlete_id: str) -> Optional[dict]:
        cur = self._conn.cursor()
        cur.execute("SELECT * FROM judoka_profiles WHERE id = ?", (athlete_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    def _fetch_competition_years(self, competition_ids: set) -> dict:
        ids = [cid for cid in competition_ids if cid is not None]
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        cur = self._conn.cursor()
        cur.execute(
            f"SELECT competition_id, year FROM competitions WHERE competition_id IN ({placeholders})",
            ids,
        )
        return {row["competition_id"]: row["year"] for row in cur.fetchall()}

    def _fetch_countries(self, judoka_ids: set) -> dict:
        ids = [str(i) for i in judoka_ids if i]
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        cur = self._conn.cursor()
        cur.execute(f"SELECT id, country FROM judoka_profiles WHERE id IN ({placeholders})", ids)
        return {row["id"]: row["country"] for row in cur.fetchall()}

    def _aggregate(self, rows: list[dict], received: bool) -> list[dict]:
        total = len(rows)
        years = self._fetch_competition_years({r["competition_id"] for r in rows})
        countries = self._fetch_countries({r["competitor_id"] for r in rows}) if received else {}

        groups: dict[str, dict] = {}
        for row in rows:
            name = row["technique_name"]
            group = groups.setdefault(name, {
                "name": name,
                "count": 0,
                "score_total": 0,
                "ippon": 0,
                "waza_ari": 0,
                "yuko": 0,
                "matches": [],
                "_codes": set(),
            })
            group["count"] += 1
            group["score_total"] += row["score"] or 0
            if row["score_group"] == "Ippon":
                group["ippon"] += 1
            elif row["score_group"] == "Waza-ari":
                group["waza_ari"] += 1
            elif row["score_group"] == "Yuko":
                group["yuko"] += 1

            code = row["match_contest_code"]
            if code and code not in group["_codes"]:
                group["_codes"].add(code)
                if received:
                    opponent = row["competitor_name"]
                    opponent_country = countries.get(row["competitor_id"])
                else:
                    opponent = row["opponent_name"]
                    opponent_country = row["opponent_country"]
                group["matches"].append({
                    "contest_code": code,
                    "opponent": opponent,
                    "opponent_country": opponent_country,
                    "competition_name": row["competition_name"],
                    "year": years.get(row["competition_id"]),
                    "score_group": row["score_group"],
                    "weight_class": row["weight_class"],
                })

        breakdown = []
        for group in groups.values():
            count = group.pop("count")
            score_total = group.pop("score_total")
            group.pop("_codes")
            breakdown.append({
                "name": group["name"],
                "count": count,
                "percentage": round(count * 100.0 / total, PERCENT_DIGITS) if total else 0.0,
                "avg_score": round(score_total / count, 2) if count else 0.0,
                "ippon": group["ippon"],
                "waza_ari": group["waza_ari"],
                "yuko": group["yuko"],
                "matches": group["matches"],
            })
        breakdown.sort(key=lambda x: (-x["count"], x["name"]))
        return breakdown
