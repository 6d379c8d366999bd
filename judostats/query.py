"""
judostats/query.py
==================
Filter signature and the composable WHERE/JOIN builder used by every
aggregate read.

Each optional filter contributes one predicate plus, where it needs data
outside the technique row, a required join. Joins are collected in a set and
emitted in a fixed order, so combining filters never drops a join.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from judostats.settings import WALKOVER_TECHNIQUES

CATEGORY_ALIASES = {
    "nage-waza": "tachi-waza",
    "osaekomi-waza": "osaekomi",
}

JOIN_COMPETITIONS = "competitions"
JOIN_PROFILES = "profiles"
JOIN_SQL = {
    JOIN_COMPETITIONS: "INNER JOIN competitions c ON t.competition_id = c.competition_id",
    JOIN_PROFILES: "INNER JOIN judoka_profiles p ON t.competitor_id = p.id",
}
JOIN_ORDER = (JOIN_COMPETITIONS, JOIN_PROFILES)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_LT_RE = re.compile(r"^<\s*(\d+)$")
_GE_RE = re.compile(r"^(?:>=|≥)\s*(\d+)$")
_PLUS_RE = re.compile(r"^(\d+)\s*\+$")
_RANGE_RE = re.compile(r"^(\d+)\s*-\s*(\d+)$")


def parse_height_range(label: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    """
    Parse a height bucket label into a half-open ``[min, max)`` interval.

    ``<170`` -> (None, 170), ``>=190`` / ``≥190`` / ``190+`` -> (190, None),
    ``170-175`` -> (170, 175). Unparseable labels return (None, None).
    """
    text = (label or "").strip()
    match = _LT_RE.match(text)
    if match:
        return None, int(match.group(1))
    match = _GE_RE.match(text) or _PLUS_RE.match(text)
    if match:
        return int(match.group(1)), None
    match = _RANGE_RE.match(text)
    if match:
        return int(match.group(1)), int(match.group(2))
    return None, None


def height_in_range(height: Optional[int], label: str) -> bool:
    if height is None:
        return False
    low, high = parse_height_range(label)
    if low is None and high is None:
        return False
    if low is not None and height < low:
        return False
    if high is not None and height >= high:
        return False
    return True


def normalize_category(value: str) -> str:
    key = value.strip().lower()
    return CATEGORY_ALIASES.get(key, key)


@dataclass(frozen=True)
class TechniqueFilters:
    gender: Optional[str] = None
    weight_class: Optional[str] = None
    event_type: Optional[str] = None
    competition_id: Optional[int] = None
    year: Optional[int] = None
    height_range: Optional[str] = None
    technique_category: Optional[str] = None
    score_group: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "TechniqueFilters":
        """Build from snake_case or camelCase keys; empty values are dropped."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_RE.sub("_", key).lower()
            if name not in known or value is None or (isinstance(value, str) and not value.strip()):
                continue
            if name in ("competition_id", "year"):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValueError(f"{key} must be an integer, got {value!r}")
            elif isinstance(value, str):
                value = value.strip()
            values[name] = value
        return cls(**values)

    def signature(self) -> tuple[tuple[str, Any], ...]:
        return tuple(sorted((f.name, getattr(self, f.name)) for f in fields(self) if getattr(self, f.name) is not None))

    def is_empty(self) -> bool:
        return not self.signature()

    def to_dict(self) -> dict:
        return dict(self.signature())


class FilteredQuery:
    """Accumulates predicates and joins against ``techniques t``."""

    def __init__(self, exclude_walkovers: bool = True):
        self.predicates: list[str] = []
        self.params: list[Any] = []
        self.joins: set[str] = set()
        if exclude_walkovers:
            placeholders = ", ".join("?" for _ in WALKOVER_TECHNIQUES)
            self.where(f"LOWER(t.technique_name) NOT IN ({placeholders})", *WALKOVER_TECHNIQUES)

    @classmethod
    def for_filters(cls, filters: Optional[TechniqueFilters] = None, exclude_walkovers: bool = True) -> "FilteredQuery":
        query = cls(exclude_walkovers=exclude_walkovers)
        query.apply(filters or TechniqueFilters())
        return query

    def where(self, sql: str, *params: Any) -> "FilteredQuery":
        self.predicates.append(sql)
        self.params.extend(params)
        return self

    def require(self, join: str) -> "FilteredQuery":
        if join not in JOIN_SQL:
            raise ValueError(f"Unknown join: {join}")
        self.joins.add(join)
        return self

    def apply(self, filters: TechniqueFilters) -> "FilteredQuery":
        if filters.gender:
            self.where("LOWER(t.gender) = LOWER(?)", filters.gender)
        if filters.weight_class:
            self.where("t.weight_class = ?", filters.weight_class)
        if filters.event_type:
            self.where("LOWER(t.event_type) = LOWER(?)", filters.event_type)
        if filters.competition_id is not None:
            self.where("t.competition_id = ?", filters.competition_id)
        if filters.year is not None:
            self.require(JOIN_COMPETITIONS).where("c.year = ?", filters.year)
        if filters.height_range:
            low, high = parse_height_range(filters.height_range)
            if low is None and high is None:
                raise ValueError(f"Invalid height range: {filters.height_range!r}")
            self.require(JOIN_PROFILES)
            if low is not None:
                self.where("p.height >= ?", low)
            if high is not None:
                self.where("p.height < ?", high)
        if filters.technique_category:
            self.where(
                "COALESCE(t.technique_category, 'tachi-waza') = ?",
                normalize_category(filters.technique_category),
            )
        if filters.score_group:
            self.where("COALESCE(t.score_group, 'Unknown') = ?", filters.score_group)
        return self

    def from_clause(self) -> str:
        parts = ["FROM techniques t"]
        parts.extend(JOIN_SQL[j] for j in JOIN_ORDER if j in self.joins)
        return "\n".join(parts)

    def where_clause(self) -> str:
        if not self.predicates:
            return ""
        return "WHERE " + "\n  AND ".join(self.predicates)

    def sql(
        self,
        select: str,
        group_by: str = "",
        order_by: str = "",
        limit: Optional[int] = None,
        having: str = "",
    ) -> tuple[str, list[Any]]:
        lines = [f"SELECT {select}", self.from_clause()]
        where = self.where_clause()
        if where:
            lines.append(where)
        if group_by:
            lines.append(f"GROUP BY {group_by}")
        if having:
            lines.append(f"HAVING {having}")
        if order_by:
            lines.append(f"ORDER BY {order_by}")
        params = list(self.params)
        if limit is not None:
            lines.append("LIMIT ?")
            params.append(int(limit))
        return "\n".join(lines), params

    def copy(self) -> "FilteredQuery":
        clone = FilteredQuery(exclude_walkovers=False)
        clone.predicates = list(self.predicates)
        clone.params = list(self.params)
        clone.joins = set(self.joins)
        return clone
