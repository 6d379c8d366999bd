"""
judostats/models.py
===================
Canonical record types shared by the adapter, extractor, crawler and storage.

Every remote payload is normalized into these types at the adapter boundary,
so nothing downstream has to know which alternate field names the API used.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

DEFAULT_TECHNIQUE_CATEGORY = "tachi-waza"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Competitor:
    id: str
    name: str = ""
    country: str = ""
    country_code: str = ""
    is_winner: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Competitor":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            country=data.get("country") or "",
            country_code=data.get("country_code") or "",
            is_winner=bool(data.get("is_winner")),
        )


@dataclass
class Technique:
    """One scored (or penalised) event attributed to a performer."""

    technique_name: str
    score: int
    score_group: str
    competitor_id: Optional[str] = None
    competitor_name: str = ""
    technique_type: str = ""
    technique_category: str = DEFAULT_TECHNIQUE_CATEGORY
    side: Optional[str] = None
    timestamp: Optional[str] = None
    note: str = ""
    event_type: Optional[str] = None
    competition_id: Optional[int] = None
    match_contest_code: Optional[str] = None
    competition_name: Optional[str] = None
    weight_class: Optional[str] = None
    gender: Optional[str] = None
    opponent_id: Optional[str] = None
    opponent_name: Optional[str] = None
    opponent_country: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Technique":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_row(cls, row: Any) -> "Technique":
        return cls.from_dict(dict(row))


@dataclass
class Match:
    contest_code: str
    match_number: Optional[str] = None
    competitors: list[Competitor] = field(default_factory=list)
    techniques: list[Technique] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "contest_code": self.contest_code,
            "match_number": self.match_number,
            "competitors": [c.to_dict() for c in self.competitors],
            "techniques": [t.to_dict() for t in self.techniques],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Match":
        return cls(
            contest_code=str(data.get("contest_code") or ""),
            match_number=data.get("match_number"),
            competitors=[Competitor.from_dict(c) for c in data.get("competitors") or []],
            techniques=[Technique.from_dict(t) for t in data.get("techniques") or []],
        )


@dataclass
class Category:
    id: int
    weight_id: int
    weight_class: str
    gender: str = ""
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "weight_id": self.weight_id,
            "weight_class": self.weight_class,
            "gender": self.gender,
            "matches": [m.to_dict() for m in self.matches],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Category":
        return cls(
            id=int(data.get("id") or 0),
            weight_id=int(data.get("weight_id") or 0),
            weight_class=data.get("weight_class") or "",
            gender=data.get("gender") or "",
            matches=[Match.from_dict(m) for m in data.get("matches") or []],
        )


@dataclass
class Competition:
    competition_id: int
    name: str = ""
    date: Optional[str] = None
    location: Optional[str] = None
    event_type: Optional[str] = None
    year: Optional[int] = None
    categories: list[Category] = field(default_factory=list)

    @property
    def match_count(self) -> int:
        return sum(len(c.matches) for c in self.categories)

    def categories_json(self) -> str:
        return json.dumps([c.to_dict() for c in self.categories])

    def to_dict(self, include_categories: bool = True) -> dict:
        out = {
            "competition_id": self.competition_id,
            "name": self.name,
            "date": self.date,
            "location": self.location,
            "event_type": self.event_type,
            "year": self.year,
            "match_count": self.match_count,
        }
        if include_categories:
            out["categories"] = [c.to_dict() for c in self.categories]
        return out

    @classmethod
    def from_row(cls, row: Any) -> "Competition":
        data = dict(row)
        try:
            raw_categories = json.loads(data.get("categories_json") or "[]")
        except (TypeError, ValueError):
            raw_categories = []
        return cls(
            competition_id=int(data["competition_id"]),
            name=data.get("name") or "",
            date=data.get("date"),
            location=data.get("location"),
            event_type=data.get("event_type"),
            year=data.get("year"),
            categories=[Category.from_dict(c) for c in raw_categories if isinstance(c, dict)],
        )


@dataclass
class MatchDetail:
    """Full event log of one contest, as returned by the detail endpoint."""

    contest_code: str
    competitors: list[Competitor] = field(default_factory=list)
    events: list[dict] = field(default_factory=list)

    def opponent_of(self, competitor_id: Optional[str]) -> Optional[Competitor]:
        if not competitor_id:
            return None
        for competitor in self.competitors:
            if competitor.id and competitor.id != competitor_id:
                return competitor
        return None


@dataclass
class JudokaProfile:
    id: str
    name: str = ""
    height: Optional[int] = None
    age: Optional[int] = None
    country: Optional[str] = None
    last_updated: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "JudokaProfile":
        data = dict(row)
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            height=data.get("height"),
            age=data.get("age"),
            country=data.get("country"),
            last_updated=data.get("last_updated") or "",
        )
