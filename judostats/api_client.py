from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from judostats.models import Category, Competition, Competitor, JudokaProfile, Match, MatchDetail
from judostats.settings import IJF_API_BASE, RATE_LIMIT_BACKOFF_SECONDS, REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class IJFAPIClient:
    BASE = IJF_API_BASE
    HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36"
        ),
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.9",
        "Referer": "https://judobase.ijf.org/",
    }

    DETAIL_PARTS = "info,score_list,media,events"

    def __init__(
        self,
        timeout_seconds: int = REQUEST_TIMEOUT_SECONDS,
        backoff_seconds: float = RATE_LIMIT_BACKOFF_SECONDS,
    ):
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds

    def _build_url(self, action: str, **params: Any) -> str:
        query = {"params[action]": action}
        for key, value in params.items():
            if value is not None:
                query[f"params[{key}]"] = str(value)
        return f"{self.BASE}?{urlencode(query)}"

    def _get_json(self, url: str, retry_429: bool = True) -> Optional[Any]:
        """GET a JSON document; transport failures are logged and return None."""
        req = Request(url, headers=self.HEADERS, method="GET")
        try:
            with urlopen(req, timeout=self.timeout_seconds) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            if exc.code == 429 and retry_429:
                logger.warning("Rate limited by IJF API, retrying in %.1fs", self.backoff_seconds)
                time.sleep(self.backoff_seconds)
                return self._get_json(url, retry_429=False)
            logger.error("IJF API HTTP %s for %s", exc.code, url)
        except (URLError, TimeoutError, OSError) as exc:
            logger.error("IJF API request failed for %s: %s", url, exc)
        except (UnicodeDecodeError, ValueError) as exc:
            logger.error("IJF API returned undecodable JSON for %s: %s", url, exc)
        return None

    @staticmethod
    def _safe_int(value: Any, default: Optional[int] = None) -> Optional[int]:
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _first(data: Dict[str, Any], *keys: str) -> Any:
        for key in keys:
            value = data.get(key)
            if value not in (None, ""):
                return value
        return None

    @staticmethod
    def _unwrap_list(payload: Any, key: str) -> List[Any]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return payload[key]
        return []

    # --- Normalizers (one per endpoint) ---

    def parse_competition(self, raw: Dict[str, Any]) -> Optional[Competition]:
        comp_id = self._safe_int(self._first(raw, "id_competition", "id"))
        if comp_id is None:
            return None
        ages = raw.get("ages")
        event_type = ages[0] if isinstance(ages, list) and ages else raw.get("ev_typ")
        return Competition(
            competition_id=comp_id,
            name=self._first(raw, "name", "nm") or "",
            date=self._first(raw, "date_to", "dt_end"),
            location=self._first(raw, "city", "loc"),
            event_type=str(event_type) if event_type not in (None, "") else None,
            year=self._safe_int(self._first(raw, "comp_year", "year", "yr")),
        )

    def parse_competition_list(self, payload: Any) -> List[Competition]:
        out: List[Competition] = []
        for raw in self._unwrap_list(payload, "competitions"):
            if not isinstance(raw, dict):
                continue
            competition = self.parse_competition(raw)
            if competition is not None:
                out.append(competition)
        return out

    def parse_categories(self, payload: Any, competition_id: int) -> List[Category]:
        """Flatten ``{group: {gender, categories: {id: label}}}`` into categories."""
        out: List[Category] = []
        if isinstance(payload, dict):
            for group in payload.values():
                if not isinstance(group, dict) or not isinstance(group.get("categories"), dict):
                    continue
                gender = str(group.get("gender") or "")
                for weight_id, label in group["categories"].items():
                    weight = self._safe_int(weight_id)
                    if weight is None:
                        continue
                    out.append(
                        Category(
                            id=competition_id * 1000 + weight,
                            weight_id=weight,
                            weight_class=str(label),
                            gender=gender,
                        )
                    )
        elif isinstance(payload, list):
            for raw in payload:
                if not isinstance(raw, dict):
                    continue
                weight = self._safe_int(self._first(raw, "id_weight", "id"))
                if weight is None:
                    continue
                out.append(
                    Category(
                        id=competition_id * 1000 + weight,
                        weight_id=weight,
                        weight_class=str(self._first(raw, "nm", "name", "weight") or ""),
                        gender=str(raw.get("gender") or ""),
                    )
                )
        return out

    def _contest_entries(self, payload: Any) -> List[Dict[str, Any]]:
        return [c for c in self._unwrap_list(payload, "contests") if isinstance(c, dict)]

    def parse_contest_list(self, payload: Any) -> List[Match]:
        out: List[Match] = []
        for contest in self._contest_entries(payload):
            code = self.contest_code(contest)
            if not code:
                continue
            number = self._first(contest, "fight_no", "nm")
            out.append(
                Match(
                    contest_code=code,
                    match_number=str(number) if number is not None else None,
                    competitors=self.parse_competitors(contest),
                )
            )
        return out

    def contest_code(self, contest: Dict[str, Any]) -> Optional[str]:
        code = self._first(contest, "contest_code_long", "code", "contest_code")
        return str(code) if code is not None else None

    def _parse_person(self, person: Any) -> Optional[Competitor]:
        if not isinstance(person, dict):
            return None
        person_id = self._first(person, "id_person", "id")
        if person_id is None:
            return None
        return Competitor(
            id=str(person_id),
            name=str(self._first(person, "nm", "name") or ""),
            country=str(self._first(person, "cntr", "country") or ""),
            country_code=str(self._first(person, "cnt", "country_short") or ""),
            is_winner=self._safe_int(person.get("res"), 0) == 1,
        )

    def _parse_flat_person(self, contest: Dict[str, Any], colour: str) -> Optional[Competitor]:
        person_id = contest.get(f"id_person_{colour}")
        if person_id in (None, "", 0, "0"):
            return None
        winner = contest.get("id_winner")
        return Competitor(
            id=str(person_id),
            name=str(contest.get(f"person_{colour}") or ""),
            country=str(contest.get(f"country_{colour}") or ""),
            country_code=str(contest.get(f"country_short_{colour}") or ""),
            is_winner=winner not in (None, "") and str(winner) == str(person_id),
        )

    def parse_competitors(self, contest: Dict[str, Any]) -> List[Competitor]:
        people = [self._parse_person(contest.get("person1")), self._parse_person(contest.get("person2"))]
        if not any(people):
            people = [self._parse_flat_person(contest, "blue"), self._parse_flat_person(contest, "white")]
        return [p for p in people if p is not None]

    def parse_match_detail(self, payload: Any, contest_code: str = "") -> Optional[MatchDetail]:
        if isinstance(payload, dict) and "contests" in payload:
            contests = self._contest_entries(payload)
            contest = contests[0] if contests else None
        elif isinstance(payload, list):
            contest = payload[0] if payload and isinstance(payload[0], dict) else None
        else:
            contest = payload if isinstance(payload, dict) else None
        if contest is None:
            return None
        events = contest.get("events")
        return MatchDetail(
            contest_code=self.contest_code(contest) or contest_code,
            competitors=self.parse_competitors(contest),
            events=[e for e in events if isinstance(e, dict)] if isinstance(events, list) else [],
        )

    def parse_competitor_info(self, payload: Any, judoka_id: str) -> Optional[JudokaProfile]:
        if not isinstance(payload, dict) or not payload:
            return None
        given = str(payload.get("given_name") or "").strip()
        family = str(payload.get("family_name") or "").strip()
        return JudokaProfile(
            id=str(judoka_id),
            name=f"{given} {family}".strip(),
            height=self._safe_int(payload.get("height")) or None,
            age=self._safe_int(payload.get("age")) or None,
            country=self._first(payload, "country", "country_short"),
        )

    # --- Fetchers ---

    def get_all_competitions(self) -> List[Competition]:
        payload = self._get_json(self._build_url("competition.get_list"))
        return self.parse_competition_list(payload)

    def get_competition_categories(self, competition_id: int) -> List[Category]:
        payload = self._get_json(
            self._build_url("competition.categories_full", id_competition=competition_id)
        )
        return self.parse_categories(payload, competition_id)

    def get_matches(self, competition_id: int, weight_id: int) -> List[Match]:
        payload = self._get_json(
            self._build_url(
                "contest.find",
                id_competition=competition_id,
                id_weight=weight_id,
                order_by="cnum",
            )
        )
        return self.parse_contest_list(payload)

    def get_match_details(self, contest_code: str) -> Optional[MatchDetail]:
        payload = self._get_json(
            self._build_url("contest.find", contest_code=contest_code, part=self.DETAIL_PARTS)
        )
        return self.parse_match_detail(payload, contest_code)

    def get_competitor_info(self, judoka_id: str) -> Optional[Dict[str, Any]]:
        payload = self._get_json(self._build_url("competitor.info", id_person=judoka_id))
        return payload if isinstance(payload, dict) else None

    def get_profile(self, judoka_id: str) -> Optional[JudokaProfile]:
        return self.parse_competitor_info(self.get_competitor_info(judoka_id), judoka_id)
