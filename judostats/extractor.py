"""
judostats/extractor.py
======================
Turns a match detail's event log into scored technique records.

For every event, in source order:
  1. skip events without tags
  2. drop structural tags (direction, hold-start, shido / non-combativity groups)
  3. technique name = first surviving tag's name
  4. skip score cancellations ("cancel...")
  5. skip excluded ground techniques (holds, chokes, joint locks)
  6. side = first direction tag's name, performer = first actor
  7. score and score group from tag group names, falling back to the score

The extractor is pure: the same detail always yields the same records.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from judostats.models import DEFAULT_TECHNIQUE_CATEGORY, MatchDetail, Technique

DIRECTION_CODES = frozenset({"left", "right"})
STRUCTURAL_CODES = DIRECTION_CODES | {"osaekomi"}
STRUCTURAL_GROUP_MARKERS = ("shido", "non-combativity")

OSAEKOMI_WAZA = frozenset({
    "kesa-gatame", "yoko-shiho-gatame", "kata-gatame", "kami-shiho-gatame",
    "tate-shiho-gatame", "kuzure-kami-shiho-gatame", "kuzure-kesa-gatame",
    "ushiro-kesa-gatame", "ura-gatame",
})
SHIME_WAZA = frozenset({
    "hadaka-jime", "katame-jime", "katate-jime", "okuri-eri-jime",
    "sankaku-jime", "jigoku-jime", "sode-guruma-jime",
})
KANSETSU_WAZA = frozenset({
    "juji-gatame", "sankaku-gatame", "ude-garami", "ashi-garami", "ude-jime",
})

# Ground techniques left out of extraction. Yoko-shiho-gatame stays in and is
# recorded under the osaekomi category.
EXCLUDED_GROUND_TECHNIQUES = (OSAEKOMI_WAZA | SHIME_WAZA | KANSETSU_WAZA) - {"yoko-shiho-gatame"}

# (group-name marker, score, score group), checked in this order.
SCORE_RULES = (
    ("ippon", 10, "Ippon"),
    ("waza-ari-awasete-ippon", 10, "Ippon"),
    ("waza-ari", 7, "Waza-ari"),
    ("yuko", 5, "Yuko"),
    ("shido", -1, "Penalty"),
)
SCORE_GROUP_BY_VALUE = {10: "Ippon", 7: "Waza-ari", 5: "Yuko", -1: "Penalty"}


def classify_technique(name: str) -> str:
    key = (name or "").strip().lower()
    if key in OSAEKOMI_WAZA:
        return "osaekomi"
    if key in SHIME_WAZA:
        return "shime-waza"
    if key in KANSETSU_WAZA:
        return "kansetsu-waza"
    return DEFAULT_TECHNIQUE_CATEGORY


def _tags(event: dict) -> list[dict]:
    tags = event.get("tags")
    if not isinstance(tags, list):
        return []
    return [t for t in tags if isinstance(t, dict)]


def _group_name(tag: dict) -> str:
    return str(tag.get("group_name") or "").lower()


def _is_structural(tag: dict) -> bool:
    if tag.get("code_short") in STRUCTURAL_CODES:
        return True
    group = _group_name(tag)
    return any(marker in group for marker in STRUCTURAL_GROUP_MARKERS)


def score_event(tags: list[dict], fallback_score: int = 0) -> tuple[int, str]:
    """Return ``(score, score_group)`` for an event's tags."""
    groups = [_group_name(t) for t in tags]
    for marker, score, group in SCORE_RULES:
        if any(marker in g for g in groups):
            return score, group
    if fallback_score in SCORE_GROUP_BY_VALUE:
        return fallback_score, SCORE_GROUP_BY_VALUE[fallback_score]
    return fallback_score, "Unknown" if fallback_score > 0 else "Penalty"


class TechniqueExtractor:
    def __init__(self, excluded_techniques: Optional[Iterable[str]] = None):
        source = EXCLUDED_GROUND_TECHNIQUES if excluded_techniques is None else excluded_techniques
        self.excluded_techniques = frozenset(name.lower() for name in source)

    def _technique_tags(self, event: dict) -> list[dict]:
        return [t for t in _tags(event) if not _is_structural(t)]

    def has_techniques(self, detail: Optional[MatchDetail]) -> bool:
        """Cheap pre-check: does any event keep a tag after structural filtering?"""
        if detail is None:
            return False
        return any(self._technique_tags(event) for event in detail.events)

    def extract(self, detail: Optional[MatchDetail]) -> list[Technique]:
        if detail is None:
            return []
        return [t for t in (self._extract_event(detail, e) for e in detail.events) if t is not None]

    def _extract_event(self, detail: MatchDetail, event: dict) -> Optional[Technique]:
        tags = _tags(event)
        if not tags:
            return None
        technique_tags = [t for t in tags if not _is_structural(t)]
        if not technique_tags:
            return None

        name = str(technique_tags[0].get("name") or "").strip()
        if not name or name.lower().startswith("cancel"):
            return None
        if name.lower() in self.excluded_techniques:
            return None

        side = next((str(t.get("name") or "") for t in tags if t.get("code_short") in DIRECTION_CODES), "")
        score, score_group = score_event(tags, self._raw_score(event))

        actor = self._first_actor(event)
        competitor_id = str(actor["id_person"]) if actor and actor.get("id_person") not in (None, "") else None
        competitor_name = ""
        if actor:
            competitor_name = f"{actor.get('family_name') or ''} {actor.get('given_name') or ''}".strip()

        opponent = detail.opponent_of(competitor_id)
        event_type = event.get("id_contest_event_type") or event.get("type")
        timestamp = event.get("time_real") or event.get("time")

        return Technique(
            technique_name=name,
            score=score,
            score_group=score_group,
            competitor_id=competitor_id,
            competitor_name=competitor_name,
            technique_type=str(event_type) if event_type not in (None, "") else "",
            technique_category=classify_technique(name),
            side=side,
            timestamp=str(timestamp) if timestamp not in (None, "") else None,
            note=str(event.get("custom_title") or ""),
            opponent_id=opponent.id if opponent else None,
            opponent_name=opponent.name if opponent else None,
            opponent_country=(opponent.country or opponent.country_code) if opponent else None,
        )

    @staticmethod
    def _first_actor(event: dict) -> Optional[dict]:
        actors = event.get("actors")
        if isinstance(actors, list) and actors and isinstance(actors[0], dict):
            return actors[0]
        return None

    @staticmethod
    def _raw_score(event: dict) -> int:
        value: Any = event.get("pts")
        try:
            return int(value) if value is not None else 0
        except (TypeError, ValueError):
            return 0
