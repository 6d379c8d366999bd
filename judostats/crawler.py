"""
judostats/crawler.py
====================
Walks competitions -> categories -> matches -> techniques and persists the
results, then optionally fills in athlete profiles.

Competitions (and, in the profile phase, athlete ids) run in fixed-size
batches on one event loop. Blocking HTTP calls go through asyncio.to_thread;
database writes stay on the loop thread. A failing batch member is recorded
and never aborts its siblings.

Per competition:
  pending -> categories-fetched -> (no-categories) -> sampled
          -> (done-empty) -> matches-processed -> persisted | failed

Re-crawling a competition replaces its technique set in one transaction.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from judostats.extractor import TechniqueExtractor
from judostats.models import Category, Competition, JudokaProfile, Match, MatchDetail, Technique
from judostats.settings import DEFAULT_WORKERS, PROFILE_SAVE_EVERY, SAMPLE_MATCHES

logger = logging.getLogger(__name__)


class CompetitionNotFoundError(ValueError):
    """Raised when a competition id is not in the remote competition list."""


class InvalidJudokaIdError(ValueError):
    """Raised when an athlete id is not numeric."""


class CompetitionState(str, Enum):
    PENDING = "pending"
    CATEGORIES_FETCHED = "categories-fetched"
    NO_CATEGORIES = "no-categories"
    SAMPLED = "sampled"
    DONE_EMPTY = "done-empty"
    MATCHES_PROCESSED = "matches-processed"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class CompetitionOutcome:
    competition_id: int
    name: str = ""
    state: CompetitionState = CompetitionState.PENDING
    categories: int = 0
    matches: int = 0
    techniques: int = 0
    error: Optional[str] = None
    history: list[CompetitionState] = field(default_factory=list)

    def advance(self, state: CompetitionState) -> None:
        self.history.append(self.state)
        self.state = state

    def to_dict(self) -> dict:
        return {
            "competition_id": self.competition_id,
            "name": self.name,
            "state": self.state.value,
            "categories": self.categories,
            "matches": self.matches,
            "techniques": self.techniques,
            "error": self.error,
        }


@dataclass
class ProfileSummary:
    total: int = 0
    fetched: int = 0
    skipped: int = 0
    errors: int = 0
    failed_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "fetched": self.fetched,
            "skipped": self.skipped,
            "errors": self.errors,
            "failed_ids": list(self.failed_ids),
        }


@dataclass
class CrawlSummary:
    run_at: str = field(default_factory=lambda: datetime.now().isoformat())
    competitions_total: int = 0
    outcomes: list[CompetitionOutcome] = field(default_factory=list)
    profiles: Optional[ProfileSummary] = None

    def _count(self, state: CompetitionState) -> int:
        return sum(1 for o in self.outcomes if o.state == state)

    @property
    def persisted(self) -> int:
        return self._count(CompetitionState.PERSISTED)

    @property
    def empty(self) -> int:
        return self._count(CompetitionState.DONE_EMPTY) + self._count(CompetitionState.NO_CATEGORIES)

    @property
    def failed(self) -> int:
        return self._count(CompetitionState.FAILED)

    @property
    def techniques(self) -> int:
        return sum(o.techniques for o in self.outcomes)

    @property
    def matches(self) -> int:
        return sum(o.matches for o in self.outcomes)

    @property
    def errors(self) -> list[str]:
        return [f"{o.competition_id}: {o.error}" for o in self.outcomes if o.state == CompetitionState.FAILED]

    def to_dict(self) -> dict:
        return {
            "run_at": self.run_at,
            "competitions_total": self.competitions_total,
            "persisted": self.persisted,
            "empty": self.empty,
            "failed": self.failed,
            "matches": self.matches,
            "techniques": self.techniques,
            "errors": self.errors,
            "competitions": [o.to_dict() for o in self.outcomes],
            "profiles": self.profiles.to_dict() if self.profiles else None,
        }

    def print_summary(self) -> None:
        print("\n" + "=" * 60)
        print("CRAWL SUMMARY")
        print("=" * 60)
        print(f"Run at:              {self.run_at}")
        print(f"Competitions:        {self.competitions_total}")
        print(f"  persisted:         {self.persisted}")
        print(f"  empty:             {self.empty}")
        print(f"  failed:            {self.failed}")
        print(f"Matches stored:      {self.matches}")
        print(f"Techniques stored:   {self.techniques}")
        if self.profiles:
            p = self.profiles
            print(f"Profiles:            {p.fetched} fetched, {p.skipped} skipped, {p.errors} errors (of {p.total})")
        if self.errors:
            print("\nErrors:")
            for error in self.errors:
                print(f"  - {error}")
        print("=" * 60)


def _chunks(items: list, size: int) -> Iterable[list]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield items[start:start + size]


class CrawlOrchestrator:
    def __init__(
        self,
        db: Any,
        client: Any,
        extractor: Optional[TechniqueExtractor] = None,
        workers: int = DEFAULT_WORKERS,
        sample_size: int = SAMPLE_MATCHES,
        profile_save_every: int = PROFILE_SAVE_EVERY,
    ):
        self.db = db
        self.client = client
        self.extractor = extractor or TechniqueExtractor()
        self.workers = max(1, int(workers))
        self.sample_size = max(1, int(sample_size))
        self.profile_save_every = max(1, int(profile_save_every))

    async def _call(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # --- Competition phase ---

    async def select_competitions(
        self,
        min_year: Optional[int] = None,
        skip_existing: bool = False,
        limit: Optional[int] = None,
        competition_ids: Optional[Iterable[int]] = None,
    ) -> list[Competition]:
        competitions = await self._call(self.client.get_all_competitions)
        if competition_ids is not None:
            wanted = {int(c) for c in competition_ids}
            competitions = [c for c in competitions if c.competition_id in wanted]
        if min_year is not None:
            competitions = [c for c in competitions if c.year is not None and c.year >= min_year]
        if skip_existing:
            existing = self.db.get_competition_ids()
            before = len(competitions)
            competitions = [c for c in competitions if c.competition_id not in existing]
            logger.info("Skipping %d already crawled competitions", before - len(competitions))
        if limit is not None and limit > 0:
            competitions = competitions[:limit]
        return competitions

    async def crawl(
        self,
        min_year: Optional[int] = None,
        skip_existing: bool = False,
        limit: Optional[int] = None,
        competition_ids: Optional[Iterable[int]] = None,
        fetch_profiles: bool = True,
        force_profiles: bool = False,
    ) -> CrawlSummary:
        competitions = await self.select_competitions(min_year, skip_existing, limit, competition_ids)
        summary = CrawlSummary(competitions_total=len(competitions))
        logger.info("Crawling %d competitions with %d workers", len(competitions), self.workers)

        batches = list(_chunks(competitions, self.workers))
        for index, batch in enumerate(batches, start=1):
            results = await asyncio.gather(
                *(self.crawl_competition(c) for c in batch), return_exceptions=True
            )
            for competition, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error("Competition %s failed: %s", competition.competition_id, result)
                    result = CompetitionOutcome(
                        competition_id=competition.competition_id,
                        name=competition.name,
                        state=CompetitionState.FAILED,
                        error=str(result),
                    )
                summary.outcomes.append(result)
            logger.info(
                "Batch %d/%d done: %d persisted, %d failed so far",
                index, len(batches), summary.persisted, summary.failed,
            )

        if fetch_profiles:
            summary.profiles = await self.fetch_profiles(force=force_profiles)
        return summary

    async def crawl_single(self, competition_id: int) -> CompetitionOutcome:
        competitions = await self.select_competitions(competition_ids=[competition_id])
        if not competitions:
            raise CompetitionNotFoundError(f"Competition {competition_id} not found")
        return await self.crawl_competition(competitions[0])

    async def crawl_competition(self, competition: Competition) -> CompetitionOutcome:
        cid = competition.competition_id
        outcome = CompetitionOutcome(competition_id=cid, name=competition.name)
        try:
            categories = await self._call(self.client.get_competition_categories, cid)
            outcome.advance(CompetitionState.CATEGORIES_FETCHED)
            if not categories:
                self.db.replace_competition_techniques(cid, [])
                outcome.advance(CompetitionState.NO_CATEGORIES)
                logger.info("Competition %s (%s): no categories", cid, competition.name)
                return outcome

            sampled = []
            for category in categories:
                sample = await self._sample_category(category, cid)
                if sample is not None:
                    sampled.append((category, *sample))
            outcome.advance(CompetitionState.SAMPLED)

            if not sampled:
                self.db.replace_competition_techniques(cid, [])
                outcome.advance(CompetitionState.DONE_EMPTY)
                logger.info("Competition %s (%s): no categories with techniques", cid, competition.name)
                return outcome

            kept: list[Category] = []
            techniques: list[Technique] = []
            for category, matches, details in sampled:
                category.matches = await self._process_category(competition, category, matches, details)
                kept.append(category)
                techniques.extend(t for m in category.matches for t in m.techniques)
            outcome.advance(CompetitionState.MATCHES_PROCESSED)

            stored = replace(competition, categories=kept)
            outcome.techniques = self.db.replace_competition_techniques(cid, techniques, stored)
            outcome.categories = len(kept)
            outcome.matches = stored.match_count
            outcome.advance(CompetitionState.PERSISTED)
            logger.info(
                "Competition %s (%s): %d categories, %d matches, %d techniques",
                cid, competition.name, outcome.categories, outcome.matches, outcome.techniques,
            )
        except Exception as exc:
            logger.error("Competition %s (%s) failed: %s", cid, competition.name, exc)
            outcome.error = str(exc)
            outcome.advance(CompetitionState.FAILED)
        return outcome

    async def _sample_category(
        self, category: Category, competition_id: int
    ) -> Optional[tuple[list[Match], dict[str, MatchDetail]]]:
        """Return (matches, sampled details) when the first matches carry techniques."""
        matches = await self._call(self.client.get_matches, competition_id, category.weight_id)
        if not matches:
            return None
        details: dict[str, MatchDetail] = {}
        for match in matches[:self.sample_size]:
            detail = await self._call(self.client.get_match_details, match.contest_code)
            if detail is not None:
                details[match.contest_code] = detail
        if not any(self.extractor.has_techniques(d) for d in details.values()):
            logger.debug("Category %s (%s): sample has no techniques, skipping", category.id, category.weight_class)
            return None
        return matches, details

    async def _process_category(
        self,
        competition: Competition,
        category: Category,
        matches: list[Match],
        details: dict[str, MatchDetail],
    ) -> list[Match]:
        processed = []
        for match in matches:
            detail = details.get(match.contest_code)
            if detail is None:
                detail = await self._call(self.client.get_match_details, match.contest_code)
            if detail is None:
                logger.debug("No detail for contest %s", match.contest_code)
            elif not match.competitors:
                match = replace(match, competitors=list(detail.competitors))
            techniques = [
                replace(
                    t,
                    competition_id=competition.competition_id,
                    match_contest_code=match.contest_code,
                    competition_name=competition.name,
                    weight_class=category.weight_class,
                    gender=category.gender,
                    event_type=competition.event_type,
                )
                for t in self.extractor.extract(detail)
            ]
            processed.append(replace(match, techniques=techniques))
        return processed

    # --- Profile phase ---

    async def fetch_profiles(self, force: bool = False, judoka_ids: Optional[Iterable[str]] = None) -> ProfileSummary:
        ids = [str(i).strip() for i in (judoka_ids if judoka_ids is not None else self.db.get_all_unique_judoka_ids())]
        summary = ProfileSummary(total=len(ids))
        existing = set() if force else self.db.get_judoka_profile_ids()

        pending = []
        for judoka_id in dict.fromkeys(ids):
            if not judoka_id.isdigit():
                logger.warning("Skipping invalid judoka id %r", judoka_id)
                summary.errors += 1
                summary.failed_ids.append(judoka_id)
            elif judoka_id in existing:
                summary.skipped += 1
            else:
                pending.append(judoka_id)
        logger.info(
            "Fetching %d profiles (%d already stored, %d invalid)",
            len(pending), summary.skipped, summary.errors,
        )

        buffer: list[JudokaProfile] = []
        for batch in _chunks(pending, self.workers):
            results = await asyncio.gather(
                *(self._call(self.client.get_profile, judoka_id) for judoka_id in batch),
                return_exceptions=True,
            )
            for judoka_id, result in zip(batch, results):
                if isinstance(result, BaseException) or result is None:
                    if isinstance(result, BaseException):
                        logger.warning("Profile %s failed: %s", judoka_id, result)
                    summary.errors += 1
                    summary.failed_ids.append(judoka_id)
                    continue
                buffer.append(result)
                summary.fetched += 1
            if len(buffer) >= self.profile_save_every:
                self.db.upsert_judoka_profiles(buffer)
                logger.info("Saved %d profiles (%d/%d)", len(buffer), summary.fetched, len(pending))
                buffer = []
        if buffer:
            self.db.upsert_judoka_profiles(buffer)
        return summary

    async def lookup_profile(self, judoka_id: Any, force: bool = False) -> Optional[JudokaProfile]:
        """Stored profile, fetched remotely when missing or when forced."""
        judoka_id = str(judoka_id).strip()
        if not judoka_id.isdigit():
            raise InvalidJudokaIdError(f"Invalid judoka id: {judoka_id!r}")
        stored = self.db.get_judoka_profile(judoka_id)
        if stored is not None and not force:
            return stored
        profile = await self._call(self.client.get_profile, judoka_id)
        if profile is None:
            return stored
        self.db.upsert_judoka_profile(profile)
        return profile
