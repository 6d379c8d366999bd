# main.py

import argparse
import asyncio
import json
import logging
import os

from judostats.aggregates import TechniqueAggregates
from judostats.api_client import IJFAPIClient
from judostats.crawler import CompetitionNotFoundError, CrawlOrchestrator
from judostats.database import Database
from judostats.plugins.judoka_stats import JudokaStatsPlugin
from judostats.query import TechniqueFilters
from judostats.settings import DB_PATH_ENV, DEFAULT_WORKERS, resolve_db_path

logger = logging.getLogger(__name__)


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--gender")
    parser.add_argument("--weight-class")
    parser.add_argument("--event-type")
    parser.add_argument("--competition-id", type=int)
    parser.add_argument("--year", type=int)
    parser.add_argument("--height-range", help="e.g. '<170', '175-182', '>=190'")
    parser.add_argument("--technique-category")
    parser.add_argument("--score-group")


def _filters_from_args(args: argparse.Namespace) -> TechniqueFilters:
    return TechniqueFilters.from_mapping({
        "gender": args.gender,
        "weight_class": args.weight_class,
        "event_type": args.event_type,
        "competition_id": args.competition_id,
        "year": args.year,
        "height_range": args.height_range,
        "technique_category": args.technique_category,
        "score_group": args.score_group,
    })


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Judo technique statistics from IJF competition data")
    parser.add_argument("--db", default=None, help="Path to SQLite database (default: JUDOSTATS_DB_PATH or data/judostats.db)")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Crawl competitions and extract techniques")
    crawl.add_argument("--min-year", type=int)
    crawl.add_argument("--limit", type=int)
    crawl.add_argument("--skip-existing", action="store_true", help="Skip competitions already stored")
    crawl.add_argument("--workers", type=int, default=DEFAULT_WORKERS)
    crawl.add_argument("--no-profiles", action="store_true", help="Skip the profile fetch phase")
    crawl.add_argument("--force-profiles", action="store_true", help="Re-fetch profiles that already exist")

    single = sub.add_parser("crawl-single", help="Crawl one competition by id")
    single.add_argument("competition_id", type=int)

    profiles = sub.add_parser("crawl-profiles", help="Fetch athlete profiles")
    profiles.add_argument("--force", action="store_true")
    profiles.add_argument("--workers", type=int, default=DEFAULT_WORKERS)

    stats = sub.add_parser("stats", help="Print aggregate technique stats")
    _add_filter_args(stats)
    stats.add_argument("--json", action="store_true", help="Print raw JSON")

    judoka = sub.add_parser("judoka", help="Print one athlete's technique breakdown")
    judoka.add_argument("judoka_id")
    _add_filter_args(judoka)

    sub.add_parser("clean-db", help="Delete all stored data")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _print_stats(stats: dict) -> None:
    print(f"\nCompetitions: {stats['total_competitions']}  Matches: {stats['total_matches']}  "
          f"Techniques: {stats['total_techniques']}  Judoka: {stats['total_judoka']}")
    print("\n--- BY SCORE GROUP ---")
    for row in stats["techniques_by_score_group"]:
        print(f"  {row['score_group']:<10} {row['count']:>7}")
    print("\n--- TOP TECHNIQUES ---")
    for row in stats["top_techniques"][:20]:
        print(f"  {row['name']:<28} {row['count']:>6}  avg {row['avg_score']:.2f}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db_path = resolve_db_path(args.db)

    if args.command == "serve":
        import uvicorn

        os.environ[DB_PATH_ENV] = db_path
        uvicorn.run("web.app:app", host=args.host, port=args.port)
        return 0

    try:
        db = Database(db_path)
    except RuntimeError as e:
        logger.error("Cannot open database: %s", e)
        return 1

    try:
        if args.command == "crawl":
            orchestrator = CrawlOrchestrator(db, IJFAPIClient(), workers=args.workers)
            summary = asyncio.run(orchestrator.crawl(
                min_year=args.min_year,
                skip_existing=args.skip_existing,
                limit=args.limit,
                fetch_profiles=not args.no_profiles,
                force_profiles=args.force_profiles,
            ))
            summary.print_summary()
        elif args.command == "crawl-single":
            orchestrator = CrawlOrchestrator(db, IJFAPIClient())
            try:
                outcome = asyncio.run(orchestrator.crawl_single(args.competition_id))
            except CompetitionNotFoundError as e:
                print(str(e))
                return 1
            print(json.dumps(outcome.to_dict(), indent=2))
        elif args.command == "crawl-profiles":
            orchestrator = CrawlOrchestrator(db, IJFAPIClient(), workers=args.workers)
            result = asyncio.run(orchestrator.fetch_profiles(force=args.force))
            print(json.dumps(result.to_dict(), indent=2))
        elif args.command in ("stats", "judoka"):
            try:
                filters = _filters_from_args(args)
                if args.command == "judoka":
                    JudokaStatsPlugin(db).summary(args.judoka_id, filters)
                    return 0
                stats = TechniqueAggregates(db).get_stats(filters)
            except ValueError as e:
                print(f"Invalid filter: {e}")
                return 2
            if args.json:
                print(json.dumps(stats, indent=2))
            else:
                _print_stats(stats)
        elif args.command == "clean-db":
            counts = db.clear_all()
            print(f"Deleted: {counts}")
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
