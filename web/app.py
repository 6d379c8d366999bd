from fastapi import FastAPI, HTTPException, Request
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from judostats.aggregates import TechniqueAggregates
from judostats.api_client import IJFAPIClient
from judostats.crawler import CompetitionNotFoundError, CrawlOrchestrator, InvalidJudokaIdError
from judostats.database import Database
from judostats.plugins.judoka_stats import JudokaStatsPlugin
from judostats.query import TechniqueFilters
from judostats.settings import DB_PATH_ENV, DEFAULT_WORKERS, resolve_db_path

app = FastAPI()
db = Database(resolve_db_path(os.environ.get(DB_PATH_ENV)))
aggregates = TechniqueAggregates(db)
judoka_stats = JudokaStatsPlugin(db)
api_client = IJFAPIClient()


def _orchestrator(workers: int = DEFAULT_WORKERS) -> CrawlOrchestrator:
    return CrawlOrchestrator(db, api_client, workers=workers)


def _filters(request: Request, *exclude: str) -> TechniqueFilters:
    params = {k: v for k, v in request.query_params.items() if k not in exclude}
    try:
        return TechniqueFilters.from_mapping(params)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _numeric_id(raw: str, label: str = "id") -> str:
    value = str(raw or "").strip()
    if not value.isdigit():
        raise HTTPException(status_code=400, detail=f"{label} must be numeric")
    return value


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except Exception:
        payload = {}
    return payload if isinstance(payload, dict) else {}


def _int_or_none(value: object, label: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{label} must be an integer")


@app.get("/api/stats")
async def get_stats(request: Request) -> dict:
    filters = _filters(request)
    try:
        return aggregates.get_stats(filters)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load stats: {str(e)}")


@app.get("/api/technique-stats")
async def get_technique_stats(request: Request) -> dict:
    filters = _filters(request)
    try:
        return {"techniques": aggregates.get_technique_stats(filters), "filters": filters.to_dict()}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load technique stats: {str(e)}")


@app.get("/api/filters")
async def get_filters() -> dict:
    try:
        return aggregates.get_available_filters()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load filters: {str(e)}")


@app.get("/api/techniques/{name}")
async def get_technique(name: str, request: Request, limit: int = 10) -> dict:
    filters = _filters(request, "limit")
    try:
        return {
            "name": name,
            "matches": aggregates.get_matches_for_technique(name, filters),
            "top_judoka": aggregates.get_top_judoka_for_technique(name, limit=limit, filters=filters),
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load technique '{name}': {str(e)}")


@app.get("/api/judoka")
async def get_judoka(request: Request, id: str = "", search: str = "") -> dict:
    if not id:
        try:
            return {"judoka": aggregates.get_judoka_list(search)}
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to list judoka: {str(e)}")

    judoka_id = _numeric_id(id)
    filters = _filters(request, "id", "search")
    try:
        stats = judoka_stats.stats_for(judoka_id, filters)
        received = judoka_stats.received_stats_for(judoka_id, filters)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load judoka {judoka_id}: {str(e)}")
    if stats is None and received["total_techniques"] == 0:
        raise HTTPException(status_code=404, detail=f"No techniques found for judoka {judoka_id}")
    return {"stats": stats, "received": received}


@app.get("/api/judoka-leaders")
async def get_judoka_leaders(request: Request) -> dict:
    filters = _filters(request)
    try:
        return aggregates.get_top_judoka_stats(filters)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load judoka leaders: {str(e)}")


@app.get("/api/judoka/{judoka_id}/profile")
async def get_judoka_profile(judoka_id: str, force: bool = False) -> dict:
    try:
        profile = await _orchestrator().lookup_profile(judoka_id, force=force)
    except InvalidJudokaIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load profile {judoka_id}: {str(e)}")
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile {judoka_id} not found")
    return profile.to_dict()


@app.post("/api/judoka/{judoka_id}/profile")
async def update_judoka_profile(judoka_id: str, request: Request) -> dict:
    judoka_id = _numeric_id(judoka_id)
    payload = await _json_body(request)
    updates = {
        "name": payload.get("name"),
        "height": _int_or_none(payload.get("height"), "height"),
        "age": _int_or_none(payload.get("age"), "age"),
        "country": payload.get("country"),
    }
    try:
        profile = db.update_judoka_profile(judoka_id, updates)
        aggregates.invalidate()
        return profile.to_dict()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update profile {judoka_id}: {str(e)}")


@app.get("/api/competitions")
async def list_competitions() -> dict:
    try:
        return {
            "competitions": [c.to_dict(include_categories=False) for c in db.get_all_competitions()],
            "years": db.get_competition_years(),
        }
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list competitions: {str(e)}")


@app.get("/api/competitions/{competition_id}")
async def get_competition(competition_id: str) -> dict:
    cid = int(_numeric_id(competition_id, "competition_id"))
    try:
        competition = db.get_competition(cid)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load competition {cid}: {str(e)}")
    if competition is None:
        raise HTTPException(status_code=404, detail=f"Competition {cid} not found")
    return competition.to_dict()


@app.post("/api/crawl")
async def crawl(request: Request) -> dict:
    payload = await _json_body(request)
    workers = _int_or_none(payload.get("workers"), "workers") or DEFAULT_WORKERS
    min_year = _int_or_none(payload.get("minYear"), "minYear")
    limit = _int_or_none(payload.get("limit"), "limit")
    try:
        summary = await _orchestrator(workers).crawl(
            min_year=min_year,
            skip_existing=bool(payload.get("skipExisting", False)),
            limit=limit,
            fetch_profiles=bool(payload.get("fetchProfiles", True)),
            force_profiles=bool(payload.get("forceProfiles", False)),
        )
        aggregates.invalidate()
        return {"ok": True, "summary": summary.to_dict()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Crawl failed: {str(e)}")


@app.post("/api/crawl-single")
async def crawl_single(request: Request) -> dict:
    payload = await _json_body(request)
    cid = _int_or_none(payload.get("competitionId"), "competitionId")
    if cid is None:
        raise HTTPException(status_code=400, detail="competitionId is required")
    try:
        outcome = await _orchestrator().crawl_single(cid)
        aggregates.invalidate()
        return {"ok": True, "competition": outcome.to_dict()}
    except CompetitionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Crawl of competition {cid} failed: {str(e)}")


@app.post("/api/crawl-judoka-profiles")
async def crawl_judoka_profiles(request: Request) -> dict:
    payload = await _json_body(request)
    try:
        summary = await _orchestrator().fetch_profiles(force=bool(payload.get("force", False)))
        aggregates.invalidate()
        return {"ok": True, **summary.to_dict()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Profile crawl failed: {str(e)}")


@app.post("/api/clean-db")
async def clean_db() -> dict:
    try:
        deleted = db.clear_all()
        aggregates.invalidate()
        return {"ok": True, "deleted": deleted}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to clean database: {str(e)}")
