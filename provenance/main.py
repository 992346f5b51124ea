# Run with:
#   uvicorn provenance.main:app --reload

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config, database
from .client import RequestScheduler, SleeperClient
from .errors import InvalidAssetIdentityError, SourceUnavailableError
from .models.assets import (
    AssetEventCount,
    AssetKind,
    LeagueFamily,
    PickTimeline,
    PlayerTimeline,
    RosterPicks,
    TimelineGraph,
    TransactionDetail,
    WeeklyBenchmark,
)
from .models.sync import JobStatus
from .services import benchmarks, graph, jobs, rosters, sync, timeline, transactions
from .services.bye_weeks import ByeWeekDetector
from .services.event_store import EventStore, SyncMode
from .services.family import resolve_family

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.create_tables()
    async with httpx.AsyncClient(timeout=config.SLEEPER_TIMEOUT_SECONDS) as http:
        app.state.source = SleeperClient(http, RequestScheduler.from_config())
        app.state.bye_week_cache = {}
        app.state.benchmark_cache = {}
        yield


app = FastAPI(lifespan=lifespan)

# Configure CORS for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_db():
    db = await database.get_db_connection()
    try:
        yield db
    finally:
        await db.close()


def get_source(request: Request) -> SleeperClient:
    return request.app.state.source


@app.exception_handler(InvalidAssetIdentityError)
async def invalid_asset_handler(request: Request, exc: InvalidAssetIdentityError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SourceUnavailableError)
async def source_unavailable_handler(request: Request, exc: SourceUnavailableError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.get("/")
def read_root():
    return {"service": "league-provenance"}


@app.get("/league/{league_id}/family", response_model=LeagueFamily)
async def get_league_family(league_id: str, db=Depends(get_db), source: SleeperClient = Depends(get_source)):
    league_ids = await resolve_family(db, source, league_id)
    return LeagueFamily(root_league_id=league_id, league_ids=league_ids)


@app.get("/league/{league_id}/timeline/player/{player_id}", response_model=PlayerTimeline)
async def get_player_timeline(
    league_id: str, player_id: str, request: Request, db=Depends(get_db), source: SleeperClient = Depends(get_source)
):
    detector = ByeWeekDetector(request.app.state.bye_week_cache)
    return await timeline.get_player_timeline(db, source, league_id, player_id, detector)


@app.get("/league/{league_id}/timeline/pick/{season}/{round}/{original_roster_id}", response_model=PickTimeline)
async def get_pick_timeline(
    league_id: str,
    season: str,
    round: int,
    original_roster_id: int,
    db=Depends(get_db),
    source: SleeperClient = Depends(get_source),
):
    return await timeline.get_pick_timeline(db, source, league_id, season, round, original_roster_id)


@app.get("/league/{league_id}/benchmarks/{position}", response_model=List[WeeklyBenchmark])
async def get_benchmarks(
    league_id: str,
    position: str,
    request: Request,
    season: Optional[str] = None,
    week: Optional[int] = None,
    db=Depends(get_db),
    source: SleeperClient = Depends(get_source),
):
    if week is not None and season is None:
        raise HTTPException(status_code=400, detail="week requires season")
    league_ids = await resolve_family(db, source, league_id)
    weeks = [(season, week)] if week is not None else None
    return await benchmarks.get_benchmarks(
        db, league_ids, position.upper(), weeks=weeks, season=season, cache=request.app.state.benchmark_cache
    )


@app.get("/league/{league_id}/graph", response_model=TimelineGraph)
async def get_graph(
    league_id: str,
    asset: List[str] = Query(...),
    db=Depends(get_db),
    source: SleeperClient = Depends(get_source),
):
    return await graph.get_graph(db, source, league_id, asset)


@app.get("/league/{league_id}/assets/top", response_model=List[AssetEventCount])
async def get_top_assets(
    league_id: str,
    kind: Optional[AssetKind] = None,
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    source: SleeperClient = Depends(get_source),
):
    league_ids = await resolve_family(db, source, league_id)
    return await EventStore(db).top_assets_by_event_count(league_ids, kind, limit)


@app.get("/league/{league_id}/transaction/{transaction_id}", response_model=TransactionDetail)
async def get_transaction(
    league_id: str, transaction_id: str, db=Depends(get_db), source: SleeperClient = Depends(get_source)
):
    detail = await transactions.get_transaction_detail(db, source, league_id, transaction_id)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return detail


@app.get("/league/{league_id}/roster/{roster_id}/picks", response_model=RosterPicks)
async def get_roster_picks(league_id: str, roster_id: int, db=Depends(get_db)):
    picks = await rosters.get_roster_picks(db, league_id, roster_id)
    if picks is None:
        raise HTTPException(status_code=404, detail=f"Roster {roster_id} not found in league {league_id}")
    return picks


async def _run_sync(app: FastAPI, source: SleeperClient, league_id: str, mode: SyncMode):
    await sync.run_sync_job(source, league_id, mode)
    # Cached derivations are stale once the family has been rebuilt
    app.state.bye_week_cache.clear()
    app.state.benchmark_cache.clear()


@app.post("/league/{league_id}/sync", response_model=JobStatus)
async def trigger_league_sync(
    league_id: str,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    mode: SyncMode = SyncMode.FULL,
    db=Depends(get_db),
    source: SleeperClient = Depends(get_source),
):
    status = await jobs.trigger_sync(db, league_id, mode)
    if status.accepted:
        background_tasks.add_task(_run_sync, request.app, source, league_id, mode)
        response.status_code = 202
    else:
        response.status_code = 409
    return status


@app.get("/league/{league_id}/sync", response_model=JobStatus)
async def get_league_sync_status(league_id: str, db=Depends(get_db)):
    return await jobs.get_sync_status(db, league_id)


@app.post("/players/sync")
async def sync_players(db=Depends(get_db), source: SleeperClient = Depends(get_source)):
    count = await sync.sync_players(db, source)
    return {"players": count}
