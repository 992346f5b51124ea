import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import aiosqlite
from pydantic import ValidationError

from .. import config, database, storage
from ..client import SleeperClient
from ..concurrency import bounded_map
from ..errors import SourceUnavailableError
from ..models.assets import PlayerScore
from ..models.sleeper import (
    Draft,
    DraftPick,
    DraftPickMovement,
    League,
    Matchup,
    NflState,
    Player,
    Roster,
    TradedPick,
    Transaction,
    User,
    decode_owner_ref,
)
from ..models.sync import FamilySyncResult, RebuildResult, SyncResult
from . import jobs
from .event_store import EventStore, SyncMode, strategy_for
from .family import load_roster_maps, resolve_family
from .normalizer import normalize_family, resolve_owner

logger = logging.getLogger(__name__)


def scores_from_matchups(league_id: str, week: int, matchups: Iterable[Matchup]) -> List[PlayerScore]:
    """Weekly player scores from one week's matchups; "0" marks an empty lineup slot."""
    scores = []
    for matchup in matchups:
        starters = [pid for pid in (matchup.starters or []) if pid and pid != "0"]
        starter_points = dict(zip(matchup.starters or [], matchup.starters_points or []))
        players_points = matchup.players_points or {}

        for player_id in starters:
            points = players_points.get(player_id, starter_points.get(player_id))
            if points is None:
                continue
            scores.append(PlayerScore(
                league_id=league_id, week=week, roster_id=matchup.roster_id,
                player_id=player_id, points=points, is_starter=True,
            ))
        for player_id, points in players_points.items():
            if player_id in starters or player_id == "0":
                continue
            scores.append(PlayerScore(
                league_id=league_id, week=week, roster_id=matchup.roster_id,
                player_id=player_id, points=points or 0.0, is_starter=False,
            ))
    return scores


def _parse_each(kind: str, league_id: str, payload: Optional[Iterable[Any]], build: Callable[[Any], Any]) -> List[Any]:
    """Build each record of a payload on its own; malformed ones are logged and skipped."""
    records = []
    for data in payload or []:
        try:
            records.append(build(data))
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("League %s: skipping malformed %s record: %s", league_id, kind, e)
    return records


def transaction_from_payload(league_id: str, week: int, data: Dict[str, Any]) -> Transaction:
    """A transaction fetched for ``week``; malformed ``draft_picks`` entries are dropped, the rest is kept."""
    record = {**data, "league_id": league_id, "week": week}
    if data.get("draft_picks"):
        record["draft_picks"] = _parse_each(
            f"draft pick movement in transaction {data.get('transaction_id')}",
            league_id,
            data["draft_picks"],
            DraftPickMovement.model_validate,
        )
    return Transaction.model_validate(record)


def _roster_number(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric roster reference %r in draft pick metadata", value)
        return None


def draft_pick_from_payload(draft_id: str, data: Dict[str, Any]) -> DraftPick:
    traded_from = (data.get("metadata") or {}).get("traded_from")
    return DraftPick(
        draft_id=draft_id,
        pick_no=data.get("pick_no") or 0,
        round=data.get("round") or 0,
        roster_id=data.get("roster_id"),
        player_id=str(data["player_id"]) if data.get("player_id") else None,
        is_keeper=bool(data.get("is_keeper")),
        traded_from_roster_id=_roster_number(traded_from),
    )


def traded_pick_rows(league: League, traded: Iterable[TradedPick], roster_map: Dict[int, str]) -> List[tuple]:
    """``(season, round, original_roster_id, owner_user_id)`` for each traded pick whose owner resolves."""
    rows = []
    for pick in traded:
        owner = decode_owner_ref(pick.owner_id)
        _, owner_user_id = resolve_owner(owner, roster_map)
        if owner_user_id is None:
            logger.warning("League %s: traded %s round %s pick of roster %s has no resolvable owner",
                           league.league_id, pick.season, pick.round, pick.roster_id)
            continue
        rows.append((pick.season or league.season or "", pick.round, pick.roster_id, owner_user_id))
    return rows


def _scored_weeks(league: League) -> List[int]:
    settings = league.settings or {}
    last_scored = settings.get("last_scored_leg")
    last = config.MAX_WEEK if last_scored is None else min(int(last_scored), config.MAX_WEEK)
    return list(range(1, last + 1))


async def sync_league(
    db: aiosqlite.Connection, source: SleeperClient, league_id: str, weeks: Optional[Sequence[int]] = None
) -> SyncResult:
    """Mirror one league's raw data from Sleeper into the local store."""
    league_data = await source.get_league(league_id)
    if not league_data:
        raise SourceUnavailableError(f"/league/{league_id}", message="league not found")
    league = League(**league_data).model_copy(update={"league_id": league_id})
    await storage.upsert_league(db, league)
    result = SyncResult(league_id=league_id, season=league.season)

    users = _parse_each("user", league_id, await source.get_league_users(league_id), User.model_validate)
    await storage.upsert_users(db, users)
    result.users = len(users)

    rosters = _parse_each("roster", league_id, await source.get_league_rosters(league_id), Roster.model_validate)
    result.rosters = await storage.replace_rosters(db, league_id, rosters)
    roster_map = await storage.get_roster_map(db, league_id)

    transaction_weeks = list(weeks) if weeks else list(range(1, config.MAX_WEEK + 1))
    score_weeks = list(weeks) if weeks else _scored_weeks(league)

    async def fetch_transactions(week: int) -> List[Transaction]:
        payload = await source.get_league_transactions(league_id, week)
        return _parse_each("transaction", league_id, payload, lambda tx: transaction_from_payload(league_id, week, tx))

    async def fetch_scores(week: int) -> List[PlayerScore]:
        payload = await source.get_league_matchups(league_id, week)
        return scores_from_matchups(league_id, week, _parse_each("matchup", league_id, payload, Matchup.model_validate))

    for batch in await bounded_map(transaction_weeks, fetch_transactions, config.FETCH_CONCURRENCY):
        result.transactions += await storage.upsert_transactions(db, league_id, batch)
    for batch in await bounded_map(score_weeks, fetch_scores, config.FETCH_CONCURRENCY):
        result.player_scores += await storage.upsert_player_scores(db, batch)

    drafts = _parse_each(
        "draft",
        league_id,
        await source.get_league_drafts(league_id),
        lambda d: Draft.model_validate({**d, "league_id": league_id, "season": d.get("season") or league.season}),
    )
    await storage.upsert_drafts(db, league_id, drafts)
    result.drafts = len(drafts)
    for draft in drafts:
        picks = _parse_each(
            f"pick of draft {draft.draft_id}",
            league_id,
            await source.get_draft_picks(draft.draft_id),
            lambda p: draft_pick_from_payload(draft.draft_id, p),
        )
        result.draft_picks += await storage.replace_draft_picks(db, draft.draft_id, picks)

    traded = _parse_each("traded pick", league_id, await source.get_traded_picks(league_id), TradedPick.model_validate)
    result.traded_picks = await storage.replace_traded_picks(db, league_id, traded_pick_rows(league, traded, roster_map))

    logger.info("Synced league %s (%s): %s", league_id, league.season, result.model_dump(exclude={"league_id", "season"}))
    return result


async def rebuild_asset_events(db: aiosqlite.Connection, league_ids: List[str], mode: SyncMode) -> RebuildResult:
    """Normalize the family's raw data into asset events and write them with the mode's strategy.

    Incremental mode only looks at transactions stored since the family's
    last asset-event sync.
    """
    mode = SyncMode(mode)
    strategy = strategy_for(mode)
    started_at = storage.utc_now()
    since = None
    if mode is SyncMode.INCREMENTAL and league_ids:
        since = await storage.get_last_asset_events_sync(db, league_ids[0])

    leagues = await storage.get_leagues(db, league_ids)
    roster_maps = await load_roster_maps(db, league_ids)
    transactions = await storage.get_transactions(db, league_ids, since=since)
    drafts = await storage.get_drafts(db, league_ids)
    draft_picks = await storage.get_draft_picks(db, [d.draft_id for d in drafts])

    events = normalize_family(leagues, roster_maps, transactions, drafts, draft_picks)
    written = await strategy.write(EventStore(db), league_ids, events)
    await storage.set_last_asset_events_sync(db, league_ids, started_at)

    logger.info("Rebuilt asset events (%s) for %s: %d generated, %d written",
                mode.value, ", ".join(league_ids), len(events), written)
    return RebuildResult(
        mode=mode.value,
        league_ids=list(league_ids),
        transactions_processed=len(transactions),
        events_generated=len(events),
        events_written=written,
        since=since,
    )


async def sync_nfl_state(db: aiosqlite.Connection, source: SleeperClient) -> Optional[NflState]:
    data = await source.get_nfl_state()
    if not data:
        return None
    state = NflState(**data)
    await storage.save_nfl_state(db, state)
    return state


async def sync_league_family(
    db: aiosqlite.Connection, source: SleeperClient, root_league_id: str, mode: SyncMode = SyncMode.FULL
) -> FamilySyncResult:
    """Sync every league of the family, then rebuild its asset events.

    A league that fails upstream is recorded in ``failures``; the rest of the
    family is still synced and rebuilt.
    """
    mode = SyncMode(mode)
    league_ids = await resolve_family(db, source, root_league_id)
    result = FamilySyncResult(root_league_id=root_league_id, mode=mode.value, league_ids=league_ids)

    for league_id in league_ids:
        try:
            result.leagues.append(await sync_league(db, source, league_id))
        except (SourceUnavailableError, ValidationError) as e:
            logger.warning("Skipping league %s in family of %s: %s", league_id, root_league_id, e)
            result.failures[league_id] = str(e)

    try:
        await sync_nfl_state(db, source)
    except SourceUnavailableError as e:
        logger.warning("Could not refresh NFL state: %s", e)

    result.rebuild = await rebuild_asset_events(db, league_ids, mode)
    return result


async def sync_players(db: aiosqlite.Connection, source: SleeperClient) -> int:
    """Refresh the player catalog. Returns the number of players stored."""
    catalog = await source.get_all_players() or {}
    players = []
    for player_id, data in catalog.items():
        try:
            players.append(Player(**{**(data or {}), "player_id": player_id}))
        except ValidationError as e:
            logger.warning("Skipping malformed player %s: %s", player_id, e)
    count = await storage.upsert_players(db, players)
    logger.info("Synced %d players", count)
    return count


async def run_sync_job(source: SleeperClient, root_league_id: str, mode: SyncMode, db_path: Optional[str] = None):
    """Background entry point: runs a family sync on its own connection and records the outcome."""
    db = await database.get_db_connection(db_path)
    try:
        try:
            result = await sync_league_family(db, source, root_league_id, mode)
        except Exception as e:
            logger.exception("Sync of league family %s failed", root_league_id)
            await jobs.fail_sync(db, root_league_id, repr(e))
            return None
        await jobs.finish_sync(db, root_league_id)
        return result
    finally:
        await db.close()
