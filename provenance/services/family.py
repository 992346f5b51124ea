import logging
from typing import Dict, List, Optional

import aiosqlite
from pydantic import ValidationError

from .. import config, storage
from ..client import SleeperClient
from ..errors import SourceUnavailableError
from ..models.assets import SeasonCalendar
from ..models.sleeper import League

logger = logging.getLogger(__name__)


def previous_league_of(league: League) -> Optional[str]:
    # Sleeper uses "0" for a league with no predecessor
    previous = league.previous_league_id
    if previous in (None, "", "0"):
        return None
    return previous


async def _fetch_league(source: SleeperClient, league_id: str) -> Optional[League]:
    try:
        data = await source.get_league(league_id)
    except SourceUnavailableError as e:
        logger.warning("League family chain truncated at %s: %s", league_id, e)
        return None
    if not data:
        logger.warning("League family chain truncated at %s: league not found upstream", league_id)
        return None
    try:
        league = League(**data)
    except ValidationError as e:
        logger.warning("League family chain truncated at %s: malformed league record (%s)", league_id, e)
        return None
    # Stored under the id we asked for, which is the id the chain refers to
    return league.model_copy(update={"league_id": league_id})


async def resolve_family(db: aiosqlite.Connection, source: SleeperClient, root_league_id: str) -> List[str]:
    """Walk ``previous_league_id`` links from ``root_league_id``.

    Returns league ids root first, oldest last. Leagues missing locally are
    fetched from ``source`` and stored. A failed fetch ends the chain there.
    """
    family: List[str] = []
    visited = set()
    cursor: Optional[str] = root_league_id

    while cursor and cursor not in visited:
        visited.add(cursor)
        family.append(cursor)

        league = await storage.get_league(db, cursor)
        if league is None:
            league = await _fetch_league(source, cursor)
            if league is None:
                cursor = None
                break
            await storage.upsert_league(db, league)
        cursor = previous_league_of(league)

    if cursor and cursor in visited:
        logger.warning("League family of %s loops back to %s; stopped", root_league_id, cursor)
    return family


def season_calendar(league: League) -> SeasonCalendar:
    settings = league.settings or {}
    last_week = settings.get("last_scored_leg") or config.DEFAULT_SEASON_LAST_WEEK
    playoff_week_start = settings.get("playoff_week_start") or None
    return SeasonCalendar(
        league_id=league.league_id,
        season=league.season or "",
        last_week=int(last_week),
        playoff_week_start=int(playoff_week_start) if playoff_week_start else None,
    )


async def load_season_calendars(db: aiosqlite.Connection, league_ids: List[str]) -> Dict[str, SeasonCalendar]:
    leagues = await storage.get_leagues(db, league_ids)
    return {league.league_id: season_calendar(league) for league in leagues}


async def load_roster_maps(db: aiosqlite.Connection, league_ids: List[str]) -> Dict[str, Dict[int, str]]:
    return {league_id: await storage.get_roster_map(db, league_id) for league_id in league_ids}
