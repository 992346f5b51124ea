import logging
from typing import Dict, List, Optional, Set, Tuple

import aiosqlite

from .. import config, storage
from ..models.assets import PickAsset, RosterPick, RosterPicks

logger = logging.getLogger(__name__)


def future_seasons(season: str, count: int = config.FUTURE_PICK_SEASONS) -> List[str]:
    return [str(int(season) + offset) for offset in range(1, count + 1)]


def pick_holdings(
    roster_id: int,
    owner_user_id: str,
    seasons: List[str],
    rounds: int,
    traded: List[Tuple[str, int, int, str]],
    manager_names: Dict[int, str],
) -> List[RosterPick]:
    """Future picks held by one roster: its own unless traded away, plus those it traded for.

    ``traded`` rows are ``(season, round, original_roster_id, owner_user_id)``.
    """
    def name(rid: int) -> str:
        return manager_names.get(rid) or f"Roster {rid}"

    def pick(season: str, round_: int, original_roster_id: int, acquired: bool) -> RosterPick:
        asset = PickAsset(season=season, round=round_, original_roster_id=original_roster_id)
        return RosterPick(
            asset_id=asset.asset_id,
            season=season,
            round=round_,
            original_roster_id=original_roster_id,
            original_manager=name(original_roster_id),
            acquired_by_trade=acquired,
        )

    traded_away: Set[Tuple[str, int]] = set()
    acquired: List[RosterPick] = []
    for season, round_, original_roster_id, owner in traded:
        if season not in seasons:
            continue
        if original_roster_id == roster_id and owner != owner_user_id:
            traded_away.add((season, round_))
        elif owner == owner_user_id and original_roster_id != roster_id:
            acquired.append(pick(season, round_, original_roster_id, True))

    own = [
        pick(season, round_, roster_id, False)
        for season in seasons
        for round_ in range(1, rounds + 1)
        if (season, round_) not in traded_away
    ]
    return sorted(own + acquired, key=lambda p: (p.season, p.round, p.original_roster_id))


async def get_roster_picks(db: aiosqlite.Connection, league_id: str, roster_id: int) -> Optional[RosterPicks]:
    """Future draft picks one roster holds, from the league's traded-pick snapshot.

    Returns None when the league or roster is not stored.
    """
    league = await storage.get_league(db, league_id)
    if league is None or not (league.season or "").isdigit():
        return None
    roster_map = await storage.get_roster_map(db, league_id)
    owner_user_id = roster_map.get(roster_id)
    if owner_user_id is None:
        return None

    seasons = future_seasons(league.season)
    rounds = int((league.settings or {}).get("draft_rounds") or config.DEFAULT_DRAFT_ROUNDS)
    traded = await storage.get_traded_picks(db, league_id, min_season=seasons[0])

    users = await storage.get_users(db, roster_map.values())
    manager_names = {
        rid: users[uid].display_name or users[uid].username
        for rid, uid in roster_map.items() if uid in users
    }
    picks = pick_holdings(roster_id, owner_user_id, seasons, rounds, traded, manager_names)
    logger.debug("League %s roster %s holds %d future picks", league_id, roster_id, len(picks))
    return RosterPicks(league_id=league_id, roster_id=roster_id, owner_user_id=owner_user_id, picks=picks)
