import logging
from typing import Dict, Iterable, Optional, Tuple

import aiosqlite

from .. import config, storage
from ..models.assets import PlayerScore

logger = logging.getLogger(__name__)

ByeWeekKey = Tuple[str, str, str]


def detect_bye_week(scores: Iterable[PlayerScore]) -> Optional[int]:
    """First week in the bye window where the player scored exactly 0 on the bench.

    A healthy scratch with 0 points looks the same, so this can misfire.
    """
    for score in sorted(scores, key=lambda s: s.week):
        if not config.BYE_WEEK_FIRST <= score.week <= config.BYE_WEEK_LAST:
            continue
        if score.points == 0 and not score.is_starter:
            return score.week
    return None


class ByeWeekDetector:
    """Caches detected bye weeks by ``(league_id, player_id, season)``.

    Pass a shared ``cache`` dict to keep results across detector instances.
    """

    def __init__(self, cache: Optional[Dict[ByeWeekKey, Optional[int]]] = None):
        self.cache = cache if cache is not None else {}

    async def detect(self, db: aiosqlite.Connection, league_id: str, player_id: str, season: str) -> Optional[int]:
        key = (league_id, player_id, season)
        if key in self.cache:
            return self.cache[key]
        scores = await storage.get_player_scores(db, league_id, player_id)
        week = detect_bye_week(scores)
        logger.debug("Bye week for player %s in league %s (%s): %s", player_id, league_id, season, week)
        self.cache[key] = week
        return week

    def clear(self):
        self.cache.clear()
