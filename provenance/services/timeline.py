import logging
from typing import Dict, List, Optional, Sequence

import aiosqlite

from .. import config, storage
from ..client import SleeperClient
from ..models.assets import (
    SEASON_CONTINUATION,
    AssetEvent,
    PerformanceMetrics,
    PerformancePeriod,
    PickAsset,
    PickTimeline,
    PlayerAsset,
    PlayerInfo,
    PlayerScore,
    PlayerTimeline,
    SeasonCalendar,
)
from ..models.sleeper import NflState
from .bye_weeks import ByeWeekDetector
from .event_store import EventStore
from .family import load_roster_maps, load_season_calendars, resolve_family

logger = logging.getLogger(__name__)


def _calendars_by_season(calendars: Dict[str, SeasonCalendar]) -> Dict[str, SeasonCalendar]:
    by_season: Dict[str, SeasonCalendar] = {}
    for calendar in calendars.values():
        by_season.setdefault(calendar.season, calendar)
    return by_season


def _owner_of(event: AssetEvent, roster_maps: Dict[str, Dict[int, str]]) -> Optional[str]:
    if event.to_user_id:
        return event.to_user_id
    return roster_maps.get(event.league_id, {}).get(event.to_roster_id)


def _roster_of(owner_user_id: str, roster_map: Dict[int, str]) -> Optional[int]:
    return next((rid for rid, owner in roster_map.items() if owner == owner_user_id), None)


def add_season_continuations(
    timeline: Sequence[AssetEvent],
    calendars: Dict[str, SeasonCalendar],
    roster_maps: Dict[str, Dict[int, str]],
) -> List[AssetEvent]:
    """Insert ``season_continuation`` events for seasons an owner kept a player without any event.

    ``calendars`` and ``roster_maps`` are keyed by league id. The owner is
    followed into a later league through their user id; continuation stops
    at the first season where they have no roster.
    """
    by_season = _calendars_by_season(calendars)
    seasons = sorted(by_season)
    result: List[AssetEvent] = []

    for i, event in enumerate(timeline):
        result.append(event)
        if event.asset_kind != "player" or event.to_roster_id is None or event.season is None:
            continue
        owner = _owner_of(event, roster_maps)
        if owner is None:
            continue

        following = timeline[i + 1] if i + 1 < len(timeline) else None
        for season in seasons:
            if season <= event.season:
                continue
            if following is not None and following.season is not None:
                if season > following.season:
                    break
                # The next event's own season counts only if the owner held the player for part of it
                if season == following.season and (following.week or 0) <= 1:
                    break

            calendar = by_season[season]
            roster_id = _roster_of(owner, roster_maps.get(calendar.league_id, {}))
            if roster_id is None:
                logger.debug("Owner %s has no roster in league %s; continuation of %s stops",
                             owner, calendar.league_id, event.asset_id)
                break
            result.append(AssetEvent(
                league_id=calendar.league_id,
                season=season,
                week=1,
                event_type=SEASON_CONTINUATION,
                asset_kind=event.asset_kind,
                player_id=event.player_id,
                to_user_id=owner,
                to_roster_id=roster_id,
                details={"continued_from_league_id": event.league_id, "continued_from_season": event.season},
                is_continuation=True,
            ))
    return result


def is_ongoing_season(season: Optional[str], current: Optional[NflState]) -> bool:
    if current is None or season is None:
        return False
    return current.season == season and current.season_type != "off"


def segment(
    timeline: Sequence[AssetEvent],
    calendars: Dict[str, SeasonCalendar],
    current: Optional[NflState] = None,
) -> List[PerformancePeriod]:
    """Split a player's timeline into ownership periods.

    Each event that puts the player on a roster opens a period at its week
    (week 0, the draft, starts at week 1). The period ends the week before
    the next event of the same season, at the season's last week when the
    next event is in a later season, and stays open (``end_week=None``) for
    the current holder in an ongoing season.
    """
    periods: List[PerformancePeriod] = []

    for i, event in enumerate(timeline):
        if event.asset_kind != "player" or event.to_roster_id is None or event.season is None:
            continue
        calendar = calendars.get(event.league_id)
        last_week = calendar.last_week if calendar else config.DEFAULT_SEASON_LAST_WEEK
        start_week = max(event.week or 0, 1)

        following = timeline[i + 1] if i + 1 < len(timeline) else None
        if following is not None and following.season == event.season:
            # An undated next move counts as happening in this event's week
            following_week = following.week if following.week is not None else (event.week or 0)
            end_week: Optional[int] = following_week - 1
        elif following is not None or not is_ongoing_season(event.season, current):
            end_week = last_week
        else:
            end_week = None

        if end_week is not None and start_week > end_week:
            continue
        periods.append(PerformancePeriod(
            asset_id=event.asset_id,
            league_id=event.league_id,
            season=event.season,
            roster_id=event.to_roster_id,
            owner_user_id=event.to_user_id,
            start_week=start_week,
            end_week=end_week,
            is_continuation=event.is_continuation,
            from_event_id=event.id,
            to_event_id=following.id if following is not None else None,
        ))
    return periods


def calculate_metrics(
    scores: Sequence[PlayerScore],
    period: PerformancePeriod,
    calendar: Optional[SeasonCalendar] = None,
    bye_week: Optional[int] = None,
    through_week: Optional[int] = None,
) -> PerformanceMetrics:
    """Scoring for the period's roster between its start and end weeks.

    Skips the bye week and playoff weeks, and counts at most
    ``MAX_REGULAR_SEASON_GAMES`` games.
    """
    end_week = period.end_week if period.end_week is not None else through_week
    playoff_start = calendar.playoff_week_start if calendar else None

    weekly = []
    for score in sorted(scores, key=lambda s: s.week):
        if score.roster_id != period.roster_id or score.week < period.start_week:
            continue
        if end_week is not None and score.week > end_week:
            continue
        if score.week == bye_week:
            continue
        if playoff_start and score.week >= playoff_start:
            continue
        weekly.append(score)
    weekly = weekly[:config.MAX_REGULAR_SEASON_GAMES]

    if not weekly:
        return PerformanceMetrics()

    starts = [s for s in weekly if s.is_starter]
    bench = [s for s in weekly if not s.is_starter]
    total = sum(s.points for s in weekly)
    return PerformanceMetrics(
        ppg=round(total / len(weekly), 2),
        starter_pct=round(len(starts) / len(weekly) * 100, 1),
        ppg_starter=round(sum(s.points for s in starts) / len(starts), 2) if starts else 0.0,
        ppg_bench=round(sum(s.points for s in bench) / len(bench), 2) if bench else 0.0,
        games_played=len(weekly),
        games_started=len(starts),
    )


async def get_player_timeline(
    db: aiosqlite.Connection,
    source: SleeperClient,
    root_league_id: str,
    player_id: str,
    detector: Optional[ByeWeekDetector] = None,
) -> PlayerTimeline:
    asset = PlayerAsset(player_id=player_id)
    family = await resolve_family(db, source, root_league_id)
    events = await EventStore(db).query_timeline(asset, family)

    calendars = await load_season_calendars(db, family)
    roster_maps = await load_roster_maps(db, family)
    timeline = add_season_continuations(events, calendars, roster_maps)

    current = await storage.get_nfl_state(db)
    periods = segment(timeline, calendars, current)

    detector = detector or ByeWeekDetector()
    scores_by_league: Dict[str, List[PlayerScore]] = {}
    for period in periods:
        if period.league_id not in scores_by_league:
            scores_by_league[period.league_id] = await storage.get_player_scores(db, period.league_id, player_id)
        bye_week = await detector.detect(db, period.league_id, player_id, period.season)
        through_week = current.week if is_ongoing_season(period.season, current) else None
        period.metrics = calculate_metrics(
            scores_by_league[period.league_id], period, calendars.get(period.league_id), bye_week, through_week
        )

    player = await storage.get_player(db, player_id) or PlayerInfo(id=player_id, name=f"Player {player_id}")
    return PlayerTimeline(asset_id=asset.asset_id, family=family, player=player, events=timeline, periods=periods)


async def get_pick_timeline(
    db: aiosqlite.Connection,
    source: SleeperClient,
    root_league_id: str,
    season: str,
    round: int,
    original_roster_id: int,
) -> PickTimeline:
    asset = PickAsset(season=season, round=round, original_roster_id=original_roster_id)
    family = await resolve_family(db, source, root_league_id)
    events = await EventStore(db).query_timeline(asset, family)
    return PickTimeline(asset_id=asset.asset_id, family=family, events=events)
