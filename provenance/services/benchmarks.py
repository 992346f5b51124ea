import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import aiosqlite

from .. import config, storage
from ..models.assets import WeeklyBenchmark

logger = logging.getLogger(__name__)

SeasonWeek = Tuple[str, int]


def median(sorted_scores: Sequence[float]) -> float:
    n = len(sorted_scores)
    if n == 0:
        raise ValueError("median of an empty sample")
    mid = n // 2
    if n % 2 == 0:
        return (sorted_scores[mid - 1] + sorted_scores[mid]) / 2
    return sorted_scores[mid]


def percentile(sorted_scores: Sequence[float], pct: float) -> float:
    """Linear interpolation between the order statistics around ``pct/100 * (n-1)``."""
    if not 0 <= pct <= 100:
        raise ValueError("Percentile must be between 0 and 100")
    if not sorted_scores:
        raise ValueError("percentile of an empty sample")
    index = pct / 100 * (len(sorted_scores) - 1)
    lower, upper = math.floor(index), math.ceil(index)
    if lower == upper:
        return sorted_scores[lower]
    weight = index - lower
    return sorted_scores[lower] + (sorted_scores[upper] - sorted_scores[lower]) * weight


def calculate_benchmarks(
    samples: Dict[SeasonWeek, List[float]], min_sample: Optional[int] = None
) -> List[WeeklyBenchmark]:
    """One benchmark per (season, week) with at least ``min_sample`` starter scores."""
    min_sample = config.MIN_BENCHMARK_SAMPLE if min_sample is None else min_sample
    benchmarks = []
    for (season, week), scores in sorted(samples.items()):
        if len(scores) < min_sample:
            logger.debug("Skipping %s week %s: %d starters", season, week, len(scores))
            continue
        ordered = sorted(scores)
        benchmarks.append(WeeklyBenchmark(
            season=season,
            week=week,
            median=median(ordered),
            top_decile=percentile(ordered, 90),
            sample_size=len(ordered),
        ))
    return benchmarks


async def get_benchmarks(
    db: aiosqlite.Connection,
    league_ids: Sequence[str],
    position: str,
    weeks: Optional[Sequence[SeasonWeek]] = None,
    season: Optional[str] = None,
    cache: Optional[Dict[tuple, List[WeeklyBenchmark]]] = None,
) -> List[WeeklyBenchmark]:
    """Weekly starter benchmarks for ``position`` across the family.

    Without ``weeks`` every (season, week) that has starters at the position
    is considered; ``season`` narrows that to one season.
    """
    key = (tuple(league_ids), position, tuple(weeks) if weeks is not None else None, season)
    if cache is not None and key in cache:
        return cache[key]

    season_by_league = {league.league_id: league.season for league in await storage.get_leagues(db, league_ids)}
    wanted = set(weeks) if weeks is not None else None

    samples: Dict[SeasonWeek, List[float]] = {}
    for score in await storage.get_starter_scores_by_position(db, league_ids, position):
        score_season = season_by_league.get(score.league_id)
        if not score_season:
            continue
        if season is not None and score_season != season:
            continue
        season_week = (score_season, score.week)
        if wanted is not None and season_week not in wanted:
            continue
        samples.setdefault(season_week, []).append(score.points)

    benchmarks = calculate_benchmarks(samples)
    if cache is not None:
        cache[key] = benchmarks
    return benchmarks
