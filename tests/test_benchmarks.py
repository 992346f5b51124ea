import pytest

from provenance import storage
from provenance.models.assets import PlayerScore
from provenance.models.sleeper import League, Player
from provenance.services.benchmarks import calculate_benchmarks, get_benchmarks, median, percentile


def test_median_odd_and_even():
    assert median([1.0, 2.0, 9.0]) == 2.0
    assert median([1.0, 2.0, 4.0, 9.0]) == 3.0


def test_percentile_interpolates():
    scores = [float(n) for n in range(1, 11)]
    assert percentile(scores, 90) == pytest.approx(9.1)
    assert percentile(scores, 0) == 1.0
    assert percentile(scores, 100) == 10.0
    assert percentile([7.0], 90) == 7.0


def test_percentile_rejects_out_of_range():
    with pytest.raises(ValueError):
        percentile([1.0], 101)


def test_weeks_below_minimum_sample_are_skipped():
    benchmarks = calculate_benchmarks({("2022", 1): [10.0, 20.0], ("2022", 2): [5.0, 15.0, 25.0]})
    assert [(b.week, b.median, b.sample_size) for b in benchmarks] == [(2, 15.0, 3)]
    assert benchmarks[0].top_decile == pytest.approx(23.0)


def test_benchmarks_are_sorted_by_season_and_week():
    samples = {("2023", 1): [1.0], ("2022", 5): [1.0], ("2022", 2): [1.0]}
    assert [(b.season, b.week) for b in calculate_benchmarks(samples, min_sample=1)] == [
        ("2022", 2), ("2022", 5), ("2023", 1),
    ]


@pytest.fixture
def scored_family(run_db):
    async def go(db):
        await storage.upsert_league(db, League(league_id="L2", season="2023", previous_league_id="L1"))
        await storage.upsert_league(db, League(league_id="L1", season="2022"))
        await storage.upsert_players(db, [
            Player(player_id="qb1", full_name="A", position="QB"),
            Player(player_id="qb2", full_name="B", position="QB"),
            Player(player_id="qb3", full_name="C", position="QB"),
            Player(player_id="rb1", full_name="D", position="RB"),
        ])
        scores = []
        for league_id in ("L1", "L2"):
            for n, player_id in enumerate(("qb1", "qb2", "qb3", "rb1"), start=1):
                scores.append(PlayerScore(league_id=league_id, week=1, roster_id=n, player_id=player_id,
                                          points=10.0 * n, is_starter=True))
            # Bench scores never count
            scores.append(PlayerScore(league_id=league_id, week=1, roster_id=9, player_id="qb1",
                                      points=99.0, is_starter=False))
            scores.append(PlayerScore(league_id=league_id, week=2, roster_id=1, player_id="qb1",
                                      points=12.0, is_starter=True))
        await storage.upsert_player_scores(db, scores)
    run_db(go)


def test_family_benchmarks_by_position(run_db, scored_family):
    benchmarks = run_db(lambda db: get_benchmarks(db, ["L2", "L1"], "QB"))
    assert [(b.season, b.week, b.median, b.sample_size) for b in benchmarks] == [
        ("2022", 1, 20.0, 3), ("2023", 1, 20.0, 3),
    ]


def test_benchmarks_filtered_by_season_and_weeks(run_db, scored_family):
    by_season = run_db(lambda db: get_benchmarks(db, ["L2", "L1"], "QB", season="2023"))
    assert [(b.season, b.week) for b in by_season] == [("2023", 1)]

    by_week = run_db(lambda db: get_benchmarks(db, ["L2", "L1"], "QB", weeks=[("2022", 1), ("2022", 2)]))
    assert [(b.season, b.week) for b in by_week] == [("2022", 1)]


def test_benchmarks_are_cached_per_query(run_db, scored_family):
    cache = {}
    first = run_db(lambda db: get_benchmarks(db, ["L2", "L1"], "QB", cache=cache))

    async def add_starter_and_query(db):
        await storage.upsert_player_scores(db, [PlayerScore(
            league_id="L1", week=1, roster_id=7, player_id="qb2", points=500.0, is_starter=True,
        )])
        return await get_benchmarks(db, ["L2", "L1"], "QB", cache=cache)

    assert run_db(add_starter_and_query) == first
    cache.clear()
    refreshed = run_db(lambda db: get_benchmarks(db, ["L2", "L1"], "QB", cache=cache))
    assert refreshed[0].sample_size == 4
