import asyncio
from datetime import datetime, timedelta, timezone

from provenance import storage
from provenance.models.sleeper import League, Matchup, TradedPick
from provenance.services import jobs
from provenance.services.event_store import EventStore, SyncMode
from provenance.services.sync import (
    draft_pick_from_payload,
    rebuild_asset_events,
    run_sync_job,
    scores_from_matchups,
    sync_league_family,
    sync_players,
    traded_pick_rows,
    transaction_from_payload,
)


def test_scores_from_matchups_marks_starters():
    matchup = Matchup(
        roster_id=3,
        starters=["A", "0", "B"],
        starters_points=[12.5, 0.0, 4.0],
        players=["A", "B", "C"],
        players_points={"A": 12.5, "C": 7.0},
    )
    scores = scores_from_matchups("L1", 5, [matchup])
    assert sorted((s.player_id, s.points, s.is_starter) for s in scores) == [
        ("A", 12.5, True), ("B", 4.0, True), ("C", 7.0, False),
    ]
    assert all((s.league_id, s.week, s.roster_id) == ("L1", 5, 3) for s in scores)


def test_draft_pick_payload_reads_traded_from():
    pick = draft_pick_from_payload("D1", {"pick_no": 4, "round": 1, "roster_id": 2, "player_id": 1234,
                                          "metadata": {"traded_from": "5"}})
    assert (pick.player_id, pick.traded_from_roster_id) == ("1234", 5)
    assert draft_pick_from_payload("D1", {"pick_no": 1, "round": 1, "metadata": {"traded_from": ""}}).traded_from_roster_id is None
    assert draft_pick_from_payload("D1", {"pick_no": 1, "round": 1, "metadata": {"traded_from": "two"}}).traded_from_roster_id is None


def test_traded_pick_rows_resolve_owner_user():
    league = League(league_id="L1", season="2023")
    traded = [
        TradedPick(season="2024", round=1, roster_id=3, owner_id=1),
        TradedPick(season="2024", round=2, roster_id=3, owner_id=9),
    ]
    assert traded_pick_rows(league, traded, {1: "u1", 3: "u3"}) == [("2024", 1, 3, "u1")]


def test_transaction_payload_drops_only_malformed_pick_movements():
    tx = transaction_from_payload("L1", 4, {
        "transaction_id": "T1", "type": "trade", "status": "complete",
        "draft_picks": [
            {"season": None, "round": 1, "roster_id": 1, "owner_id": 2},
            {"season": "2024", "round": 2, "roster_id": 1, "owner_id": 2},
        ],
    })
    assert (tx.league_id, tx.week) == ("L1", 4)
    assert [(m.season, m.round) for m in tx.draft_picks] == [("2024", 2)]



def test_full_family_sync(run_db, dynasty):
    result = run_db(lambda db: sync_league_family(db, dynasty, "L2023"))
    assert result.league_ids == ["L2023", "L2022"]
    assert result.failures == {}

    by_league = {r.league_id: r for r in result.leagues}
    assert by_league["L2022"].transactions == 1
    assert by_league["L2022"].draft_picks == 2
    assert by_league["L2022"].player_scores == 4
    assert by_league["L2023"].rosters == 2

    # 2 drafted players, 2 consumed picks, the player trade and the pick trade
    assert result.rebuild.events_generated == 6
    assert result.rebuild.events_written == 6
    state = run_db(storage.get_nfl_state)
    assert (state.season, state.season_type) == ("2023", "off")


def test_family_sync_continues_past_failing_league(run_db, dynasty):
    async def go(db):
        await sync_league_family(db, dynasty, "L2023")
        dynasty.unavailable.add("L2023")
        return await sync_league_family(db, dynasty, "L2023")

    result = run_db(go)
    assert list(result.failures) == ["L2023"]
    assert [r.league_id for r in result.leagues] == ["L2022"]
    assert result.rebuild.events_written == 6

def test_malformed_records_are_skipped_without_failing_the_league(run_db, dynasty):
    dynasty.transactions[("L2022", 9)] = [
        {
            "transaction_id": "T2", "type": "trade", "status": "complete", "leg": 9, "roster_ids": [1, 2],
            "adds": {"Q": 1}, "drops": {"Q": 2},
            "draft_picks": [
                {"season": None, "round": 1, "roster_id": 1, "owner_id": 2, "previous_owner_id": 1},
                {"season": "2024", "round": 1, "owner_id": 2, "previous_owner_id": 1},
            ],
        },
        {"transaction_id": None, "type": "waiver"},
    ]
    dynasty.draft_picks["D2022"] += [
        {"pick_no": 3, "round": 2, "roster_id": 1, "player_id": "R", "metadata": {"traded_from": "two"}},
        {"pick_no": "first", "round": 1},
    ]

    async def go(db):
        result = await sync_league_family(db, dynasty, "L2023")
        top = await EventStore(db).top_assets_by_event_count(result.league_ids, kind="pick")
        return result, top

    result, top = run_db(go)
    assert result.failures == {}
    by_league = {r.league_id: r for r in result.leagues}
    assert by_league["L2022"].transactions == 2
    assert by_league["L2022"].draft_picks == 3
    # 6 from the fixture, R's selection and its pick, Q traded back
    assert result.rebuild.events_written == 9
    assert sorted(c.asset_id for c in top) == ["pick-2022-1-1", "pick-2022-1-2", "pick-2022-2-1", "pick-2023-2-2"]



def test_incremental_rebuild_only_adds_new_events(run_db, dynasty):
    async def go(db):
        await sync_league_family(db, dynasty, "L2023")
        dynasty.transactions[("L2022", 10)] = [{
            "transaction_id": "W9", "type": "waiver", "status": "complete", "leg": 10,
            "status_updated": 1667000000000, "adds": {"Z": 1}, "drops": None,
        }]
        return await sync_league_family(db, dynasty, "L2023", SyncMode.INCREMENTAL)

    result = run_db(go)
    assert result.mode == "incremental"
    assert result.rebuild.since is not None
    assert result.rebuild.events_written == 1


def test_incremental_rebuild_without_prior_sync_reads_everything(run_db, dynasty):
    first = run_db(lambda db: sync_league_family(db, dynasty, "L2023", SyncMode.INCREMENTAL)).rebuild
    assert first.since is None
    assert (first.transactions_processed, first.events_written) == (1, 6)

    # Nothing new since then
    again = run_db(lambda db: rebuild_asset_events(db, ["L2023", "L2022"], SyncMode.INCREMENTAL))
    assert (again.transactions_processed, again.events_written) == (0, 0)


def test_sync_players(run_db, dynasty):
    assert run_db(lambda db: sync_players(db, dynasty)) == 2
    assert run_db(lambda db: storage.get_player(db, "Q")).name == "Quinn Runner"


def test_second_trigger_is_rejected_while_running(run_db):
    async def go(db):
        first = await jobs.trigger_sync(db, "L1", SyncMode.FULL)
        second = await jobs.trigger_sync(db, "L1", SyncMode.INCREMENTAL)
        return first, second

    first, second = run_db(go)
    assert first.accepted and first.status == jobs.IN_PROGRESS
    assert not second.accepted
    assert second.mode == "full"


def test_stuck_sync_is_taken_over(run_db):
    long_ago = datetime.now(timezone.utc) - timedelta(hours=1)

    async def go(db):
        await jobs.begin_sync(db, "L1", SyncMode.FULL, now=long_ago)
        return await jobs.begin_sync(db, "L1", SyncMode.INCREMENTAL)

    status = run_db(go)
    assert status.accepted
    assert status.mode == "incremental"


def test_finished_and_failed_syncs_can_restart(run_db):
    async def go(db):
        await jobs.begin_sync(db, "L1", SyncMode.FULL)
        await jobs.finish_sync(db, "L1")
        idle = await jobs.get_sync_status(db, "L1")
        await jobs.begin_sync(db, "L1", SyncMode.FULL)
        await jobs.fail_sync(db, "L1", "boom")
        failed = await jobs.get_sync_status(db, "L1")
        restarted = await jobs.begin_sync(db, "L1", SyncMode.FULL)
        return idle, failed, restarted

    idle, failed, restarted = run_db(go)
    assert idle.status == jobs.IDLE and idle.finished_at is not None
    assert (failed.status, failed.error) == (jobs.FAILED, "boom")
    assert restarted.accepted and restarted.error is None


def test_unknown_league_status_is_idle(run_db):
    status = run_db(lambda db: jobs.get_sync_status(db, "nope"))
    assert status.status == jobs.IDLE and status.started_at is None


def test_background_job_records_success_and_failure(db_path, run_db, dynasty):
    run_db(lambda db: jobs.begin_sync(db, "L2023", SyncMode.FULL))
    result = asyncio.run(run_sync_job(dynasty, "L2023", SyncMode.FULL, db_path=db_path))
    assert result.league_ids == ["L2023", "L2022"]
    assert run_db(lambda db: jobs.get_sync_status(db, "L2023")).status == jobs.IDLE

    class Broken:
        async def get_league(self, league_id):
            raise RuntimeError("upstream exploded")

    run_db(lambda db: jobs.begin_sync(db, "X", SyncMode.FULL))
    assert asyncio.run(run_sync_job(Broken(), "X", SyncMode.FULL, db_path=db_path)) is None
    status = run_db(lambda db: jobs.get_sync_status(db, "X"))
    assert status.status == jobs.FAILED
    assert "upstream exploded" in status.error
