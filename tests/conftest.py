import asyncio
from typing import Any, Dict, List, Tuple

import pytest

from provenance import database
from provenance.errors import SourceUnavailableError


class FakeSource:
    """In-memory stand-in for SleeperClient, holding payloads shaped like Sleeper's JSON."""

    def __init__(
        self,
        leagues: Dict[str, Any] = None,
        users: Dict[str, List[dict]] = None,
        rosters: Dict[str, List[dict]] = None,
        transactions: Dict[Tuple[str, int], List[dict]] = None,
        matchups: Dict[Tuple[str, int], List[dict]] = None,
        drafts: Dict[str, List[dict]] = None,
        draft_picks: Dict[str, List[dict]] = None,
        traded_picks: Dict[str, List[dict]] = None,
        players: Dict[str, dict] = None,
        nfl_state: dict = None,
        unavailable=(),
    ):
        self.leagues = leagues or {}
        self.users = users or {}
        self.rosters = rosters or {}
        self.transactions = transactions or {}
        self.matchups = matchups or {}
        self.drafts = drafts or {}
        self.draft_picks = draft_picks or {}
        self.traded_picks = traded_picks or {}
        self.players = players or {}
        self.nfl_state = nfl_state
        self.unavailable = set(unavailable)
        self.calls = []

    def _record(self, endpoint: str, key):
        self.calls.append((endpoint, key))
        if key in self.unavailable:
            raise SourceUnavailableError(f"/{endpoint}/{key}", status_code=503)

    async def get_league(self, league_id):
        self._record("league", league_id)
        return self.leagues.get(league_id)

    async def get_league_users(self, league_id):
        self._record("users", league_id)
        return self.users.get(league_id, [])

    async def get_league_rosters(self, league_id):
        self._record("rosters", league_id)
        return self.rosters.get(league_id, [])

    async def get_league_transactions(self, league_id, week):
        self._record("transactions", league_id)
        return self.transactions.get((league_id, week), [])

    async def get_league_matchups(self, league_id, week):
        self._record("matchups", league_id)
        return self.matchups.get((league_id, week), [])

    async def get_league_drafts(self, league_id):
        self._record("drafts", league_id)
        return self.drafts.get(league_id, [])

    async def get_draft_picks(self, draft_id):
        self._record("draft_picks", draft_id)
        return self.draft_picks.get(draft_id, [])

    async def get_traded_picks(self, league_id):
        self._record("traded_picks", league_id)
        return self.traded_picks.get(league_id, [])

    async def get_all_players(self):
        self._record("players", "nfl")
        return self.players

    async def get_nfl_state(self):
        self._record("state", "nfl")
        return self.nfl_state


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "provenance-test.db")
    asyncio.run(database.create_tables(path))
    return path


@pytest.fixture
def run_db(db_path):
    """Run ``fn(db)`` to completion on a fresh connection to the test database."""
    def run(fn):
        async def go():
            db = await database.get_db_connection(db_path)
            try:
                return await fn(db)
            finally:
                await db.close()
        return asyncio.run(go())
    return run


def _matchup(roster_id, player_id, points, starter):
    return {
        "roster_id": roster_id,
        "matchup_id": 1,
        "points": points if starter else 0.0,
        "starters": [player_id] if starter else ["0"],
        "starters_points": [points] if starter else [0.0],
        "players": [player_id],
        "players_points": {player_id: points},
    }


@pytest.fixture
def dynasty():
    """Two linked seasons: P drafted by roster 1 in 2022, traded to roster 2 in week 8, kept into 2023."""
    settings = {"last_scored_leg": 17, "playoff_week_start": 15}
    members = [
        {"user_id": "u1", "username": "alice", "display_name": "Alice"},
        {"user_id": "u2", "username": "bob", "display_name": "Bob"},
    ]
    rosters = [{"roster_id": 1, "owner_id": "u1"}, {"roster_id": 2, "owner_id": "u2"}]
    return FakeSource(
        leagues={
            "L2022": {"league_id": "L2022", "name": "Dynasty", "season": "2022",
                      "previous_league_id": None, "settings": settings},
            "L2023": {"league_id": "L2023", "name": "Dynasty", "season": "2023",
                      "previous_league_id": "L2022", "settings": settings},
        },
        users={"L2022": members, "L2023": members},
        rosters={"L2022": rosters, "L2023": rosters},
        drafts={"L2022": [{"draft_id": "D2022", "season": "2022", "status": "complete",
                           "type": "snake", "start_time": 1661990400000}]},
        draft_picks={"D2022": [
            {"pick_no": 1, "round": 1, "roster_id": 1, "player_id": "P", "metadata": {}},
            {"pick_no": 2, "round": 1, "roster_id": 2, "player_id": "Q", "metadata": {}},
        ]},
        transactions={("L2022", 8): [{
            "transaction_id": "T1",
            "type": "trade",
            "status": "complete",
            "leg": 8,
            "status_updated": 1666000000000,
            "created": 1665990000000,
            "adds": {"P": 2},
            "drops": {"P": 1},
            "roster_ids": [1, 2],
            "draft_picks": [{"season": "2023", "round": 2, "roster_id": 2, "previous_owner_id": 2, "owner_id": 1}],
        }]},
        matchups={
            ("L2022", 1): [_matchup(1, "P", 10.0, True)],
            ("L2022", 2): [_matchup(1, "P", 20.0, True)],
            ("L2022", 3): [_matchup(1, "P", 6.0, False)],
            ("L2022", 4): [_matchup(1, "P", 0.0, False)],
        },
        players={
            "P": {"player_id": "P", "full_name": "Pat Passer", "position": "QB", "team": "KC"},
            "Q": {"player_id": "Q", "first_name": "Quinn", "last_name": "Runner", "position": "RB", "team": "SF"},
        },
        nfl_state={"season": "2023", "week": 0, "season_type": "off"},
    )
