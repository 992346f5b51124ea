"""Reads and writes of the raw Sleeper entities mirrored in SQLite."""
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import aiosqlite

from .models.assets import PlayerInfo, PlayerScore
from .models.sleeper import Draft, DraftPick, League, NflState, Player, Roster, Transaction, User

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


def _league_from_row(row) -> League:
    return League(
        league_id=row["id"],
        name=row["name"],
        season=row["season"] or None,
        previous_league_id=row["previous_league_id"],
        settings=json.loads(row["settings"]) if row["settings"] else None,
    )


# Leagues

async def upsert_league(db: aiosqlite.Connection, league: League):
    await db.execute(
        """
        INSERT INTO leagues (id, name, season, previous_league_id, settings)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            season = excluded.season,
            previous_league_id = excluded.previous_league_id,
            settings = COALESCE(excluded.settings, leagues.settings)
        """,
        (
            league.league_id,
            league.name or "Unknown League",
            league.season or "",
            league.previous_league_id,
            json.dumps(league.settings) if league.settings is not None else None,
        ),
    )
    await db.commit()


async def get_league(db: aiosqlite.Connection, league_id: str) -> Optional[League]:
    cursor = await db.execute("SELECT * FROM leagues WHERE id = ?", (league_id,))
    row = await cursor.fetchone()
    return _league_from_row(row) if row else None


async def get_leagues(db: aiosqlite.Connection, league_ids: Sequence[str]) -> List[League]:
    """Leagues in the order of ``league_ids``; unknown ids are skipped."""
    if not league_ids:
        return []
    cursor = await db.execute(
        f"SELECT * FROM leagues WHERE id IN ({_placeholders(league_ids)})", tuple(league_ids)
    )
    by_id = {row["id"]: _league_from_row(row) for row in await cursor.fetchall()}
    return [by_id[league_id] for league_id in league_ids if league_id in by_id]


async def get_last_asset_events_sync(db: aiosqlite.Connection, league_id: str) -> Optional[str]:
    cursor = await db.execute("SELECT last_asset_events_sync FROM leagues WHERE id = ?", (league_id,))
    row = await cursor.fetchone()
    return row["last_asset_events_sync"] if row else None


async def set_last_asset_events_sync(db: aiosqlite.Connection, league_ids: Sequence[str], synced_at: str):
    if not league_ids:
        return
    await db.execute(
        f"UPDATE leagues SET last_asset_events_sync = ? WHERE id IN ({_placeholders(league_ids)})",
        (synced_at, *league_ids),
    )
    await db.commit()


# Users and rosters

async def upsert_users(db: aiosqlite.Connection, users: Iterable[User]):
    await db.executemany(
        """
        INSERT INTO users (id, username, display_name) VALUES (?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            username = excluded.username,
            display_name = COALESCE(excluded.display_name, users.display_name)
        """,
        [(u.user_id, u.username or u.display_name or u.user_id, u.display_name) for u in users],
    )
    await db.commit()


async def get_users(db: aiosqlite.Connection, user_ids: Iterable[str]) -> Dict[str, User]:
    user_ids = sorted(set(user_ids))
    if not user_ids:
        return {}
    cursor = await db.execute(f"SELECT * FROM users WHERE id IN ({_placeholders(user_ids)})", tuple(user_ids))
    return {
        row["id"]: User(user_id=row["id"], username=row["username"], display_name=row["display_name"])
        for row in await cursor.fetchall()
    }


async def replace_rosters(db: aiosqlite.Connection, league_id: str, rosters: Iterable[Roster]) -> int:
    rows = []
    for roster in rosters:
        if not roster.owner_id:
            logger.warning("League %s roster %s has no owner; skipped", league_id, roster.roster_id)
            continue
        rows.append((league_id, roster.roster_id, roster.owner_id))

    await db.execute("DELETE FROM rosters WHERE league_id = ?", (league_id,))
    await db.executemany("INSERT INTO rosters (league_id, roster_id, owner_id) VALUES (?, ?, ?)", rows)
    await db.commit()
    return len(rows)


async def get_roster_map(db: aiosqlite.Connection, league_id: str) -> Dict[int, str]:
    cursor = await db.execute("SELECT roster_id, owner_id FROM rosters WHERE league_id = ?", (league_id,))
    return {row["roster_id"]: row["owner_id"] for row in await cursor.fetchall()}


# Players

async def upsert_players(db: aiosqlite.Connection, players: Iterable[Player]) -> int:
    rows = [(p.player_id, p.name, p.position, p.team, p.status) for p in players]
    await db.executemany(
        """
        INSERT INTO players (id, name, position, team, status) VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            position = excluded.position,
            team = excluded.team,
            status = excluded.status
        """,
        rows,
    )
    await db.commit()
    return len(rows)


async def get_players(db: aiosqlite.Connection, player_ids: Sequence[str]) -> Dict[str, PlayerInfo]:
    if not player_ids:
        return {}
    cursor = await db.execute(
        f"SELECT * FROM players WHERE id IN ({_placeholders(player_ids)})", tuple(player_ids)
    )
    return {
        row["id"]: PlayerInfo(
            id=row["id"], name=row["name"], position=row["position"], team=row["team"], status=row["status"]
        )
        for row in await cursor.fetchall()
    }


async def get_player(db: aiosqlite.Connection, player_id: str) -> Optional[PlayerInfo]:
    players = await get_players(db, [player_id])
    return players.get(player_id)


# Transactions

def _transaction_from_row(row) -> Transaction:
    tx = Transaction.model_validate_json(row["payload"]) if row["payload"] else Transaction(
        transaction_id=row["id"], type=row["type"]
    )
    return tx.model_copy(update={"league_id": row["league_id"], "week": row["week"]})


async def upsert_transactions(db: aiosqlite.Connection, league_id: str, transactions: Iterable[Transaction]) -> int:
    # created_at records when the row was first stored; incremental rebuilds key off it
    stored_at = utc_now()
    rows = [
        (tx.transaction_id, league_id, tx.week if tx.week is not None else tx.leg, tx.type, tx.model_dump_json(), stored_at)
        for tx in transactions
    ]
    await db.executemany(
        """
        INSERT INTO transactions (id, league_id, week, type, payload, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            week = excluded.week,
            type = excluded.type,
            payload = excluded.payload
        """,
        rows,
    )
    await db.commit()
    return len(rows)


async def get_transactions(
    db: aiosqlite.Connection, league_ids: Sequence[str], since: Optional[str] = None
) -> List[Transaction]:
    if not league_ids:
        return []
    query = f"SELECT * FROM transactions WHERE league_id IN ({_placeholders(league_ids)})"
    params: Tuple = tuple(league_ids)
    if since:
        query += " AND created_at >= ?"
        params += (since,)
    cursor = await db.execute(query + " ORDER BY league_id, week, id", params)
    return [_transaction_from_row(row) for row in await cursor.fetchall()]


async def get_transaction(db: aiosqlite.Connection, transaction_id: str) -> Optional[Transaction]:
    cursor = await db.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
    row = await cursor.fetchone()
    return _transaction_from_row(row) if row else None


# Drafts

async def upsert_drafts(db: aiosqlite.Connection, league_id: str, drafts: Iterable[Draft]):
    await db.executemany(
        """
        INSERT INTO drafts (id, league_id, season, start_time) VALUES (?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            league_id = excluded.league_id,
            season = excluded.season,
            start_time = excluded.start_time
        """,
        [(d.draft_id, league_id, d.season or "", d.start_time) for d in drafts],
    )
    await db.commit()


async def get_drafts(db: aiosqlite.Connection, league_ids: Sequence[str]) -> List[Draft]:
    if not league_ids:
        return []
    cursor = await db.execute(
        f"SELECT * FROM drafts WHERE league_id IN ({_placeholders(league_ids)}) ORDER BY season, id",
        tuple(league_ids),
    )
    return [
        Draft(draft_id=row["id"], league_id=row["league_id"], season=row["season"] or None, start_time=row["start_time"])
        for row in await cursor.fetchall()
    ]


async def replace_draft_picks(db: aiosqlite.Connection, draft_id: str, picks: Iterable[DraftPick]) -> int:
    rows = [
        (draft_id, p.pick_no, p.round, p.roster_id, p.player_id, int(bool(p.is_keeper)), p.traded_from_roster_id)
        for p in picks
    ]
    await db.execute("DELETE FROM draft_picks WHERE draft_id = ?", (draft_id,))
    await db.executemany(
        """
        INSERT INTO draft_picks (draft_id, pick_no, round, roster_id, player_id, is_keeper, traded_from_roster_id)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    await db.commit()
    return len(rows)


async def get_draft_picks(db: aiosqlite.Connection, draft_ids: Sequence[str]) -> List[DraftPick]:
    if not draft_ids:
        return []
    cursor = await db.execute(
        f"SELECT * FROM draft_picks WHERE draft_id IN ({_placeholders(draft_ids)}) ORDER BY draft_id, pick_no",
        tuple(draft_ids),
    )
    return [
        DraftPick(
            draft_id=row["draft_id"],
            pick_no=row["pick_no"],
            round=row["round"],
            roster_id=row["roster_id"],
            player_id=row["player_id"],
            is_keeper=bool(row["is_keeper"]),
            traded_from_roster_id=row["traded_from_roster_id"],
        )
        for row in await cursor.fetchall()
    ]


async def replace_traded_picks(db: aiosqlite.Connection, league_id: str, rows: Iterable[Tuple[str, int, int, str]]) -> int:
    """Replace the league's traded-pick snapshot with ``(season, round, original_roster_id, owner_user_id)`` rows."""
    rows = [(league_id, *row) for row in rows]
    await db.execute("DELETE FROM traded_picks WHERE league_id = ?", (league_id,))
    await db.executemany(
        "INSERT INTO traded_picks (league_id, season, round, original_roster_id, current_owner_id) VALUES (?, ?, ?, ?, ?)",
        rows,
    )
    await db.commit()
    return len(rows)


async def get_traded_picks(
    db: aiosqlite.Connection, league_id: str, min_season: Optional[str] = None
) -> List[Tuple[str, int, int, str]]:
    """The league's traded-pick snapshot as ``(season, round, original_roster_id, owner_user_id)`` rows."""
    query = "SELECT * FROM traded_picks WHERE league_id = ?"
    params: Tuple = (league_id,)
    if min_season:
        query += " AND season >= ?"
        params += (min_season,)
    cursor = await db.execute(query + " ORDER BY season, round, original_roster_id", params)
    return [
        (row["season"], row["round"], row["original_roster_id"], row["current_owner_id"])
        for row in await cursor.fetchall()
    ]



# Scores

async def upsert_player_scores(db: aiosqlite.Connection, scores: Iterable[PlayerScore]) -> int:
    rows = [(s.league_id, s.week, s.roster_id, s.player_id, s.points, int(s.is_starter)) for s in scores]
    await db.executemany(
        """
        INSERT INTO player_scores (league_id, week, roster_id, player_id, points, is_starter)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(league_id, week, roster_id, player_id) DO UPDATE SET
            points = excluded.points,
            is_starter = excluded.is_starter
        """,
        rows,
    )
    await db.commit()
    return len(rows)


def _score_from_row(row) -> PlayerScore:
    return PlayerScore(
        league_id=row["league_id"],
        week=row["week"],
        roster_id=row["roster_id"],
        player_id=row["player_id"],
        points=row["points"],
        is_starter=bool(row["is_starter"]),
    )


async def get_player_scores(db: aiosqlite.Connection, league_id: str, player_id: str) -> List[PlayerScore]:
    cursor = await db.execute(
        "SELECT * FROM player_scores WHERE league_id = ? AND player_id = ? ORDER BY week, roster_id",
        (league_id, player_id),
    )
    return [_score_from_row(row) for row in await cursor.fetchall()]


async def get_starter_scores_by_position(
    db: aiosqlite.Connection, league_ids: Sequence[str], position: str
) -> List[PlayerScore]:
    if not league_ids:
        return []
    cursor = await db.execute(
        f"""
        SELECT s.* FROM player_scores s
        JOIN players p ON p.id = s.player_id
        WHERE s.is_starter = 1 AND p.position = ? AND s.league_id IN ({_placeholders(league_ids)})
        ORDER BY s.league_id, s.week
        """,
        (position, *league_ids),
    )
    return [_score_from_row(row) for row in await cursor.fetchall()]


# NFL state

async def save_nfl_state(db: aiosqlite.Connection, state: NflState):
    await db.execute(
        """
        INSERT INTO nfl_state (id, season, week, season_type, fetched_at) VALUES ('nfl', ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            season = excluded.season,
            week = excluded.week,
            season_type = excluded.season_type,
            fetched_at = excluded.fetched_at
        """,
        (state.season, state.week, state.season_type, utc_now()),
    )
    await db.commit()


async def get_nfl_state(db: aiosqlite.Connection) -> Optional[NflState]:
    cursor = await db.execute("SELECT season, week, season_type FROM nfl_state WHERE id = 'nfl'")
    row = await cursor.fetchone()
    return NflState(season=row["season"], week=row["week"], season_type=row["season_type"]) if row else None
