import asyncio
from typing import Optional

import aiosqlite

from . import config

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL,
        display_name TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS leagues (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        season TEXT NOT NULL,
        previous_league_id TEXT,
        settings TEXT,
        last_asset_events_sync TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS leagues_previous_league_id_idx ON leagues (previous_league_id)",
    """
    CREATE TABLE IF NOT EXISTS rosters (
        league_id TEXT NOT NULL,
        roster_id INTEGER NOT NULL,
        owner_id TEXT NOT NULL,
        PRIMARY KEY (league_id, roster_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        position TEXT,
        team TEXT,
        status TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        league_id TEXT NOT NULL,
        week INTEGER,
        type TEXT NOT NULL,
        payload TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS transactions_league_week_idx ON transactions (league_id, week)",
    """
    CREATE TABLE IF NOT EXISTS drafts (
        id TEXT PRIMARY KEY,
        league_id TEXT NOT NULL,
        season TEXT NOT NULL,
        start_time INTEGER,
        settings TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS draft_picks (
        draft_id TEXT NOT NULL,
        pick_no INTEGER NOT NULL,
        round INTEGER NOT NULL,
        roster_id INTEGER,
        player_id TEXT,
        is_keeper INTEGER DEFAULT 0,
        traded_from_roster_id INTEGER,
        PRIMARY KEY (draft_id, pick_no)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS traded_picks (
        league_id TEXT NOT NULL,
        season TEXT NOT NULL,
        round INTEGER NOT NULL,
        original_roster_id INTEGER NOT NULL,
        current_owner_id TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS traded_picks_league_season_idx ON traded_picks (league_id, season)",
    """
    CREATE TABLE IF NOT EXISTS player_scores (
        league_id TEXT NOT NULL,
        week INTEGER NOT NULL,
        roster_id INTEGER NOT NULL,
        player_id TEXT NOT NULL,
        points REAL NOT NULL DEFAULT 0,
        is_starter INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (league_id, week, roster_id, player_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS player_scores_player_idx ON player_scores (player_id, league_id, week)",
    """
    CREATE TABLE IF NOT EXISTS nfl_state (
        id TEXT PRIMARY KEY,
        season TEXT NOT NULL,
        week INTEGER NOT NULL,
        season_type TEXT,
        fetched_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_jobs (
        league_id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        mode TEXT,
        started_at TEXT,
        finished_at TEXT,
        error TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS asset_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        league_id TEXT NOT NULL,
        season TEXT,
        week INTEGER,
        event_time TEXT,
        event_type TEXT NOT NULL,
        asset_kind TEXT NOT NULL,
        player_id TEXT,
        pick_season TEXT,
        pick_round INTEGER,
        pick_original_roster_id INTEGER,
        from_user_id TEXT,
        to_user_id TEXT,
        from_roster_id INTEGER,
        to_roster_id INTEGER,
        transaction_id TEXT,
        details TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # NULLs are distinct in a plain UNIQUE index, so the natural key is built over COALESCE()d columns
    """
    CREATE UNIQUE INDEX IF NOT EXISTS asset_events_natural_key_uq ON asset_events (
        league_id,
        event_type,
        asset_kind,
        COALESCE(player_id, ''),
        COALESCE(pick_season, ''),
        COALESCE(pick_round, -1),
        COALESCE(pick_original_roster_id, -1),
        COALESCE(transaction_id, ''),
        COALESCE(from_user_id, ''),
        COALESCE(to_user_id, '')
    )
    """,
    "CREATE INDEX IF NOT EXISTS asset_events_league_idx ON asset_events (league_id)",
    "CREATE INDEX IF NOT EXISTS asset_events_player_idx ON asset_events (asset_kind, player_id)",
    """
    CREATE INDEX IF NOT EXISTS asset_events_pick_idx
        ON asset_events (asset_kind, pick_season, pick_round, pick_original_roster_id)
    """,
    "CREATE INDEX IF NOT EXISTS asset_events_time_idx ON asset_events (season, week, event_time)",
]


async def get_db_connection(path: Optional[str] = None) -> aiosqlite.Connection:
    db = await aiosqlite.connect(path or config.DATABASE_PATH)
    db.row_factory = aiosqlite.Row
    return db


async def create_tables(path: Optional[str] = None):
    async with aiosqlite.connect(path or config.DATABASE_PATH) as db:
        for statement in SCHEMA:
            await db.execute(statement)
        await db.commit()

if __name__ == "__main__":
    asyncio.run(create_tables())
