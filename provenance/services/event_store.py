import json
import logging
import sqlite3
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

import aiosqlite

from .. import config
from ..models.assets import AssetEvent, AssetEventCount, AssetIdentity, AssetKind, PickAsset, PlayerAsset

logger = logging.getLogger(__name__)

_COLUMNS = (
    "league_id",
    "season",
    "week",
    "event_time",
    "event_type",
    "asset_kind",
    "player_id",
    "pick_season",
    "pick_round",
    "pick_original_roster_id",
    "from_user_id",
    "to_user_id",
    "from_roster_id",
    "to_roster_id",
    "transaction_id",
    "details",
)

_INSERT = f"INSERT INTO asset_events ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' for _ in _COLUMNS)})"
_INSERT_OR_IGNORE = _INSERT.replace("INSERT INTO", "INSERT OR IGNORE INTO", 1)


def _event_row(event: AssetEvent) -> tuple:
    return (
        event.league_id,
        event.season,
        event.week,
        event.event_time.isoformat() if event.event_time else None,
        event.event_type,
        event.asset_kind,
        event.player_id,
        event.pick_season,
        event.pick_round,
        event.pick_original_roster_id,
        event.from_user_id,
        event.to_user_id,
        event.from_roster_id,
        event.to_roster_id,
        event.transaction_id,
        json.dumps(event.details or {}),
    )


def _event_from_row(row) -> AssetEvent:
    return AssetEvent(
        id=row["id"],
        league_id=row["league_id"],
        season=row["season"],
        week=row["week"],
        event_time=datetime.fromisoformat(row["event_time"]) if row["event_time"] else None,
        event_type=row["event_type"],
        asset_kind=row["asset_kind"],
        player_id=row["player_id"],
        pick_season=row["pick_season"],
        pick_round=row["pick_round"],
        pick_original_roster_id=row["pick_original_roster_id"],
        from_user_id=row["from_user_id"],
        to_user_id=row["to_user_id"],
        from_roster_id=row["from_roster_id"],
        to_roster_id=row["to_roster_id"],
        transaction_id=row["transaction_id"],
        details=json.loads(row["details"]) if row["details"] else {},
    )


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


class EventStore:
    """Asset events in SQLite, unique on their natural key."""

    def __init__(self, db: aiosqlite.Connection, chunk_size: Optional[int] = None):
        self.db = db
        self.chunk_size = chunk_size or config.EVENT_INSERT_CHUNK_SIZE

    async def _insert_chunk(self, rows: List[tuple]) -> int:
        before = self.db.total_changes
        try:
            await self.db.executemany(_INSERT, rows)
        except sqlite3.IntegrityError as e:
            # Keep the chunk's new rows, skip the ones already stored
            logger.warning("Duplicate asset events in a chunk of %d (%s); inserting the rest", len(rows), e)
            await self.db.rollback()
            before = self.db.total_changes
            await self.db.executemany(_INSERT_OR_IGNORE, rows)
        await self.db.commit()
        return self.db.total_changes - before

    async def _insert(self, events: Sequence[AssetEvent]) -> int:
        rows = [_event_row(event) for event in events]
        inserted = 0
        for start in range(0, len(rows), self.chunk_size):
            inserted += await self._insert_chunk(rows[start:start + self.chunk_size])
        return inserted

    async def delete_for_leagues(self, league_ids: Sequence[str]) -> int:
        if not league_ids:
            return 0
        cursor = await self.db.execute(
            f"DELETE FROM asset_events WHERE league_id IN ({_placeholders(league_ids)})", tuple(league_ids)
        )
        await self.db.commit()
        return cursor.rowcount

    async def replace_events(self, league_ids: Sequence[str], events: Sequence[AssetEvent]) -> int:
        """Delete the leagues' events, then insert ``events``. Returns the number inserted.

        An empty ``league_ids`` deletes nothing.
        """
        if league_ids:
            deleted = await self.delete_for_leagues(league_ids)
            logger.info("Deleted %d asset events for %d leagues", deleted, len(league_ids))
        else:
            logger.warning("replace_events called without league ids; inserting without deleting")
        return await self._insert(events)

    async def insert_incremental(self, events: Sequence[AssetEvent]) -> int:
        """Insert ``events``, skipping those already stored. Returns the number inserted."""
        rows = [_event_row(event) for event in events]
        inserted = 0
        for start in range(0, len(rows), self.chunk_size):
            before = self.db.total_changes
            await self.db.executemany(_INSERT_OR_IGNORE, rows[start:start + self.chunk_size])
            await self.db.commit()
            inserted += self.db.total_changes - before
        return inserted

    async def query_timeline(self, asset: AssetIdentity, league_ids: Sequence[str]) -> List[AssetEvent]:
        """Events for one asset within the family, by season, week, then event time.

        Within one moment, events leaving a roster come before events reaching one.
        """
        if not league_ids:
            return []
        if isinstance(asset, PlayerAsset):
            where = "asset_kind = 'player' AND player_id = ?"
            params = (asset.player_id,)
        elif isinstance(asset, PickAsset):
            where = "asset_kind = 'pick' AND pick_season = ? AND pick_round = ? AND pick_original_roster_id = ?"
            params = (asset.season, asset.round, asset.original_roster_id)
        else:
            raise TypeError(f"Unsupported asset identity: {asset!r}")

        cursor = await self.db.execute(
            f"""
            SELECT * FROM asset_events
            WHERE {where} AND league_id IN ({_placeholders(league_ids)})
            ORDER BY season, week, event_time, to_roster_id IS NOT NULL, id
            """,
            (*params, *league_ids),
        )
        return [_event_from_row(row) for row in await cursor.fetchall()]

    async def query_transaction(self, transaction_id: str, league_ids: Sequence[str]) -> List[AssetEvent]:
        """Every asset event recorded for one transaction within the family."""
        if not league_ids:
            return []
        cursor = await self.db.execute(
            f"""
            SELECT * FROM asset_events
            WHERE transaction_id = ? AND league_id IN ({_placeholders(league_ids)})
            ORDER BY asset_kind DESC, player_id, pick_season, pick_round, pick_original_roster_id, id
            """,
            (transaction_id, *league_ids),
        )
        return [_event_from_row(row) for row in await cursor.fetchall()]

    async def top_assets_by_event_count(
        self, league_ids: Sequence[str], kind: Optional[AssetKind] = None, limit: int = 10
    ) -> List[AssetEventCount]:
        if not league_ids:
            return []
        query = f"""
            SELECT asset_kind, player_id, pick_season, pick_round, pick_original_roster_id, COUNT(*) AS event_count
            FROM asset_events
            WHERE league_id IN ({_placeholders(league_ids)})
        """
        params: tuple = tuple(league_ids)
        if kind:
            query += " AND asset_kind = ?"
            params += (kind,)
        query += """
            GROUP BY asset_kind, player_id, pick_season, pick_round, pick_original_roster_id
            ORDER BY event_count DESC, asset_kind, player_id, pick_season, pick_round, pick_original_roster_id
            LIMIT ?
        """
        cursor = await self.db.execute(query, (*params, limit))

        counts = []
        for row in await cursor.fetchall():
            if row["asset_kind"] == "player":
                asset_id = PlayerAsset(player_id=row["player_id"]).asset_id
            else:
                asset_id = PickAsset(
                    season=row["pick_season"], round=row["pick_round"], original_roster_id=row["pick_original_roster_id"]
                ).asset_id
            counts.append(AssetEventCount(
                asset_id=asset_id,
                asset_kind=row["asset_kind"],
                player_id=row["player_id"],
                pick_season=row["pick_season"],
                pick_round=row["pick_round"],
                pick_original_roster_id=row["pick_original_roster_id"],
                event_count=row["event_count"],
            ))
        return counts


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class WriteStrategy:
    """How a rebuild writes freshly normalized events into the store."""

    mode: SyncMode

    async def write(self, store: EventStore, league_ids: Sequence[str], events: Sequence[AssetEvent]) -> int:
        raise NotImplementedError


class FullRebuild(WriteStrategy):
    mode = SyncMode.FULL

    async def write(self, store: EventStore, league_ids: Sequence[str], events: Sequence[AssetEvent]) -> int:
        return await store.replace_events(league_ids, events)


class Incremental(WriteStrategy):
    mode = SyncMode.INCREMENTAL

    async def write(self, store: EventStore, league_ids: Sequence[str], events: Sequence[AssetEvent]) -> int:
        return await store.insert_incremental(events)


def strategy_for(mode: SyncMode) -> WriteStrategy:
    return FullRebuild() if SyncMode(mode) is SyncMode.FULL else Incremental()
