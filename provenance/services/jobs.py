import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiosqlite

from .. import config
from ..models.sync import JobStatus
from .event_store import SyncMode

logger = logging.getLogger(__name__)

IDLE = "idle"
IN_PROGRESS = "in_progress"
FAILED = "failed"


async def get_sync_status(db: aiosqlite.Connection, league_id: str) -> JobStatus:
    cursor = await db.execute("SELECT * FROM sync_jobs WHERE league_id = ?", (league_id,))
    row = await cursor.fetchone()
    if row is None:
        return JobStatus(league_id=league_id, status=IDLE)
    return JobStatus(
        league_id=row["league_id"],
        status=row["status"],
        mode=row["mode"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
        error=row["error"],
    )


async def begin_sync(
    db: aiosqlite.Connection, league_id: str, mode: SyncMode, now: Optional[datetime] = None
) -> JobStatus:
    """Mark a sync as started unless a fresh one is already running.

    An ``in_progress`` marker older than ``STUCK_SYNC_MINUTES`` is taken over.
    """
    now = now or datetime.now(timezone.utc)
    stale_before = (now - timedelta(minutes=config.STUCK_SYNC_MINUTES)).isoformat()

    current = await get_sync_status(db, league_id)
    if current.status == IN_PROGRESS and (current.started_at is None or current.started_at < stale_before):
        logger.warning("Resetting stuck sync for league %s started at %s", league_id, current.started_at)

    before = db.total_changes
    await db.execute(
        """
        INSERT INTO sync_jobs (league_id, status, mode, started_at, finished_at, error)
        VALUES (?, ?, ?, ?, NULL, NULL)
        ON CONFLICT(league_id) DO UPDATE SET
            status = excluded.status,
            mode = excluded.mode,
            started_at = excluded.started_at,
            finished_at = NULL,
            error = NULL
        WHERE sync_jobs.status != ? OR sync_jobs.started_at IS NULL OR sync_jobs.started_at < ?
        """,
        (league_id, IN_PROGRESS, SyncMode(mode).value, now.isoformat(), IN_PROGRESS, stale_before),
    )
    await db.commit()
    accepted = db.total_changes > before

    status = await get_sync_status(db, league_id)
    status.accepted = accepted
    return status


async def finish_sync(db: aiosqlite.Connection, league_id: str):
    await db.execute(
        "UPDATE sync_jobs SET status = ?, finished_at = ?, error = NULL WHERE league_id = ?",
        (IDLE, datetime.now(timezone.utc).isoformat(), league_id),
    )
    await db.commit()


async def fail_sync(db: aiosqlite.Connection, league_id: str, error: str):
    await db.execute(
        "UPDATE sync_jobs SET status = ?, finished_at = ?, error = ? WHERE league_id = ?",
        (FAILED, datetime.now(timezone.utc).isoformat(), error, league_id),
    )
    await db.commit()


async def trigger_sync(db: aiosqlite.Connection, league_id: str, mode: SyncMode) -> JobStatus:
    status = await begin_sync(db, league_id, mode)
    if status.accepted:
        logger.info("Sync (%s) accepted for league %s", status.mode, league_id)
    else:
        logger.info("Sync for league %s rejected: already in progress since %s", league_id, status.started_at)
    return status
