from typing import Dict, Optional

import aiosqlite

from .. import storage
from ..client import SleeperClient
from ..models.assets import Manager, TransactionAsset, TransactionDetail
from ..models.sleeper import User
from .event_store import EventStore
from .family import resolve_family


def manager_of(user: User) -> Manager:
    return Manager(
        user_id=user.user_id,
        username=user.username,
        display_name=user.display_name or user.username or user.user_id,
    )


async def get_transaction_detail(
    db: aiosqlite.Connection, source: SleeperClient, root_league_id: str, transaction_id: str
) -> Optional[TransactionDetail]:
    """Every asset moved by one transaction, with both managers resolved to their names.

    Returns None when the family knows nothing of the transaction.
    """
    family = await resolve_family(db, source, root_league_id)
    events = await EventStore(db).query_transaction(transaction_id, family)
    tx = await storage.get_transaction(db, transaction_id)
    if tx is not None and tx.league_id not in family:
        tx = None
    if not events and tx is None:
        return None

    user_ids = {uid for e in events for uid in (e.from_user_id, e.to_user_id) if uid}
    managers: Dict[str, Manager] = {
        user_id: manager_of(user) for user_id, user in (await storage.get_users(db, user_ids)).items()
    }
    players = await storage.get_players(db, [e.player_id for e in events if e.player_id])

    assets = [
        TransactionAsset(
            asset_id=event.asset_id,
            asset_kind=event.asset_kind,
            event_type=event.event_type,
            player=players.get(event.player_id) if event.player_id else None,
            pick_season=event.pick_season,
            pick_round=event.pick_round,
            pick_original_roster_id=event.pick_original_roster_id,
            from_roster_id=event.from_roster_id,
            to_roster_id=event.to_roster_id,
            from_manager=managers.get(event.from_user_id) if event.from_user_id else None,
            to_manager=managers.get(event.to_user_id) if event.to_user_id else None,
        )
        for event in events
    ]
    first = events[0] if events else None
    league_id = tx.league_id if tx else first.league_id
    season = first.season if first else None
    if season is None:
        league = await storage.get_league(db, league_id)
        season = league.season if league else None
    return TransactionDetail(
        transaction_id=transaction_id,
        league_id=league_id,
        type=tx.type if tx else first.details.get("type"),
        season=season,
        week=tx.week if tx and tx.week is not None else (first.week if first else None),
        event_time=first.event_time if first else None,
        assets=assets,
    )
