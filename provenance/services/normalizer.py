"""Turns raw Sleeper transactions and draft picks into asset events.

Everything here is pure: the same inputs always give the same, sorted,
deduplicated list of events, so full rebuilds and incremental inserts agree.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..models.assets import (
    ADD,
    DRAFT_SELECTED,
    DROP,
    FREE_AGENT_ADD,
    FREE_AGENT_DROP,
    PICK_SELECTED,
    PICK_TRADE,
    TRADE,
    WAIVER_ADD,
    WAIVER_DROP,
    AssetEvent,
    chronological_key,
)
from ..models.sleeper import Draft, DraftPick, DraftPickMovement, League, OwnerRef, RosterRef, Transaction, UserRef

logger = logging.getLogger(__name__)

RosterMap = Dict[int, str]

_MIN_EVENT_TIME = datetime(2000, 1, 1, tzinfo=timezone.utc)
_MAX_EVENT_TIME = datetime(2100, 1, 1, tzinfo=timezone.utc)

_ADD_TYPES = {"waiver": WAIVER_ADD, "free_agent": FREE_AGENT_ADD}
_DROP_TYPES = {"waiver": WAIVER_DROP, "free_agent": FREE_AGENT_DROP}


def parse_event_time(value: Any) -> Optional[datetime]:
    """Epoch seconds or milliseconds to an aware UTC datetime; implausible values give None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    millis = number if number > 1e12 else number * 1000
    try:
        moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    if not _MIN_EVENT_TIME <= moment <= _MAX_EVENT_TIME:
        return None
    return moment


def transaction_week(tx: Transaction) -> Optional[int]:
    return tx.week if tx.week is not None else tx.leg


def resolve_owner(ref: Optional[OwnerRef], roster_map: RosterMap) -> Tuple[Optional[int], Optional[str]]:
    """Map an owner reference to ``(roster_id, user_id)`` within one league."""
    if isinstance(ref, RosterRef):
        return ref.roster_id, roster_map.get(ref.roster_id)
    if isinstance(ref, UserRef):
        roster_id = next((rid for rid, owner in roster_map.items() if owner == ref.user_id), None)
        return roster_id, ref.user_id
    return None, None


def _other_party(roster_ids: Optional[List[int]], known: Optional[int]) -> Optional[int]:
    if known is None or not roster_ids or len(set(roster_ids)) != 2:
        return None
    others = [rid for rid in set(roster_ids) if rid != known]
    return others[0] if others else None


class _LeagueContext:
    def __init__(self, league_id: str, season: Optional[str], roster_map: RosterMap):
        self.league_id = league_id
        self.season = season
        self.roster_map = roster_map

    def user_for(self, roster_id: Optional[int]) -> Optional[str]:
        return self.roster_map.get(roster_id) if roster_id is not None else None


def _draft_events(draft: Draft, picks: Iterable[DraftPick], ctx: _LeagueContext) -> List[AssetEvent]:
    season = draft.season or ctx.season
    event_time = parse_event_time(draft.start_time)
    events = []
    for pick in picks:
        if pick.player_id:
            events.append(AssetEvent(
                league_id=ctx.league_id,
                season=season,
                week=0,
                event_time=event_time,
                event_type=DRAFT_SELECTED,
                asset_kind="player",
                player_id=pick.player_id,
                to_roster_id=pick.roster_id,
                to_user_id=ctx.user_for(pick.roster_id),
                details={"draft_id": draft.draft_id, "pick_no": pick.pick_no, "round": pick.round},
            ))

        original_roster_id = pick.traded_from_roster_id if pick.traded_from_roster_id is not None else pick.roster_id
        if original_roster_id is None:
            continue
        if season is None:
            logger.warning("Draft %s has no season; pick %s not recorded as a pick event", draft.draft_id, pick.pick_no)
            continue
        events.append(AssetEvent(
            league_id=ctx.league_id,
            season=season,
            week=0,
            event_time=event_time,
            event_type=PICK_SELECTED,
            asset_kind="pick",
            pick_season=season,
            pick_round=pick.round,
            pick_original_roster_id=original_roster_id,
            to_roster_id=pick.roster_id,
            to_user_id=ctx.user_for(pick.roster_id),
            details={"draft_id": draft.draft_id, "pick_no": pick.pick_no, "player_id": pick.player_id},
        ))
    return events


def _pick_trade_event(
    tx: Transaction, movement: DraftPickMovement, ctx: _LeagueContext, base: Dict[str, Any]
) -> Optional[AssetEvent]:
    # A pick is identified by its original slot; without one it cannot be tracked
    if movement.roster_id is None:
        logger.warning("Trade %s: %s round %s pick has no original roster; skipped",
                       tx.transaction_id, movement.season, movement.round)
        return None
    from_roster_id, from_user_id = resolve_owner(movement.previous_owner, ctx.roster_map)
    to_roster_id, to_user_id = resolve_owner(movement.new_owner, ctx.roster_map)

    # Sleeper sometimes leaves one side out; with exactly two parties the other side is implied
    if to_roster_id is None and to_user_id is None:
        to_roster_id = _other_party(tx.roster_ids, from_roster_id)
        to_user_id = ctx.user_for(to_roster_id)
    if from_roster_id is None and from_user_id is None:
        from_roster_id = _other_party(tx.roster_ids, to_roster_id)
        from_user_id = ctx.user_for(from_roster_id)
    if to_user_id is None or from_user_id is None:
        logger.warning(
            "Trade %s: could not attribute %s round %s pick (original roster %s) to both sides",
            tx.transaction_id, movement.season, movement.round, movement.roster_id,
        )

    return AssetEvent(
        **base,
        event_type=PICK_TRADE,
        asset_kind="pick",
        pick_season=movement.season,
        pick_round=movement.round,
        pick_original_roster_id=movement.roster_id,
        from_roster_id=from_roster_id,
        from_user_id=from_user_id,
        to_roster_id=to_roster_id,
        to_user_id=to_user_id,
    )


def _transaction_events(tx: Transaction, ctx: _LeagueContext) -> List[AssetEvent]:
    base = dict(
        league_id=ctx.league_id,
        season=ctx.season,
        week=transaction_week(tx),
        event_time=parse_event_time(tx.status_updated) or parse_event_time(tx.created),
        transaction_id=tx.transaction_id,
        details={"type": tx.type},
    )
    adds = {pid: rid for pid, rid in (tx.adds or {}).items() if rid is not None}
    drops = {pid: rid for pid, rid in (tx.drops or {}).items() if rid is not None}
    if len(adds) != len(tx.adds or {}) or len(drops) != len(tx.drops or {}):
        logger.warning("Transaction %s has adds/drops without a roster; those entries were ignored", tx.transaction_id)

    events = []
    if tx.type == "trade":
        for player_id, to_roster_id in adds.items():
            from_roster_id = drops.get(player_id)
            events.append(AssetEvent(
                **base,
                event_type=TRADE,
                asset_kind="player",
                player_id=player_id,
                from_roster_id=from_roster_id,
                from_user_id=ctx.user_for(from_roster_id),
                to_roster_id=to_roster_id,
                to_user_id=ctx.user_for(to_roster_id),
            ))
        # A player dropped in a trade without going to another roster is released
        for player_id, from_roster_id in drops.items():
            if player_id in adds:
                continue
            events.append(AssetEvent(
                **base,
                event_type=DROP,
                asset_kind="player",
                player_id=player_id,
                from_roster_id=from_roster_id,
                from_user_id=ctx.user_for(from_roster_id),
            ))
        for movement in tx.draft_picks or []:
            pick_event = _pick_trade_event(tx, movement, ctx, base)
            if pick_event is not None:
                events.append(pick_event)
        return events

    for player_id, to_roster_id in adds.items():
        events.append(AssetEvent(
            **base,
            event_type=_ADD_TYPES.get(tx.type, ADD),
            asset_kind="player",
            player_id=player_id,
            to_roster_id=to_roster_id,
            to_user_id=ctx.user_for(to_roster_id),
        ))
    for player_id, from_roster_id in drops.items():
        events.append(AssetEvent(
            **base,
            event_type=_DROP_TYPES.get(tx.type, DROP),
            asset_kind="player",
            player_id=player_id,
            from_roster_id=from_roster_id,
            from_user_id=ctx.user_for(from_roster_id),
        ))
    return events


def _sort_key(event: AssetEvent):
    return chronological_key(event) + tuple("" if part is None else str(part) for part in event.natural_key())


def dedupe_and_sort(events: Iterable[AssetEvent]) -> List[AssetEvent]:
    unique: Dict[Tuple, AssetEvent] = {}
    for event in events:
        unique.setdefault(event.natural_key(), event)
    return sorted(unique.values(), key=_sort_key)


def normalize_family(
    leagues: Iterable[League],
    roster_maps: Dict[str, RosterMap],
    transactions: Iterable[Transaction],
    drafts: Iterable[Draft] = (),
    draft_picks: Iterable[DraftPick] = (),
) -> List[AssetEvent]:
    """Asset events for one league family.

    ``roster_maps`` holds one roster-id to owner-user-id map per league, since
    roster numbering is not comparable across leagues. Transactions that did
    not complete (failed waiver claims, for instance) produce no events.
    """
    contexts = {
        league.league_id: _LeagueContext(league.league_id, league.season, roster_maps.get(league.league_id, {}))
        for league in leagues
    }

    def context_for(league_id: Optional[str]) -> Optional[_LeagueContext]:
        if league_id is None:
            return None
        if league_id not in contexts:
            contexts[league_id] = _LeagueContext(league_id, None, roster_maps.get(league_id, {}))
        return contexts[league_id]

    picks_by_draft: Dict[str, List[DraftPick]] = {}
    for pick in draft_picks:
        picks_by_draft.setdefault(pick.draft_id, []).append(pick)

    events: List[AssetEvent] = []
    for draft in drafts:
        ctx = context_for(draft.league_id)
        if ctx is None:
            logger.warning("Draft %s has no league; skipped", draft.draft_id)
            continue
        events.extend(_draft_events(draft, picks_by_draft.get(draft.draft_id, []), ctx))

    for tx in transactions:
        ctx = context_for(tx.league_id)
        if ctx is None:
            logger.warning("Transaction %s has no league; skipped", tx.transaction_id)
            continue
        if tx.status is not None and tx.status != "complete":
            continue
        events.extend(_transaction_events(tx, ctx))

    return dedupe_and_sort(events)
