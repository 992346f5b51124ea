from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import aiosqlite

from .. import storage
from ..client import SleeperClient
from ..models.assets import (
    ADD,
    DROP,
    PICK_TRADE,
    SEASON_CONTINUATION,
    TRADE,
    AssetEvent,
    AssetNodeData,
    GraphEdge,
    GraphNode,
    GraphPosition,
    PickAsset,
    PlayerAsset,
    PlayerInfo,
    TimelineGraph,
    TransactionNodeData,
    parse_asset_id,
)
from .event_store import EventStore
from .family import resolve_family

START_X = 100
START_Y = 100
NODE_SPACING_X = 250
NODE_SPACING_Y = 200
TRANSACTION_ROW_Y = START_Y + 300

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def transaction_node_id(event: AssetEvent) -> str:
    if event.transaction_id:
        return f"tx-{event.transaction_id}"
    if event.id is not None:
        return f"event-{event.id}"
    # Events that were never stored have no id
    return f"event-{event.league_id}-{event.event_type}-{event.asset_id}-{event.season}-{event.week}"


def filter_graph_events(events: Sequence[AssetEvent]) -> List[AssetEvent]:
    """Drop continuation markers, and add/drop events shadowed by a trade in the same transaction."""
    traded = {
        e.transaction_id for e in events
        if e.transaction_id and e.event_type in (TRADE, PICK_TRADE)
    }
    kept = []
    for event in events:
        if event.event_type == SEASON_CONTINUATION or event.is_continuation:
            continue
        if event.event_type in (ADD, DROP) and event.transaction_id in traded:
            continue
        kept.append(event)
    return kept


def asset_name(asset_id: str, asset_info: Optional[Dict[str, PlayerInfo]] = None) -> str:
    asset = parse_asset_id(asset_id)
    if isinstance(asset, PlayerAsset):
        info = (asset_info or {}).get(asset_id)
        return info.name if info else f"Player {asset.player_id}"
    return f"{asset.season} R{asset.round} Pick"


def _chronological(node: GraphNode) -> Tuple:
    data: TransactionNodeData = node.data
    season = int(data.season) if data.season and data.season.isdigit() else 0
    event_time = data.event_time or _EARLIEST
    if event_time.tzinfo is None:
        event_time = event_time.replace(tzinfo=timezone.utc)
    return (season, data.week or 0, event_time)


def assemble_graph(
    timelines: Sequence[Tuple[str, Sequence[AssetEvent]]],
    asset_info: Optional[Dict[str, PlayerInfo]] = None,
) -> TimelineGraph:
    """Merge asset timelines into one asset/transaction graph.

    A transaction shared by several timelines becomes a single node with one
    edge per asset.
    """
    asset_nodes: Dict[str, GraphNode] = {}
    transaction_nodes: Dict[str, GraphNode] = {}
    edges: Dict[str, GraphEdge] = {}

    for asset_id, events in timelines:
        asset = parse_asset_id(asset_id)
        info = (asset_info or {}).get(asset_id)
        asset_node = asset_nodes.get(asset_id)
        if asset_node is None:
            asset_node = GraphNode(
                id=asset_id,
                type="asset",
                data=AssetNodeData(
                    asset_id=asset_id,
                    asset_kind="pick" if isinstance(asset, PickAsset) else "player",
                    name=asset_name(asset_id, asset_info),
                    position=info.position if info else None,
                    team=info.team if info else None,
                ),
                position=GraphPosition(x=0, y=0),
            )
            asset_nodes[asset_id] = asset_node

        for event in filter_graph_events(events):
            tx_id = transaction_node_id(event)
            tx_node = transaction_nodes.get(tx_id)
            if tx_node is None:
                tx_node = GraphNode(
                    id=tx_id,
                    type="transaction",
                    data=TransactionNodeData(
                        transaction_id=event.transaction_id,
                        event_type=event.event_type,
                        league_id=event.league_id,
                        season=event.season,
                        week=event.week,
                        event_time=event.event_time,
                    ),
                    position=GraphPosition(x=0, y=0),
                )
                transaction_nodes[tx_id] = tx_node

            tx_data: TransactionNodeData = tx_node.data
            if asset_id not in tx_data.asset_ids:
                tx_data.asset_ids.append(asset_id)
            for roster_id in (event.from_roster_id, event.to_roster_id):
                if roster_id is not None and roster_id not in tx_data.roster_ids:
                    tx_data.roster_ids.append(roster_id)

            asset_data: AssetNodeData = asset_node.data
            if tx_id not in asset_data.transaction_ids:
                asset_data.transaction_ids.append(tx_id)

            edge_id = f"{asset_id}-{tx_id}"
            if edge_id not in edges:
                edges[edge_id] = GraphEdge(id=edge_id, source=asset_id, target=tx_id)

    ordered_transactions = sorted(transaction_nodes.values(), key=_chronological)
    for index, node in enumerate(ordered_transactions):
        node.position = GraphPosition(x=START_X + index * NODE_SPACING_X, y=TRANSACTION_ROW_Y)
    for index, node in enumerate(asset_nodes.values()):
        node.position = GraphPosition(x=START_X - 100, y=START_Y + index * NODE_SPACING_Y)

    return TimelineGraph(nodes=[*asset_nodes.values(), *ordered_transactions], edges=list(edges.values()))


async def get_graph(
    db: aiosqlite.Connection, source: SleeperClient, root_league_id: str, asset_ids: Sequence[str]
) -> TimelineGraph:
    assets = [parse_asset_id(asset_id) for asset_id in asset_ids]
    family = await resolve_family(db, source, root_league_id)
    store = EventStore(db)
    timelines = [(asset.asset_id, await store.query_timeline(asset, family)) for asset in assets]

    players = await storage.get_players(db, [a.player_id for a in assets if isinstance(a, PlayerAsset)])
    asset_info = {PlayerAsset(player_id=player_id).asset_id: info for player_id, info in players.items()}
    return assemble_graph(timelines, asset_info)
