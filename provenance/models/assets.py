from datetime import datetime
from typing import List, Dict, Any, Optional, Union, Tuple, Literal
from pydantic import BaseModel, Field

from ..errors import InvalidAssetIdentityError

# Event types
DRAFT_SELECTED = "draft_selected"
PICK_SELECTED = "pick_selected"
TRADE = "trade"
PICK_TRADE = "pick_trade"
WAIVER_ADD = "waiver_add"
WAIVER_DROP = "waiver_drop"
FREE_AGENT_ADD = "free_agent_add"
FREE_AGENT_DROP = "free_agent_drop"
ADD = "add"
DROP = "drop"
SEASON_CONTINUATION = "season_continuation"

AssetKind = Literal["player", "pick"]


class PlayerAsset(BaseModel):
    kind: Literal["player"] = "player"
    player_id: str

    @property
    def asset_id(self) -> str:
        return f"player-{self.player_id}"


class PickAsset(BaseModel):
    """A draft pick, identified by the slot it started in rather than a surrogate id."""
    kind: Literal["pick"] = "pick"
    season: str
    round: int
    original_roster_id: int

    @property
    def asset_id(self) -> str:
        return f"pick-{self.season}-{self.round}-{self.original_roster_id}"


AssetIdentity = Union[PlayerAsset, PickAsset]


def parse_asset_id(asset_id: str) -> AssetIdentity:
    """Parse ``player-<id>`` or ``pick-<season>-<round>-<original roster>``."""
    kind, _, rest = (asset_id or "").partition("-")
    if kind == "player" and rest:
        return PlayerAsset(player_id=rest)
    if kind == "pick":
        parts = rest.split("-")
        if len(parts) == 3:
            season, round_, roster = parts
            try:
                return PickAsset(season=season, round=int(round_), original_roster_id=int(roster))
            except ValueError:
                pass
    raise InvalidAssetIdentityError(f"Invalid asset identity: {asset_id!r}")


class AssetEvent(BaseModel):
    """One ownership-affecting action on one asset."""
    id: Optional[int] = None
    league_id: str
    season: Optional[str] = None
    week: Optional[int] = None
    event_time: Optional[datetime] = None
    event_type: str
    asset_kind: AssetKind
    player_id: Optional[str] = None
    pick_season: Optional[str] = None
    pick_round: Optional[int] = None
    pick_original_roster_id: Optional[int] = None
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    from_roster_id: Optional[int] = None
    to_roster_id: Optional[int] = None
    transaction_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    is_continuation: bool = False

    def natural_key(self) -> Tuple:
        return (
            self.league_id,
            self.event_type,
            self.asset_kind,
            self.player_id,
            self.pick_season,
            self.pick_round,
            self.pick_original_roster_id,
            self.transaction_id,
            self.from_user_id,
            self.to_user_id,
        )

    @property
    def asset(self) -> AssetIdentity:
        if self.asset_kind == "player":
            return PlayerAsset(player_id=self.player_id)
        return PickAsset(
            season=self.pick_season,
            round=self.pick_round,
            original_roster_id=self.pick_original_roster_id,
        )

    @property
    def asset_id(self) -> str:
        return self.asset.asset_id


def chronological_key(event: AssetEvent) -> Tuple:
    # Missing values sort first, the same way the store orders NULLs.
    # At the same moment, moves off a roster come before moves onto one.
    return (
        (event.season is not None, event.season or ""),
        (event.week is not None, event.week or 0),
        (event.event_time is not None, event.event_time or datetime.min),
        event.to_roster_id is not None,
    )


class PlayerScore(BaseModel):
    league_id: str
    week: int
    roster_id: int
    player_id: str
    points: float
    is_starter: bool


class SeasonCalendar(BaseModel):
    league_id: str
    season: str
    last_week: int  # last played week of the season
    playoff_week_start: Optional[int] = None


class PerformanceMetrics(BaseModel):
    ppg: float = 0.0
    starter_pct: float = 0.0
    ppg_starter: float = 0.0
    ppg_bench: float = 0.0
    games_played: int = 0
    games_started: int = 0


class PerformancePeriod(BaseModel):
    asset_id: str
    league_id: str
    season: str
    roster_id: int
    owner_user_id: Optional[str] = None
    start_week: int
    end_week: Optional[int] = None  # None while the current holder's season is ongoing
    is_continuation: bool = False
    from_event_id: Optional[int] = None
    to_event_id: Optional[int] = None
    metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)


class WeeklyBenchmark(BaseModel):
    season: str
    week: int
    median: float
    top_decile: float  # 90th percentile
    sample_size: int


class LeagueFamily(BaseModel):
    root_league_id: str
    league_ids: List[str]


class AssetEventCount(BaseModel):
    asset_id: str
    asset_kind: AssetKind
    player_id: Optional[str] = None
    pick_season: Optional[str] = None
    pick_round: Optional[int] = None
    pick_original_roster_id: Optional[int] = None
    event_count: int


class PlayerInfo(BaseModel):
    id: str
    name: str
    position: Optional[str] = None
    team: Optional[str] = None
    status: Optional[str] = None


class PlayerTimeline(BaseModel):
    asset_id: str
    family: List[str]
    player: Optional[PlayerInfo] = None
    events: List[AssetEvent]
    periods: List[PerformancePeriod]


class PickTimeline(BaseModel):
    asset_id: str
    family: List[str]
    events: List[AssetEvent]


class GraphPosition(BaseModel):
    x: float
    y: float


class AssetNodeData(BaseModel):
    asset_id: str
    asset_kind: AssetKind
    name: str
    position: Optional[str] = None
    team: Optional[str] = None
    transaction_ids: List[str] = Field(default_factory=list)


class TransactionNodeData(BaseModel):
    transaction_id: Optional[str] = None
    event_type: str
    league_id: str
    season: Optional[str] = None
    week: Optional[int] = None
    event_time: Optional[datetime] = None
    asset_ids: List[str] = Field(default_factory=list)
    roster_ids: List[int] = Field(default_factory=list)


class GraphNode(BaseModel):
    id: str
    type: Literal["asset", "transaction"]
    data: Union[AssetNodeData, TransactionNodeData]
    position: GraphPosition


class GraphEdge(BaseModel):
    id: str
    source: str  # asset node id
    target: str  # transaction node id
    type: Literal["asset-to-transaction"] = "asset-to-transaction"


class TimelineGraph(BaseModel):
    nodes: List[GraphNode]
    edges: List[GraphEdge]


class Manager(BaseModel):
    user_id: str
    username: Optional[str] = None
    display_name: str


class TransactionAsset(BaseModel):
    asset_id: str
    asset_kind: AssetKind
    event_type: str
    player: Optional[PlayerInfo] = None
    pick_season: Optional[str] = None
    pick_round: Optional[int] = None
    pick_original_roster_id: Optional[int] = None
    from_roster_id: Optional[int] = None
    to_roster_id: Optional[int] = None
    from_manager: Optional[Manager] = None
    to_manager: Optional[Manager] = None


class TransactionDetail(BaseModel):
    transaction_id: str
    league_id: Optional[str] = None
    type: Optional[str] = None
    season: Optional[str] = None
    week: Optional[int] = None
    event_time: Optional[datetime] = None
    assets: List[TransactionAsset]


class RosterPick(BaseModel):
    asset_id: str
    season: str
    round: int
    original_roster_id: int
    original_manager: str
    acquired_by_trade: bool = False


class RosterPicks(BaseModel):
    league_id: str
    roster_id: int
    owner_user_id: str
    picks: List[RosterPick]
