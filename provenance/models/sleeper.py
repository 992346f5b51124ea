import logging
from typing import List, Dict, Any, Optional, Union
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)


class SeasonModel(BaseModel):
    """Base for records carrying a season; Sleeper sends it as a string but older payloads use ints."""

    @field_validator("season", mode="before", check_fields=False)
    @classmethod
    def coerce_season(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class User(BaseModel):
    user_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None


class League(SeasonModel):
    league_id: str
    name: Optional[str] = None
    season: Optional[str] = None
    status: Optional[str] = None
    total_rosters: Optional[int] = None
    previous_league_id: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class Roster(BaseModel):
    roster_id: int
    league_id: Optional[str] = None
    owner_id: Optional[str] = None
    players: Optional[List[str]] = None
    starters: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None


class Draft(SeasonModel):
    draft_id: str
    league_id: Optional[str] = None
    season: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    start_time: Optional[int] = None  # Unix timestamp in ms


class DraftPick(BaseModel):
    draft_id: Optional[str] = None
    pick_no: int
    round: int
    roster_id: Optional[int] = None
    player_id: Optional[str] = None
    is_keeper: Optional[bool] = None
    traded_from_roster_id: Optional[int] = None  # pre-trade owner of the slot, from pick metadata


class Player(BaseModel):
    player_id: str
    full_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    team: Optional[str] = None
    status: Optional[str] = None
    age: Optional[int] = None

    @property
    def name(self) -> str:
        if self.full_name:
            return self.full_name
        joined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return joined or f"Player {self.player_id}"


class RosterRef(BaseModel):
    """A pick owner given as a league-scoped roster slot."""
    roster_id: int


class UserRef(BaseModel):
    """A pick owner given as a durable user id."""
    user_id: str


OwnerRef = Union[RosterRef, UserRef]


def decode_owner_ref(value: Any) -> Optional[OwnerRef]:
    """Decode an ``owner_id``/``previous_owner_id`` field of unreliable type.

    Sleeper sends either a roster id (number) or a user id (string) in these
    fields. Numbers become ``RosterRef``; strings become ``UserRef``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return RosterRef(roster_id=value)
    if isinstance(value, float):
        if value.is_integer():
            return RosterRef(roster_id=int(value))
        logger.warning("Ignoring non-integral pick owner id %r", value)
        return None
    if isinstance(value, str):
        value = value.strip()
        return UserRef(user_id=value) if value else None
    logger.warning("Ignoring pick owner id of unexpected type %s", type(value).__name__)
    return None


class DraftPickMovement(SeasonModel):
    season: str
    round: int
    roster_id: Optional[int] = None  # ORIGINAL owner of the pick (who initially had this draft slot)
    owner_id: Optional[Union[int, str]] = None  # NEW owner after this trade
    previous_owner_id: Optional[Union[int, str]] = None  # owner TRADING AWAY the pick

    @property
    def new_owner(self) -> Optional[OwnerRef]:
        return decode_owner_ref(self.owner_id)

    @property
    def previous_owner(self) -> Optional[OwnerRef]:
        return decode_owner_ref(self.previous_owner_id)


class Transaction(BaseModel):
    transaction_id: str
    league_id: Optional[str] = None
    type: str
    status: Optional[str] = None
    week: Optional[int] = None  # week the transaction was fetched for
    leg: Optional[int] = None
    status_updated: Optional[int] = None  # Unix timestamp in ms
    created: Optional[int] = None
    adds: Optional[Dict[str, Optional[int]]] = None
    drops: Optional[Dict[str, Optional[int]]] = None
    roster_ids: Optional[List[int]] = None
    draft_picks: Optional[List[DraftPickMovement]] = None
    metadata: Optional[Dict[str, Any]] = None


class Matchup(BaseModel):
    matchup_id: Optional[int] = None
    roster_id: int
    points: Optional[float] = None
    players: Optional[List[str]] = None
    starters: Optional[List[str]] = None
    starters_points: Optional[List[float]] = None
    players_points: Optional[Dict[str, float]] = None


class TradedPick(SeasonModel):
    season: str
    round: int
    roster_id: int  # original owner
    owner_id: Optional[Union[int, str]] = None  # current owner
    previous_owner_id: Optional[Union[int, str]] = None


class NflState(SeasonModel):
    season: str
    week: int = 0
    season_type: Optional[str] = None
