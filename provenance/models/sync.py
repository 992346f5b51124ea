from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    league_id: str
    season: Optional[str] = None
    users: int = 0
    rosters: int = 0
    transactions: int = 0
    player_scores: int = 0
    drafts: int = 0
    draft_picks: int = 0
    traded_picks: int = 0


class RebuildResult(BaseModel):
    mode: str
    league_ids: List[str]
    transactions_processed: int = 0
    events_generated: int = 0
    events_written: int = 0
    since: Optional[str] = None  # last sync time used by incremental mode


class FamilySyncResult(BaseModel):
    root_league_id: str
    mode: str
    league_ids: List[str]
    leagues: List[SyncResult] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)  # league id -> error
    rebuild: Optional[RebuildResult] = None


class JobStatus(BaseModel):
    league_id: str
    status: str  # idle | in_progress | failed
    mode: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error: Optional[str] = None
    accepted: Optional[bool] = None  # set on trigger responses
