"""
Leaderboard schemas.
Covers the all-time leaderboard, custom player lists and time-windowed top scores.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import AddressField, QueryResponse


class TopScoresMode(str, Enum):
    """Shape of a time-windowed leaderboard."""
    SCORES = "scores"
    PLAYERS = "players"


class LeaderboardEntry(BaseModel):
    """A ranked player."""
    rank: int = Field(ge=1, description="Player's rank in leaderboard")
    address: str = AddressField
    best_score: Optional[int] = None
    total_wins: int = 0
    total_games: int = 0
    equipped_hat: int = 0
    has_played: bool = True


class LeaderboardResponse(QueryResponse):
    """All-time leaderboard ordered by wins, then best score."""
    players: List[LeaderboardEntry]
    is_descending_order: bool
    scoring_mode: str


class TopScoreItem(BaseModel):
    """One score from a game inside the window."""
    rank: int
    game_id: int
    address: str = AddressField
    score: int
    equipped_hat: int = 0
    hat_type: Optional[str] = None
    block_number: int
    transaction_hash: str
    created_at: Optional[datetime] = None


class TopPlayerItem(BaseModel):
    """A player's best score inside the window."""
    rank: int
    address: str = AddressField
    best_score: int
    games_played: int
    last_game_time: Optional[datetime] = None


class TopScoresResponse(QueryResponse):
    """Time-windowed leaderboard."""
    mode: TopScoresMode
    hours: int
    since: datetime
    is_descending_order: bool
    scoring_mode: str
    scores: List[TopScoreItem] = Field(default_factory=list)
    players: List[TopPlayerItem] = Field(default_factory=list)
    games_in_window: int = 0
    active_players: int = 0


class ScoringModeResponse(QueryResponse):
    """Current ranking direction."""
    is_descending_order: bool
    scoring_mode: str
