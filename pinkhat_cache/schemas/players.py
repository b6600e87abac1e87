"""
Player schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import AddressField, QueryResponse


class PlayerGameSummary(BaseModel):
    """A player's result in one game."""
    game_id: int
    score: int
    position: int
    won: bool
    equipped_hat: int = 0
    hat_type: Optional[str] = None
    is_descending_order: bool
    created_at: Optional[datetime] = None


class PlayerStatsResponse(QueryResponse):
    """Aggregated stats for one player."""
    address: str = AddressField
    best_score: Optional[int] = Field(None, description="Best score under each game's direction")
    total_wins: int = 0
    total_games_played: int = 0
    equipped_hat: int = 0
    equipped_hat_type: Optional[str] = None
    has_played: bool = False
    games_played: List[int] = Field(default_factory=list, description="Game ids, newest first")
    history: List[PlayerGameSummary] = Field(default_factory=list)


class EquippedHatResponse(QueryResponse):
    """Hat a player currently has equipped."""
    address: str = AddressField
    hat_id: int = 0
    hat_type: Optional[str] = None
