"""
Game schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import AddressField, QueryResponse


class GameParticipantInfo(BaseModel):
    """One participant of a game, in rank order."""
    address: str = AddressField
    score: int = Field(ge=0)
    position: int = Field(ge=1, description="1-based rank within the game")
    equipped_hat: int = Field(default=0, description="Hat token id snapshotted at sync time (0 = none)")
    hat_type: Optional[str] = Field(None, description="Hat display name, if resolved")


class GameResponse(QueryResponse):
    """A single game with its ranked participants."""
    game_id: int
    player_count: int
    block_number: int
    transaction_hash: str
    winner: str = AddressField
    is_descending_order: bool
    scoring_mode: str
    players: List[GameParticipantInfo]
    created_at: Optional[datetime] = None


class GameListResponse(QueryResponse):
    """Recent games, newest first."""
    games: List[GameResponse]
    limit: int
    offset: int
