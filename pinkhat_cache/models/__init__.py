"""
Database models for the game cache.

Contains SQLAlchemy models that mirror the GameManager events
and the aggregates derived from them.
"""

from .base import Base, BaseModel, TimestampMixin
from .game import Game, GameParticipant
from .player_stats import PlayerStats
from .sync_state import SyncState, CHECKPOINT_ID

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Game",
    "GameParticipant",
    "PlayerStats",
    "SyncState",
    "CHECKPOINT_ID",
]
