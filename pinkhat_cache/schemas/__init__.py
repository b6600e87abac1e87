"""
Pydantic response schemas for the query service.
"""

from .common import Provenance, QueryResponse
from .games import GameListResponse, GameParticipantInfo, GameResponse
from .leaderboards import (
    LeaderboardEntry,
    LeaderboardResponse,
    ScoringModeResponse,
    TopPlayerItem,
    TopScoreItem,
    TopScoresMode,
    TopScoresResponse,
)
from .players import EquippedHatResponse, PlayerGameSummary, PlayerStatsResponse
from .sync import SyncStatusResponse

__all__ = [
    "Provenance",
    "QueryResponse",
    "GameListResponse",
    "GameParticipantInfo",
    "GameResponse",
    "LeaderboardEntry",
    "LeaderboardResponse",
    "ScoringModeResponse",
    "TopPlayerItem",
    "TopScoreItem",
    "TopScoresMode",
    "TopScoresResponse",
    "EquippedHatResponse",
    "PlayerGameSummary",
    "PlayerStatsResponse",
    "SyncStatusResponse",
]
