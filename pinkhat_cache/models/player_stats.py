"""
Player stats model - per-player aggregate folded from game participations.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, utcnow


class PlayerStats(BaseModel):
    """Aggregate statistics for one player address."""

    __tablename__ = "player_stats"

    player_address: Mapped[str] = mapped_column(
        String(42),
        primary_key=True,
        comment="Player address"
    )

    best_score: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        comment="Best score under each game's ranking direction"
    )

    total_wins: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Games won"
    )

    total_games: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Games played (count of participant rows)"
    )

    current_equipped_hat: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Hat equipped at last sync (0 = none)"
    )

    has_played: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Whether the player has any recorded game"
    )

    last_updated: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        comment="Last time the aggregate was written"
    )

    __table_args__ = (
        Index("idx_player_stats_leaderboard", "has_played", "total_wins"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlayerStats(address={self.player_address}, wins={self.total_wins}, "
            f"games={self.total_games}, best={self.best_score})>"
        )
