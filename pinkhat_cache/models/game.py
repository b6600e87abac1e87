"""
Game models - one row per GameSubmitted event and one row per participant.
"""

from typing import List, Optional

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, TimestampMixin


class Game(BaseModel, TimestampMixin):
    """Finalized game mirrored from a GameSubmitted event. Append-only."""

    __tablename__ = "games"

    game_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=False,
        comment="On-chain gameId (event sequence number)"
    )

    block_number: Mapped[int] = mapped_column(
        BigInteger,
        comment="Block the event was emitted in"
    )

    transaction_hash: Mapped[str] = mapped_column(
        String(66),
        unique=True,
        comment="Transaction that emitted the event"
    )

    winner_address: Mapped[str] = mapped_column(
        String(42),
        comment="Winner declared by the contract"
    )

    player_count: Mapped[int] = mapped_column(
        Integer,
        comment="Number of participants"
    )

    is_descending_order: Mapped[bool] = mapped_column(
        Boolean,
        comment="Ranking direction when the game was recorded (True: higher is better)"
    )

    participants: Mapped[List["GameParticipant"]] = relationship(
        "GameParticipant",
        back_populates="game",
        order_by="GameParticipant.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_games_block", "block_number"),
        Index("idx_games_tx", "transaction_hash"),
    )

    def __repr__(self) -> str:
        return f"<Game(game_id={self.game_id}, players={self.player_count}, winner={self.winner_address})>"

    @property
    def scoring_mode(self) -> str:
        return "Higher scores better" if self.is_descending_order else "Lower scores better"


class GameParticipant(BaseModel):
    """A player's result within one game."""

    __tablename__ = "game_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    game_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("games.game_id"),
        comment="Owning game"
    )

    player_address: Mapped[str] = mapped_column(
        String(42),
        comment="Participant address"
    )

    score: Mapped[int] = mapped_column(
        BigInteger,
        comment="Raw score submitted on chain"
    )

    position: Mapped[int] = mapped_column(
        Integer,
        comment="1-based rank within the game"
    )

    # Snapshot taken at sync time, not at game time: the event does not carry it
    equipped_hat_id: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Hat token equipped when the game was synced (0 = none)"
    )

    hat_type: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Resolved hat display name, null when unresolved"
    )

    game: Mapped["Game"] = relationship("Game", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("game_id", "player_address", name="uq_game_participant"),
        Index("idx_game_participants_player", "player_address"),
        Index("idx_game_participants_game", "game_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GameParticipant(game_id={self.game_id}, player={self.player_address}, "
            f"score={self.score}, position={self.position})>"
        )
