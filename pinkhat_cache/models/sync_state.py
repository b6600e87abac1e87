"""
Sync state model - singleton checkpoint for synchronizer progress.
"""

from datetime import datetime

from sqlalchemy import Integer, BigInteger
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, utcnow


CHECKPOINT_ID = 1


class SyncState(BaseModel):
    """Last block and game fully written to the cache."""

    __tablename__ = "sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=CHECKPOINT_ID)

    last_synced_block: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Highest block whose events are all committed"
    )

    last_synced_game_id: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Highest game id committed"
    )

    last_sync_time: Mapped[datetime] = mapped_column(
        default=utcnow,
        comment="When the checkpoint last advanced"
    )

    def __repr__(self) -> str:
        return f"<SyncState(block={self.last_synced_block}, game_id={self.last_synced_game_id})>"
