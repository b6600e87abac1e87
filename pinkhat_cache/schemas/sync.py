"""
Sync status schema.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SyncStatusResponse(BaseModel):
    """Checkpoint position and cache contents."""
    last_synced_block: int = 0
    last_synced_game_id: int = 0
    last_sync_time: Optional[datetime] = None
    status: str = Field(description="synced when the cache holds games, empty otherwise")
    record_counts: Dict[str, int] = Field(default_factory=dict)
    synchronizer: Optional[Dict[str, Any]] = Field(None, description="Phase and counters of an attached synchronizer")
