"""
Core types for event synchronization.
"""

from datetime import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class SyncPhase(Enum):
    """Lifecycle phase of the synchronizer."""
    STARTING = "starting"
    CATCHING_UP = "catching_up"
    LIVE = "live"
    STOPPED = "stopped"


class ProcessOutcome(Enum):
    """What happened to a single event."""
    STORED = "stored"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    ORDERING_CHANGE = "ordering_change"


@dataclass
class SyncStats:
    """Statistics for event processing."""
    games_stored: int = 0
    duplicates_skipped: int = 0
    invalid_events: int = 0
    ordering_changes: int = 0
    metadata_failures: int = 0
    storage_errors: int = 0
    source_errors: int = 0
    batches_completed: int = 0
    last_processed_block: Optional[int] = None
    last_processed_game_id: Optional[int] = None
    start_time: Optional[datetime] = None

    def record(self, outcome: ProcessOutcome) -> None:
        if outcome is ProcessOutcome.STORED:
            self.games_stored += 1
        elif outcome is ProcessOutcome.DUPLICATE:
            self.duplicates_skipped += 1
        elif outcome is ProcessOutcome.INVALID:
            self.invalid_events += 1
        elif outcome is ProcessOutcome.ORDERING_CHANGE:
            self.ordering_changes += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "games_stored": self.games_stored,
            "duplicates_skipped": self.duplicates_skipped,
            "invalid_events": self.invalid_events,
            "ordering_changes": self.ordering_changes,
            "metadata_failures": self.metadata_failures,
            "storage_errors": self.storage_errors,
            "source_errors": self.source_errors,
            "batches_completed": self.batches_completed,
            "last_processed_block": self.last_processed_block,
            "last_processed_game_id": self.last_processed_game_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
        }
