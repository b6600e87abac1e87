"""
Core synchronizer types.
"""

from .types import SyncPhase, SyncStats, ProcessOutcome

__all__ = ["SyncPhase", "SyncStats", "ProcessOutcome"]
