"""
Services: chain access, event validation, derived-state calculation,
cache persistence and queries.
"""

from .cache_store import CacheStore, GameRecord, ParticipantRecord
from .chain_client import EventSource, Web3EventSource, get_chain_client, close_chain_client
from .metadata_resolver import HatMetadataResolver
from .query_service import QueryService

__all__ = [
    "CacheStore",
    "GameRecord",
    "ParticipantRecord",
    "EventSource",
    "Web3EventSource",
    "get_chain_client",
    "close_chain_client",
    "HatMetadataResolver",
    "QueryService",
]
