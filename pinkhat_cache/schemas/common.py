"""
Common Pydantic schemas for query responses.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Provenance(str, Enum):
    """Where a query answer came from."""
    CACHE = "cache"
    LIVE = "live"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QueryResponse(BaseModel):
    """Base query response model."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    provenance: Provenance = Field(description="cache when served from the store, live when recomputed from chain")
    timestamp: datetime = Field(default_factory=_now)


AddressField = Field(description="EIP-55 checksum address", min_length=42, max_length=42)
