"""
Shared fixtures: a file-backed SQLite cache per test and an in-memory chain.
"""

from typing import Dict, List, Optional, Sequence

import pytest

from pinkhat_cache.core.database import DatabaseManager, close_database, init_database
from pinkhat_cache.core.exceptions import SourceUnavailableError
from pinkhat_cache.services.cache_store import CacheStore
from pinkhat_cache.services.chain_client import EventSource
from pinkhat_cache.services.event_parser import ChainEvent, EventType


ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40
DAVE = "0x" + "4" * 40


class FakeEventSource(EventSource):
    """In-memory chain holding GameManager events."""

    def __init__(self, head: int = 100, descending: bool = True):
        self.events: List[ChainEvent] = []
        self.head = head
        self.descending = descending
        self.hats: Dict[str, int] = {}
        self.token_uris: Dict[int, str] = {}
        self.available = True
        self.poll_interval = 0.01
        self.block_number_calls = 0
        self.queries: List[tuple] = []

    def _check(self) -> None:
        if not self.available:
            raise SourceUnavailableError("chain node unreachable")

    def add_game(
        self,
        game_id: int,
        players: Sequence[str],
        scores: Sequence[int],
        winner: Optional[str] = None,
        block_number: Optional[int] = None,
        log_index: int = 0,
    ) -> ChainEvent:
        if winner is None:
            best = max(scores) if self.descending else min(scores)
            winner = players[list(scores).index(best)]
        chain_event = ChainEvent(
            event_type=EventType.GAME_SUBMITTED,
            sequence_id=game_id,
            block_number=block_number if block_number is not None else game_id * 10,
            transaction_hash="0x" + format(game_id, "064x"),
            log_index=log_index,
            payload={
                "gameId": game_id,
                "winner": winner,
                "playerCount": len(players),
                "players": list(players),
                "scores": list(scores),
            },
        )
        self.events.append(chain_event)
        return chain_event

    def add_ordering_change(self, is_descending: bool, block_number: int) -> ChainEvent:
        chain_event = ChainEvent(
            event_type=EventType.SCORE_ORDERING_CHANGED,
            sequence_id=None,
            block_number=block_number,
            transaction_hash="0x" + format(block_number, "064x"),
            payload={"isDescendingOrder": is_descending},
        )
        self.events.append(chain_event)
        return chain_event

    async def get_block_number(self) -> int:
        self._check()
        self.block_number_calls += 1
        return self.head

    async def query_events_since(self, event_type, from_block, to_block=None):
        self._check()
        self.queries.append((event_type, from_block, to_block))
        matching = [
            e for e in self.events
            if e.event_type is event_type
            and e.block_number >= from_block
            and (to_block is None or e.block_number <= to_block)
        ]
        return sorted(matching, key=lambda e: e.ordering_key)

    async def get_game_event(self, game_id):
        self._check()
        return next(
            (e for e in self.events
             if e.event_type is EventType.GAME_SUBMITTED and e.sequence_id == game_id),
            None
        )

    async def is_descending_order(self) -> bool:
        self._check()
        return self.descending

    async def get_equipped_hat(self, address: str) -> int:
        self._check()
        return self.hats.get(address, 0)

    async def get_token_uri(self, token_id: int) -> str:
        self._check()
        if token_id not in self.token_uris:
            raise SourceUnavailableError("tokenURI reverted", {"token_id": token_id})
        return self.token_uris[token_id]


@pytest.fixture
async def database(tmp_path):
    """Fresh cache database for one test."""
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await DatabaseManager.create_tables()
    yield
    await close_database()


@pytest.fixture
async def store(database):
    cache_store = CacheStore()
    await cache_store.ensure_checkpoint()
    return cache_store


@pytest.fixture
def source():
    return FakeEventSource()
