"""
Game synchronizer.

Catches the cache up from the stored checkpoint, then tails new events.
Both phases push every event through process_event, so a game reaching
the store twice (once from catch-up, once from the live stream) is
written once.
"""

import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Type

import structlog

from pinkhat_cache.core.config import settings
from pinkhat_cache.core.exceptions import (
    IndexerError,
    SourceUnavailableError,
    StorageFaultError,
    ValidationError,
)
from pinkhat_cache.models.base import utcnow
from pinkhat_cache.services.cache_store import CacheStore, GameRecord, ParticipantRecord
from pinkhat_cache.services.chain_client import EventSource
from pinkhat_cache.services.event_parser import (
    ChainEvent,
    EventType,
    GameSubmittedEvent,
    ScoreOrderingChangedEvent,
    parse_chain_event,
)
from pinkhat_cache.services.metadata_resolver import HatMetadataResolver
from pinkhat_cache.services.stats_calculator import ScoreDirection, rank_participants
from .core.types import ProcessOutcome, SyncPhase, SyncStats


logger = structlog.get_logger(__name__)

MAX_LIVE_BACKOFF = 60.0  # seconds


class GameSynchronizer:
    """
    Mirrors GameSubmitted events into the cache store.

    The checkpoint only moves after the games it covers are committed.
    In live mode an event that still fails after its retries is requeued
    with a capped backoff, and the checkpoint stays frozen until every
    requeued event has been cached.
    """

    def __init__(
        self,
        event_source: EventSource,
        store: CacheStore,
        resolver: Optional[HatMetadataResolver] = None,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        start_block: Optional[int] = None,
    ):
        self.event_source = event_source
        self.store = store
        self.resolver = resolver
        self.batch_size = batch_size or settings.indexer_batch_size
        self.max_retries = max_retries or settings.indexer_max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.indexer_retry_delay
        self.start_block = start_block if start_block is not None else settings.indexer_start_block

        self.phase = SyncPhase.STARTING
        self.stats = SyncStats()
        self.logger = logger.bind(service="synchronizer")

        self._live_started = False
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self._write_lock = asyncio.Lock()
        self._failed_events: Dict[Tuple[int, int], int] = {}
        self._retry_tasks: Set[asyncio.Task] = set()
        self._live_block = 0
        self._live_game_id = 0

    # === RETRIES ===

    async def _with_retry(
        self,
        description: str,
        operation: Callable[[], Awaitable[Any]],
        retry_on: Tuple[Type[Exception], ...] = (SourceUnavailableError,),
        **context
    ) -> Any:
        """Run operation, retrying retry_on errors with exponential backoff."""
        for attempt in range(self.max_retries):
            try:
                return await operation()
            except retry_on as e:
                if attempt >= self.max_retries - 1:
                    self.logger.error(
                        "Operation failed after retries",
                        operation=description,
                        attempts=attempt + 1,
                        error=str(e),
                        **context
                    )
                    raise
                wait_time = self.retry_delay * (2 ** attempt)
                self.logger.warning(
                    "Operation failed, retrying",
                    operation=description,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    wait_time=wait_time,
                    error=str(e),
                    **context
                )
                await asyncio.sleep(wait_time)

    # === EVENT PROCESSING ===

    async def process_event(self, chain_event: ChainEvent) -> ProcessOutcome:
        """
        Validate, derive and persist a single event.

        Returns:
            The outcome; malformed events are skipped, not raised

        Raises:
            StorageFaultError: the game unit could not be written
            SourceUnavailableError: the ranking direction could not be read
        """
        try:
            parsed = parse_chain_event(chain_event)
        except ValidationError as e:
            self.logger.warning(
                "Skipping malformed event",
                event_type=chain_event.event_type.value,
                block_number=chain_event.block_number,
                transaction_hash=chain_event.transaction_hash,
                error=e.message,
                details=e.details
            )
            self.stats.record(ProcessOutcome.INVALID)
            return ProcessOutcome.INVALID

        if isinstance(parsed, ScoreOrderingChangedEvent):
            self.logger.info(
                "Score ordering changed",
                is_descending=parsed.is_descending,
                block_number=parsed.block_number
            )
            self.stats.record(ProcessOutcome.ORDERING_CHANGE)
            return ProcessOutcome.ORDERING_CHANGE

        async with self._write_lock:
            outcome = await self._store_game(parsed)

        self.stats.record(outcome)
        if outcome is ProcessOutcome.STORED:
            self.stats.last_processed_block = max(self.stats.last_processed_block or 0, parsed.block_number)
            self.stats.last_processed_game_id = max(self.stats.last_processed_game_id or 0, parsed.game_id)
        return outcome

    async def _store_game(self, game: GameSubmittedEvent) -> ProcessOutcome:
        if await self.store.game_exists(game.game_id):
            self.logger.debug("Game already cached", game_id=game.game_id)
            return ProcessOutcome.DUPLICATE

        is_descending = await self._with_retry(
            "read ranking direction",
            self.event_source.is_descending_order,
            game_id=game.game_id
        )
        direction = ScoreDirection.from_flag(is_descending)
        ranked = rank_participants(game.participants, direction)

        equipped_hats: Dict[str, int] = {}
        hat_names: Dict[str, Optional[str]] = {}
        for player in game.players:
            equipped_hats[player] = await self._lookup_equipped_hat(player)
            hat_names[player] = await self._resolve_hat_name(equipped_hats[player])

        record = GameRecord(
            game_id=game.game_id,
            block_number=game.block_number,
            transaction_hash=game.transaction_hash,
            winner_address=game.winner,
            player_count=game.player_count,
            is_descending_order=direction.is_descending,
        )
        participants = [
            ParticipantRecord(
                game_id=game.game_id,
                player_address=entry.address,
                score=entry.score,
                position=entry.position,
                equipped_hat_id=equipped_hats[entry.address],
                hat_type=hat_names[entry.address],
            )
            for entry in ranked
        ]

        await self._with_retry(
            "write game unit",
            partial(self.store.write_game_unit, record, participants, equipped_hats),
            retry_on=(StorageFaultError,),
            game_id=game.game_id
        )

        self.logger.info(
            "Game cached",
            game_id=game.game_id,
            block_number=game.block_number,
            players=game.player_count,
            winner=game.winner,
            direction=direction.value
        )
        return ProcessOutcome.STORED

    async def _lookup_equipped_hat(self, player: str) -> int:
        # Current hat, not the one worn during the game: the event does not carry it
        try:
            return await self.event_source.get_equipped_hat(player)
        except SourceUnavailableError as e:
            self.logger.info("Equipped hat lookup failed", player=player, error=e.message)
            return 0

    async def _resolve_hat_name(self, hat_id: int) -> Optional[str]:
        if not hat_id or self.resolver is None:
            return None
        name = await self.resolver.resolve_display_name(hat_id)
        if name is None:
            self.stats.metadata_failures += 1
        return name

    # === CATCH-UP ===

    async def catch_up(self) -> int:
        """
        Process every GameSubmitted event from the checkpoint to the chain head.

        Returns:
            The last block covered

        Raises:
            SourceUnavailableError: the source stayed unreachable
            StorageFaultError: a game could not be written
        """
        self.phase = SyncPhase.CATCHING_UP
        checkpoint = await self.store.get_checkpoint()
        from_block = max(checkpoint.last_synced_block or 0, self.start_block)
        head = await self._with_retry("get block number", self.event_source.get_block_number)

        self.logger.info("Starting catch-up", from_block=from_block, head=head)

        block = from_block
        while block <= head:
            to_block = min(block + self.batch_size - 1, head)
            events = await self._with_retry(
                "query events",
                partial(self.event_source.query_events_since, EventType.GAME_SUBMITTED, block, to_block),
                from_block=block,
                to_block=to_block
            )

            max_game_id = None
            for chain_event in sorted(events, key=lambda e: e.ordering_key):
                outcome = await self.process_event(chain_event)
                if outcome in (ProcessOutcome.STORED, ProcessOutcome.DUPLICATE):
                    max_game_id = max(max_game_id or 0, chain_event.sequence_id or 0)

            await self.store.advance_checkpoint(to_block, max_game_id)
            self.stats.batches_completed += 1
            self.logger.info(
                "Catch-up batch completed",
                from_block=block,
                to_block=to_block,
                events=len(events)
            )
            block = to_block + 1

        self.logger.info("Catch-up completed", head=head, games_stored=self.stats.games_stored)
        return max(head, from_block - 1)

    # === LIVE ===

    async def go_live(self, from_block: int) -> None:
        """Start one follower per event type and the queue consumer."""
        if self._live_started:
            raise IndexerError("Synchronizer is already live")
        self._live_started = True
        self.phase = SyncPhase.LIVE
        self._queue = asyncio.Queue()

        for event_type in EventType:
            self._tasks.append(asyncio.create_task(
                self._follow(event_type, from_block),
                name=f"follow-{event_type.value}"
            ))
        self._tasks.append(asyncio.create_task(self._consume(), name="consume-events"))

        self.logger.info("Live synchronization started", from_block=from_block)

    async def _follow(self, event_type: EventType, from_block: int) -> None:
        next_block = from_block
        attempt = 0

        def covered(head: int) -> None:
            nonlocal next_block
            next_block = max(next_block, head + 1)

        while True:
            try:
                async for chain_event in self.event_source.subscribe(event_type, next_block, on_poll=covered):
                    attempt = 0
                    next_block = max(next_block, chain_event.block_number)
                    await self._queue.put(chain_event)
                await asyncio.sleep(self.event_source.poll_interval)
            except asyncio.CancelledError:
                raise
            except SourceUnavailableError as e:
                self.stats.source_errors += 1
                wait_time = self._live_backoff(attempt)
                attempt += 1
                self.logger.warning(
                    "Event subscription failed, resubscribing",
                    event_type=event_type.value,
                    from_block=next_block,
                    wait_time=wait_time,
                    error=e.message
                )
                await asyncio.sleep(wait_time)

    async def _consume(self) -> None:
        while True:
            chain_event = await self._queue.get()
            try:
                await self._handle_live_event(chain_event)
            finally:
                self._queue.task_done()

    async def _handle_live_event(self, chain_event: ChainEvent) -> None:
        try:
            outcome = await self.process_event(chain_event)
        except asyncio.CancelledError:
            raise
        except StorageFaultError as e:
            self.stats.storage_errors += 1
            self._schedule_retry(chain_event, e)
            return
        except SourceUnavailableError as e:
            self.stats.source_errors += 1
            self._schedule_retry(chain_event, e)
            return
        except Exception as e:
            self.logger.error(
                "Unexpected error processing live event",
                block_number=chain_event.block_number,
                error=str(e),
                error_type=type(e).__name__
            )
            self._schedule_retry(chain_event, e)
            return

        if self._failed_events.pop(chain_event.ordering_key, None) is not None:
            self.logger.info(
                "Retried event cached",
                block_number=chain_event.block_number,
                sequence_id=chain_event.sequence_id,
                still_pending=len(self._failed_events)
            )

        if outcome is ProcessOutcome.ORDERING_CHANGE:
            return

        self._live_block = max(self._live_block, chain_event.block_number)
        if outcome in (ProcessOutcome.STORED, ProcessOutcome.DUPLICATE):
            self._live_game_id = max(self._live_game_id, chain_event.sequence_id or 0)

        if self.checkpoint_frozen:
            return

        try:
            await self.store.advance_checkpoint(self._live_block, self._live_game_id or None)
        except StorageFaultError as e:
            self.stats.storage_errors += 1
            self.logger.warning(
                "Checkpoint advance failed",
                block_number=self._live_block,
                error=e.message
            )

    def _live_backoff(self, attempt: int) -> float:
        # exponent capped so long outages never overflow the float
        return min(self.retry_delay * (2 ** min(attempt, 16)), MAX_LIVE_BACKOFF)

    @property
    def checkpoint_frozen(self) -> bool:
        """True while any live event is waiting to be retried."""
        return bool(self._failed_events)

    def _schedule_retry(self, chain_event: ChainEvent, error: Exception) -> None:
        attempts = self._failed_events.get(chain_event.ordering_key, 0)
        if not self._failed_events:
            self.logger.error(
                "Event could not be cached, checkpoint frozen until it is",
                block_number=chain_event.block_number,
                sequence_id=chain_event.sequence_id,
                error=str(error)
            )
        self._failed_events[chain_event.ordering_key] = attempts + 1

        wait_time = self._live_backoff(attempts)
        self.logger.warning(
            "Requeueing live event",
            block_number=chain_event.block_number,
            sequence_id=chain_event.sequence_id,
            attempt=attempts + 1,
            wait_time=wait_time
        )
        task = asyncio.create_task(self._requeue(chain_event, wait_time))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue(self, chain_event: ChainEvent, wait_time: float) -> None:
        await asyncio.sleep(wait_time)
        await self._queue.put(chain_event)

    async def drain(self) -> None:
        """Wait until every queued live event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    # === LIFECYCLE ===

    async def start(self) -> None:
        """Catch up to the chain head, then go live."""
        self.stats.start_time = utcnow()
        await self.store.ensure_checkpoint()
        last_block = await self.catch_up()
        await self.go_live(last_block + 1)

    async def wait(self) -> None:
        """Block until the live tasks end."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self) -> None:
        self.logger.info("Stopping synchronizer")
        self.phase = SyncPhase.STOPPED

        tasks = self._tasks + list(self._retry_tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._retry_tasks.clear()

        self.logger.info("Synchronizer stopped", stats=self.stats.to_dict())

    def get_status(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "checkpoint_frozen": self.checkpoint_frozen,
            "pending_retries": len(self._failed_events),
            "queued_events": self._queue.qsize() if self._queue is not None else 0,
            "stats": self.stats.to_dict(),
        }
