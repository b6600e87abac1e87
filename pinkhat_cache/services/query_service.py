"""
Read-only query service.

Every read tries the cache store first. On a miss, or when the store
fails, the answer is recomputed from the chain with the same calculator
the synchronizer uses, and is never written back. Responses carry their
provenance so callers can tell a cached answer from a live one.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from pinkhat_cache.core.config import settings
from pinkhat_cache.core.exceptions import (
    GameNotFoundError,
    PlayerNotFoundError,
    SourceUnavailableError,
    StorageFaultError,
    ValidationError,
)
from pinkhat_cache.models import Game, PlayerStats
from pinkhat_cache.models.base import utcnow
from pinkhat_cache.schemas import (
    EquippedHatResponse,
    GameListResponse,
    GameParticipantInfo,
    GameResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    PlayerGameSummary,
    PlayerStatsResponse,
    Provenance,
    ScoringModeResponse,
    SyncStatusResponse,
    TopPlayerItem,
    TopScoreItem,
    TopScoresMode,
    TopScoresResponse,
)
from pinkhat_cache.services.cache_store import CacheStore, PlayerGameEntry
from pinkhat_cache.services.chain_client import EventSource
from pinkhat_cache.services.event_parser import (
    EventType,
    GameSubmittedEvent,
    normalize_address,
    parse_chain_event,
)
from pinkhat_cache.services.metadata_resolver import HatMetadataResolver
from pinkhat_cache.services.stats_calculator import (
    ParticipationEntry,
    PlayerAggregate,
    ScoreDirection,
    fold_player_stats,
    rank_participants,
    sort_by_best_score,
    sort_for_leaderboard,
)


logger = structlog.get_logger(__name__)

MAX_LIMIT = 100
MAX_WINDOW_HOURS = 168


class QueryService:
    """Serves player, game, leaderboard and sync reads."""

    def __init__(
        self,
        store: CacheStore,
        event_source: EventSource,
        resolver: Optional[HatMetadataResolver] = None,
        synchronizer=None,
        start_block: Optional[int] = None,
    ):
        self.store = store
        self.event_source = event_source
        self.resolver = resolver
        self.synchronizer = synchronizer
        self.start_block = start_block if start_block is not None else settings.indexer_start_block
        self.logger = logger.bind(service="query_service")

    # === HELPERS ===

    def _store_failed(self, operation: str, error: StorageFaultError, **context) -> None:
        self.logger.warning(
            "Cache read failed, falling back to chain",
            operation=operation,
            error=error.message,
            **context
        )

    async def _current_direction(self) -> Tuple[ScoreDirection, Provenance]:
        """Direction of the newest cached game, or the chain's when the cache has none."""
        try:
            direction = await self.store.get_latest_direction()
            if direction is not None:
                return direction, Provenance.CACHE
        except StorageFaultError as e:
            self._store_failed("read latest direction", e)
        is_descending = await self.event_source.is_descending_order()
        return ScoreDirection.from_flag(is_descending), Provenance.LIVE

    async def _scan_games(self) -> List[GameSubmittedEvent]:
        """Every valid GameSubmitted event on chain, oldest game first."""
        chain_events = await self.event_source.query_events_since(EventType.GAME_SUBMITTED, self.start_block)
        games: Dict[int, GameSubmittedEvent] = {}
        for chain_event in chain_events:
            try:
                parsed = parse_chain_event(chain_event)
            except ValidationError as e:
                self.logger.debug("Ignoring malformed event", error=e.message)
                continue
            games.setdefault(parsed.game_id, parsed)
        return [games[game_id] for game_id in sorted(games)]

    async def _hat_snapshot(self, address: str) -> Tuple[int, Optional[str]]:
        try:
            hat_id = await self.event_source.get_equipped_hat(address)
        except SourceUnavailableError as e:
            self.logger.info("Equipped hat lookup failed", address=address, error=e.message)
            return 0, None
        if not hat_id or self.resolver is None:
            return hat_id, None
        return hat_id, await self.resolver.resolve_display_name(hat_id)

    @staticmethod
    def _fold_games(
        games: Sequence[GameSubmittedEvent],
        direction: ScoreDirection,
        addresses: Optional[set] = None,
    ) -> Dict[str, PlayerAggregate]:
        aggregates: Dict[str, PlayerAggregate] = {}
        for game in games:
            for player, score in game.participants:
                if addresses is not None and player not in addresses:
                    continue
                aggregates[player] = fold_player_stats(
                    aggregates.get(player),
                    ParticipationEntry(score=score, is_winner=player == game.winner),
                    direction,
                    address=player,
                )
        return aggregates

    @staticmethod
    def _game_from_cache(game: Game) -> GameResponse:
        return GameResponse(
            game_id=game.game_id,
            player_count=game.player_count,
            block_number=game.block_number,
            transaction_hash=game.transaction_hash,
            winner=game.winner_address,
            is_descending_order=game.is_descending_order,
            scoring_mode=game.scoring_mode,
            players=[
                GameParticipantInfo(
                    address=participant.player_address,
                    score=participant.score,
                    position=participant.position,
                    equipped_hat=participant.equipped_hat_id,
                    hat_type=participant.hat_type,
                )
                for participant in game.participants
            ],
            created_at=game.created_at,
            provenance=Provenance.CACHE,
        )

    # === PLAYERS ===

    async def get_player_stats(self, address: str) -> PlayerStatsResponse:
        """
        Aggregated stats and game history for a player.

        Raises:
            InvalidAddressError: address is malformed
            PlayerNotFoundError: the player has no games in the cache or on chain
            SourceUnavailableError: the cache missed and the chain is unreachable
        """
        address = normalize_address(address)

        try:
            stats = await self.store.get_player_stats(address)
            if stats is not None and stats.has_played:
                history = await self.store.get_player_history(address)
                return self._player_from_cache(stats, history)
        except StorageFaultError as e:
            self._store_failed("get player stats", e, address=address)

        return await self._player_from_chain(address)

    @staticmethod
    def _player_from_cache(stats: PlayerStats, history: List[PlayerGameEntry]) -> PlayerStatsResponse:
        hat_type = next(
            (entry.hat_type for entry in history if entry.equipped_hat_id == stats.current_equipped_hat),
            None
        )
        return PlayerStatsResponse(
            address=stats.player_address,
            best_score=stats.best_score,
            total_wins=stats.total_wins,
            total_games_played=stats.total_games,
            equipped_hat=stats.current_equipped_hat,
            equipped_hat_type=hat_type if stats.current_equipped_hat else None,
            has_played=stats.has_played,
            games_played=[entry.game_id for entry in history],
            history=[
                PlayerGameSummary(
                    game_id=entry.game_id,
                    score=entry.score,
                    position=entry.position,
                    won=entry.won,
                    equipped_hat=entry.equipped_hat_id,
                    hat_type=entry.hat_type,
                    is_descending_order=entry.is_descending_order,
                    created_at=entry.created_at,
                )
                for entry in history
            ],
            provenance=Provenance.CACHE,
        )

    async def _player_from_chain(self, address: str) -> PlayerStatsResponse:
        games = [game for game in await self._scan_games() if address in game.players]
        if not games:
            raise PlayerNotFoundError(address)

        direction = ScoreDirection.from_flag(await self.event_source.is_descending_order())
        hat_id, hat_type = await self._hat_snapshot(address)
        aggregate = self._fold_games(games, direction, {address})[address]

        history = []
        for game in reversed(games):
            ranked = {entry.address: entry for entry in rank_participants(game.participants, direction)}
            history.append(PlayerGameSummary(
                game_id=game.game_id,
                score=ranked[address].score,
                position=ranked[address].position,
                won=game.winner == address,
                equipped_hat=hat_id,
                hat_type=hat_type,
                is_descending_order=direction.is_descending,
            ))

        return PlayerStatsResponse(
            address=address,
            best_score=aggregate.best_score,
            total_wins=aggregate.total_wins,
            total_games_played=aggregate.total_games,
            equipped_hat=hat_id,
            equipped_hat_type=hat_type,
            has_played=aggregate.has_played,
            games_played=[entry.game_id for entry in history],
            history=history,
            provenance=Provenance.LIVE,
        )

    async def get_equipped_hat(self, address: str) -> EquippedHatResponse:
        """Current hat from chain; the last synced snapshot when the chain is down."""
        address = normalize_address(address)
        try:
            hat_id = await self.event_source.get_equipped_hat(address)
        except SourceUnavailableError:
            stats = await self.store.get_player_stats(address)
            if stats is None:
                raise
            return EquippedHatResponse(
                address=address,
                hat_id=stats.current_equipped_hat,
                provenance=Provenance.CACHE,
            )

        hat_type = None
        if hat_id and self.resolver is not None:
            hat_type = await self.resolver.resolve_display_name(hat_id)
        return EquippedHatResponse(
            address=address,
            hat_id=hat_id,
            hat_type=hat_type,
            provenance=Provenance.LIVE,
        )

    # === GAMES ===

    async def get_game(self, game_id: int) -> GameResponse:
        """
        A game with its ranked participants.

        Raises:
            GameNotFoundError: no such game in the cache or on chain
            SourceUnavailableError: the cache missed and the chain is unreachable
        """
        try:
            game = await self.store.get_game(game_id)
            if game is not None:
                return self._game_from_cache(game)
        except StorageFaultError as e:
            self._store_failed("get game", e, game_id=game_id)

        chain_event = await self.event_source.get_game_event(game_id)
        if chain_event is None:
            raise GameNotFoundError(game_id)
        try:
            parsed = parse_chain_event(chain_event)
        except ValidationError as e:
            self.logger.warning("Game event on chain is malformed", game_id=game_id, error=e.message)
            raise GameNotFoundError(game_id) from e

        direction = ScoreDirection.from_flag(await self.event_source.is_descending_order())
        players = []
        for entry in rank_participants(parsed.participants, direction):
            hat_id, hat_type = await self._hat_snapshot(entry.address)
            players.append(GameParticipantInfo(
                address=entry.address,
                score=entry.score,
                position=entry.position,
                equipped_hat=hat_id,
                hat_type=hat_type,
            ))

        return GameResponse(
            game_id=parsed.game_id,
            player_count=parsed.player_count,
            block_number=parsed.block_number,
            transaction_hash=parsed.transaction_hash,
            winner=parsed.winner,
            is_descending_order=direction.is_descending,
            scoring_mode=direction.scoring_mode,
            players=players,
            provenance=Provenance.LIVE,
        )

    async def list_recent_games(self, limit: int = 50, offset: int = 0) -> GameListResponse:
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}", {"limit": limit})
        if offset < 0:
            raise ValidationError("offset must not be negative", {"offset": offset})

        games = await self.store.list_recent_games(limit=limit, offset=offset)
        return GameListResponse(
            games=[self._game_from_cache(game) for game in games],
            limit=limit,
            offset=offset,
            provenance=Provenance.CACHE,
        )

    # === LEADERBOARDS ===

    async def get_leaderboard(self, limit: int = 10) -> LeaderboardResponse:
        """
        Top players by wins, then best score.

        Uses the direction of the newest cached game; recomputed from chain
        when the cache holds no players.
        """
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}", {"limit": limit})

        try:
            direction = await self.store.get_latest_direction()
            if direction is not None:
                rows = await self.store.get_leaderboard(limit=limit, direction=direction)
                if rows:
                    return LeaderboardResponse(
                        players=[
                            LeaderboardEntry(
                                rank=rank,
                                address=row.player_address,
                                best_score=row.best_score,
                                total_wins=row.total_wins,
                                total_games=row.total_games,
                                equipped_hat=row.current_equipped_hat,
                                has_played=row.has_played,
                            )
                            for rank, row in enumerate(rows, start=1)
                        ],
                        is_descending_order=direction.is_descending,
                        scoring_mode=direction.scoring_mode,
                        provenance=Provenance.CACHE,
                    )
        except StorageFaultError as e:
            self._store_failed("get leaderboard", e)

        games = await self._scan_games()
        direction = ScoreDirection.from_flag(await self.event_source.is_descending_order())
        ranked = sort_for_leaderboard(self._fold_games(games, direction).values(), direction)[:limit]
        return LeaderboardResponse(
            players=[
                LeaderboardEntry(
                    rank=rank,
                    address=aggregate.address,
                    best_score=aggregate.best_score,
                    total_wins=aggregate.total_wins,
                    total_games=aggregate.total_games,
                )
                for rank, aggregate in enumerate(ranked, start=1)
            ],
            is_descending_order=direction.is_descending,
            scoring_mode=direction.scoring_mode,
            provenance=Provenance.LIVE,
        )

    async def get_custom_leaderboard(self, addresses: Sequence[str]) -> LeaderboardResponse:
        """
        Stats for a chosen set of players, best score first.

        Players missing from the cache are folded from chain; players who
        never played are listed last.
        """
        if not addresses:
            raise ValidationError("At least one address is required")
        if len(addresses) > MAX_LIMIT:
            raise ValidationError(f"At most {MAX_LIMIT} addresses are allowed", {"count": len(addresses)})

        normalized = list(dict.fromkeys(normalize_address(address) for address in addresses))
        provenance = Provenance.CACHE
        aggregates: Dict[str, PlayerAggregate] = {}

        try:
            rows = await self.store.get_players_stats(normalized)
        except StorageFaultError as e:
            self._store_failed("get players stats", e)
            rows = {}
        for address, row in rows.items():
            if row.has_played:
                aggregates[address] = PlayerAggregate(
                    address=address,
                    best_score=row.best_score,
                    total_wins=row.total_wins,
                    total_games=row.total_games,
                    equipped_hat=row.current_equipped_hat,
                    has_played=True,
                )

        direction, direction_provenance = await self._current_direction()
        missing = {address for address in normalized if address not in aggregates}
        if missing:
            provenance = Provenance.LIVE
            live_direction = ScoreDirection.from_flag(await self.event_source.is_descending_order())
            aggregates.update(self._fold_games(await self._scan_games(), live_direction, missing))
        elif direction_provenance is Provenance.LIVE:
            provenance = Provenance.LIVE

        for address in normalized:
            aggregates.setdefault(address, PlayerAggregate(address=address))

        ranked = sort_by_best_score(aggregates.values(), direction)
        return LeaderboardResponse(
            players=[
                LeaderboardEntry(
                    rank=rank,
                    address=aggregate.address,
                    best_score=aggregate.best_score,
                    total_wins=aggregate.total_wins,
                    total_games=aggregate.total_games,
                    equipped_hat=aggregate.equipped_hat,
                    has_played=aggregate.has_played,
                )
                for rank, aggregate in enumerate(ranked, start=1)
            ],
            is_descending_order=direction.is_descending,
            scoring_mode=direction.scoring_mode,
            provenance=provenance,
        )

    async def get_top_scores(
        self,
        limit: int = 10,
        hours: int = 24,
        mode: TopScoresMode = TopScoresMode.SCORES,
    ) -> TopScoresResponse:
        """Best scores or best players over games cached in the last `hours` hours."""
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}", {"limit": limit})
        if not 1 <= hours <= MAX_WINDOW_HOURS:
            raise ValidationError(f"hours must be between 1 and {MAX_WINDOW_HOURS}", {"hours": hours})
        try:
            mode = TopScoresMode(mode)
        except ValueError as e:
            raise ValidationError(f"Unknown mode: {mode}", {"mode": str(mode)}) from e

        since = utcnow() - timedelta(hours=hours)
        direction, _ = await self._current_direction()

        scores: List[TopScoreItem] = []
        players: List[TopPlayerItem] = []
        if mode is TopScoresMode.SCORES:
            rows = await self.store.get_top_scores_since(since, limit, direction)
            scores = [
                TopScoreItem(
                    rank=rank,
                    game_id=row.game_id,
                    address=row.player_address,
                    score=row.score,
                    equipped_hat=row.equipped_hat_id,
                    hat_type=row.hat_type,
                    block_number=row.block_number,
                    transaction_hash=row.transaction_hash,
                    created_at=row.created_at,
                )
                for rank, row in enumerate(rows, start=1)
            ]
        else:
            rows = await self.store.get_top_players_since(since, limit, direction)
            players = [
                TopPlayerItem(
                    rank=rank,
                    address=row.player_address,
                    best_score=row.best_score,
                    games_played=row.games_played,
                    last_game_time=row.last_game_time,
                )
                for rank, row in enumerate(rows, start=1)
            ]

        return TopScoresResponse(
            mode=mode,
            hours=hours,
            since=since,
            is_descending_order=direction.is_descending,
            scoring_mode=direction.scoring_mode,
            scores=scores,
            players=players,
            games_in_window=await self.store.count_games_since(since),
            active_players=await self.store.count_active_players_since(since),
            provenance=Provenance.CACHE,
        )

    async def get_scoring_mode(self) -> ScoringModeResponse:
        """Current direction from chain; the newest cached game's when the chain is down."""
        try:
            direction = ScoreDirection.from_flag(await self.event_source.is_descending_order())
            provenance = Provenance.LIVE
        except SourceUnavailableError:
            direction = await self.store.get_latest_direction()
            if direction is None:
                raise
            provenance = Provenance.CACHE

        return ScoringModeResponse(
            is_descending_order=direction.is_descending,
            scoring_mode=direction.scoring_mode,
            provenance=provenance,
        )

    # === SYNC ===

    async def get_sync_status(self) -> SyncStatusResponse:
        checkpoint = await self.store.get_checkpoint()
        counts = await self.store.get_record_counts()
        return SyncStatusResponse(
            last_synced_block=checkpoint.last_synced_block or 0,
            last_synced_game_id=checkpoint.last_synced_game_id or 0,
            last_sync_time=checkpoint.last_sync_time,
            status="synced" if counts["games"] > 0 else "empty",
            record_counts=counts,
            synchronizer=self.synchronizer.get_status() if self.synchronizer is not None else None,
        )
